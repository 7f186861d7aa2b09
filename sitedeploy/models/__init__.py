"""Database models."""

from .deployment_job import (
    DeploymentJob,
    JobStatus,
    DeploymentType,
    TriggerSource,
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    RETRYABLE_STATUSES,
    can_transition,
    predecessors,
)

__all__ = [
    "DeploymentJob",
    "JobStatus", "DeploymentType", "TriggerSource",
    "ACTIVE_STATUSES", "TERMINAL_STATUSES", "RETRYABLE_STATUSES",
    "can_transition", "predecessors",
]
