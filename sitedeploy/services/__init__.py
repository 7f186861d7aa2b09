"""Business logic services."""

from .deployment_service import DeploymentService
from .queue_processor import QueueProcessor, ProcessResult

__all__ = ["DeploymentService", "QueueProcessor", "ProcessResult"]
