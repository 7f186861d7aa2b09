"""Pydantic schemas for API validation."""

from .deployment import (
    DeploymentCreate,
    DeploymentJobResponse,
    DeploymentEnvelope,
    DeploymentStatusResponse,
    DeploymentListResponse,
    DeploymentStatsResponse,
    CancelRequest,
    ProcessResponse,
    CompletionReport,
    CompletionResponse,
)
from .webhook import WordPressPostEvent, WebhookResponse

__all__ = [
    "DeploymentCreate",
    "DeploymentJobResponse",
    "DeploymentEnvelope",
    "DeploymentStatusResponse",
    "DeploymentListResponse",
    "DeploymentStatsResponse",
    "CancelRequest",
    "ProcessResponse",
    "CompletionReport",
    "CompletionResponse",
    "WordPressPostEvent",
    "WebhookResponse",
]
