"""API routes."""

from .deployments import router as deployments_router
from .webhooks import router as webhooks_router

__all__ = [
    "deployments_router",
    "webhooks_router",
]
