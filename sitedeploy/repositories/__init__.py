"""Data access repositories."""

from .base import BaseRepository
from .deployment_job_repository import DeploymentJobRepository

__all__ = [
    "BaseRepository",
    "DeploymentJobRepository",
]
