"""Deployment job model: one tracked request to rebuild/redeploy the site."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import Column, String, Text, DateTime, Index, JSON, text
from ..database import Base


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class DeploymentType(str, Enum):
    INCREMENTAL = "incremental"
    FULL = "full"


class TriggerSource(str, Enum):
    WORDPRESS = "wordpress"
    MANUAL = "manual"
    API = "api"


ACTIVE_STATUSES = frozenset({JobStatus.PENDING, JobStatus.PROCESSING})
TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})
RETRYABLE_STATUSES = frozenset({JobStatus.FAILED, JobStatus.CANCELLED})

# Terminal states have no outgoing edges.
ALLOWED_TRANSITIONS = {
    JobStatus.PENDING: frozenset({JobStatus.PROCESSING, JobStatus.CANCELLED}),
    JobStatus.PROCESSING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}


def can_transition(current: str, target: str) -> bool:
    """Whether ``current -> target`` is an edge of the job state graph."""
    try:
        return JobStatus(target) in ALLOWED_TRANSITIONS[JobStatus(current)]
    except ValueError:
        return False


def predecessors(target: JobStatus) -> frozenset:
    """Statuses from which *target* can be reached in one step."""
    return frozenset(s for s, targets in ALLOWED_TRANSITIONS.items() if target in targets)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything stored here is UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


_ACTIVE_SQL = "status IN ('pending', 'processing')"


class DeploymentJob(Base):
    """
    Tracks one site rebuild from intake to terminal outcome.

    Status transitions: pending -> processing -> completed | failed,
    and pending | processing -> cancelled (operator action).
    Rows are never deleted; a retry creates a new row.
    """

    __tablename__ = "deployment_jobs"

    # Primary key (UUID format)
    id = Column(String(50), primary_key=True)

    # CMS content reference; null for full-site jobs
    post_id = Column(String(64), nullable=True)
    post_slug = Column(String(255), nullable=True)
    post_title = Column(Text, nullable=True)

    # Allowed values: see JobStatus / DeploymentType / TriggerSource
    status = Column(String(20), nullable=False, default=JobStatus.PENDING.value)
    deployment_type = Column(String(20), nullable=False, default=DeploymentType.INCREMENTAL.value)
    triggered_by = Column(String(20), nullable=False, default=TriggerSource.API.value)

    # Correlation to the CI run; written once after dispatch
    github_run_id = Column(String(64), nullable=True, unique=True)
    github_run_url = Column(Text, nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    # Outcome
    error_message = Column(Text, nullable=True)
    build_hash = Column(String(128), nullable=True)
    deployment_url = Column(Text, nullable=True)

    # Trigger-specific pass-through bag. "metadata" is reserved on declarative
    # classes, so the attribute name differs from the column name.
    job_metadata = Column("metadata", JSON, nullable=False, default=dict)

    __table_args__ = (
        Index("ix_deployment_jobs_status", "status"),
        Index("ix_deployment_jobs_created_at", "created_at"),
        Index("ix_deployment_jobs_status_created_at", "status", "created_at"),
        Index("ix_deployment_jobs_post_id", "post_id"),
        # At most one pending/processing job per post. NULL post ids (full
        # deployments) never collide.
        Index(
            "uq_deployment_jobs_active_post",
            "post_id",
            unique=True,
            sqlite_where=text(_ACTIVE_SQL),
            postgresql_where=text(_ACTIVE_SQL),
        ),
    )

    @property
    def is_terminal(self) -> bool:
        return JobStatus(self.status) in TERMINAL_STATUSES

    def duration_seconds(self, now: Optional[datetime] = None) -> Optional[float]:
        """Seconds since started_at, up to completed_at once terminal."""
        started = as_utc(self.started_at)
        if started is None:
            return None
        end = as_utc(self.completed_at) or now or utcnow()
        return max((end - started).total_seconds(), 0.0)
