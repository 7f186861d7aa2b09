"""Data access for deployment jobs.

Every status change goes through ``_conditional_update``: a single UPDATE
whose WHERE clause names the expected prior status. The returned rowcount
tells the caller whether it won. Nothing here reads a row and then writes
it back.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import DateTime, func, literal
from sqlalchemy.exc import IntegrityError

from .base import BaseRepository
from ..exceptions import ConflictError, JobNotFoundError
from ..models.deployment_job import (
    DeploymentJob,
    JobStatus,
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    predecessors,
    utcnow,
)

logger = logging.getLogger(__name__)


def _values(statuses: Iterable[JobStatus]) -> List[str]:
    return [s.value for s in statuses]


class DeploymentJobRepository(BaseRepository[DeploymentJob]):
    """Repository for the deployment_jobs table."""

    model_class = DeploymentJob
    not_found_error = JobNotFoundError

    # ----- reads -----------------------------------------------------------

    def find_active_for_post(self, post_id: str) -> Optional[DeploymentJob]:
        """The pending/processing job for *post_id*, if any."""
        return (
            self.db.query(DeploymentJob)
            .filter(
                DeploymentJob.post_id == post_id,
                DeploymentJob.status.in_(_values(ACTIVE_STATUSES)),
            )
            .first()
        )

    def get_by_run_id(self, run_id: str) -> Optional[DeploymentJob]:
        return (
            self.db.query(DeploymentJob)
            .filter(DeploymentJob.github_run_id == run_id)
            .first()
        )

    def list_oldest_pending(self, limit: int) -> List[DeploymentJob]:
        return (
            self.db.query(DeploymentJob)
            .filter(DeploymentJob.status == JobStatus.PENDING.value)
            .order_by(DeploymentJob.created_at.asc())
            .limit(limit)
            .all()
        )

    def list_without_run(self, limit: int) -> List[DeploymentJob]:
        """Dispatched jobs whose CI run is not known yet, oldest first."""
        return (
            self.db.query(DeploymentJob)
            .filter(
                DeploymentJob.status == JobStatus.PROCESSING.value,
                DeploymentJob.github_run_id.is_(None),
            )
            .order_by(DeploymentJob.started_at.asc())
            .limit(limit)
            .all()
        )

    def search(
        self,
        status: Optional[str] = None,
        triggered_by: Optional[str] = None,
        post_id: Optional[str] = None,
        created_after: Optional[datetime] = None,
        created_before: Optional[datetime] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Tuple[List[DeploymentJob], int]:
        """Filtered page of jobs, newest first, plus the unpaged total.

        ``created_after`` and ``created_before`` are inclusive bounds.
        """
        query = self.db.query(DeploymentJob)
        if status:
            query = query.filter(DeploymentJob.status == status)
        if triggered_by:
            query = query.filter(DeploymentJob.triggered_by == triggered_by)
        if post_id:
            query = query.filter(DeploymentJob.post_id == post_id)
        if created_after is not None:
            query = query.filter(DeploymentJob.created_at >= created_after)
        if created_before is not None:
            query = query.filter(DeploymentJob.created_at <= created_before)

        total = query.order_by(None).count()
        jobs = (
            query.order_by(DeploymentJob.created_at.desc(), DeploymentJob.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        return jobs, total

    def count_by_status(self) -> Dict[str, int]:
        rows = (
            self.db.query(DeploymentJob.status, func.count(DeploymentJob.id))
            .group_by(DeploymentJob.status)
            .all()
        )
        return {status: count for status, count in rows}

    def completed_time_spans(self) -> List[Tuple[datetime, datetime]]:
        return (
            self.db.query(DeploymentJob.started_at, DeploymentJob.completed_at)
            .filter(
                DeploymentJob.status == JobStatus.COMPLETED.value,
                DeploymentJob.started_at.isnot(None),
                DeploymentJob.completed_at.isnot(None),
            )
            .all()
        )

    # ----- writes ----------------------------------------------------------

    def insert(self, job: DeploymentJob) -> Optional[DeploymentJob]:
        """Insert a new job.

        Returns None when the active-post unique index rejects the row,
        meaning a concurrent request already created the active job.
        """
        self.db.add(job)
        try:
            self._commit()
        except IntegrityError:
            self.db.rollback()
            logger.info(
                "Concurrent insert for post lost the race",
                extra={"post_id": job.post_id},
            )
            return None
        self.db.refresh(job)
        return job

    def _conditional_update(self, criteria: list, values: Dict[str, Any]) -> int:
        rowcount = (
            self.db.query(DeploymentJob)
            .filter(*criteria)
            .update(values, synchronize_session=False)
        )
        self._commit()
        # The bulk UPDATE bypasses the identity map.
        self.db.expire_all()
        return rowcount

    def claim(self, job_id: str, now: Optional[datetime] = None) -> bool:
        """pending -> processing, only if the job is still pending."""
        return self._conditional_update(
            [DeploymentJob.id == job_id, DeploymentJob.status == JobStatus.PENDING.value],
            {"status": JobStatus.PROCESSING.value, "started_at": now or utcnow()},
        ) == 1

    def attach_run(self, job_id: str, run_id: str, run_url: Optional[str]) -> bool:
        """Record the CI run correlation. Never overwrites an existing run id.

        Raises:
            ConflictError: *run_id* is already attached to another job
        """
        try:
            return self._conditional_update(
                [DeploymentJob.id == job_id, DeploymentJob.github_run_id.is_(None)],
                {"github_run_id": run_id, "github_run_url": run_url},
            ) == 1
        except IntegrityError:
            self.db.rollback()
            logger.warning(
                f"Run {run_id} is already attached to another job",
                extra={"job_id": job_id, "run_id": run_id},
            )
            raise ConflictError(
                job_id,
                JobStatus.PROCESSING.value,
                f"Run {run_id} is already attached to another job",
            )

    def transition(
        self,
        job_id: str,
        target: JobStatus,
        now: Optional[datetime] = None,
        **fields: Any,
    ) -> bool:
        """Move *job_id* to *target* if the state graph allows it from the current status.

        Terminal targets stamp completed_at; a pending job that jumps
        straight to cancelled also gets started_at so that started_at is
        set for every non-pending job.
        """
        now = now or utcnow()
        values: Dict[str, Any] = {"status": target.value, **fields}
        if target in TERMINAL_STATUSES:
            values["completed_at"] = now
            values["started_at"] = func.coalesce(
                DeploymentJob.started_at, literal(now, DateTime(timezone=True))
            )
        return self._conditional_update(
            [DeploymentJob.id == job_id, DeploymentJob.status.in_(_values(predecessors(target)))],
            values,
        ) == 1

    def fail_stale(self, cutoff: datetime, now: Optional[datetime] = None) -> int:
        """Fail every processing job that started before *cutoff*."""
        return self._conditional_update(
            [
                DeploymentJob.status == JobStatus.PROCESSING.value,
                DeploymentJob.started_at < cutoff,
            ],
            {
                "status": JobStatus.FAILED.value,
                "error_message": "timeout",
                "completed_at": now or utcnow(),
            },
        )
