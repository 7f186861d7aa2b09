"""Queue processor: claims pending jobs and hands them to the build executor.

Runs from two places that may overlap: the scheduled HTTP trigger and the
long-running worker. Overlap is safe because a job is only dispatched by
the processor whose conditional ``pending -> processing`` UPDATE matched
the row.
"""

import logging
from dataclasses import dataclass, field, asdict
from datetime import timedelta
from typing import List, Optional

from sqlalchemy.orm import Session

from ..exceptions import ConflictError
from ..models.deployment_job import DeploymentJob, JobStatus, utcnow
from ..repositories.deployment_job_repository import DeploymentJobRepository
from .build_executor import BuildExecutor, ContentRef, DispatchError, DispatchResult

logger = logging.getLogger(__name__)

# Longest dispatch error stored on a job.
MAX_ERROR_CHARS = 2000


@dataclass
class ProcessResult:
    """Outcome of one processing run."""
    claimed: int = 0
    dispatched: int = 0
    dispatch_failures: int = 0
    job_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


class QueueProcessor:
    """Claims a bounded batch of pending jobs and dispatches each one once.

    Args:
        db: Session used for every read and conditional write.
        executor: Build executor that starts the CI run.
        batch_size: Maximum number of jobs considered per run.
    """

    def __init__(self, db: Session, executor: BuildExecutor, batch_size: int = 10):
        self.db = db
        self.repo = DeploymentJobRepository(db)
        self.executor = executor
        self.batch_size = batch_size

    def process_pending(self, limit: Optional[int] = None) -> ProcessResult:
        """Claim and dispatch the oldest pending jobs."""
        result = ProcessResult()
        candidates = [job.id for job in self.repo.list_oldest_pending(limit or self.batch_size)]

        for job_id in candidates:
            if not self.repo.claim(job_id):
                logger.debug(f"Job {job_id} claimed by another processor", extra={"job_id": job_id})
                continue

            result.claimed += 1
            result.job_ids.append(job_id)
            job = self.repo.get_by_id(job_id)
            logger.info(f"Claimed job {job_id}", extra={"job_id": job_id})

            if self._dispatch(job):
                result.dispatched += 1
            else:
                result.dispatch_failures += 1

        if candidates:
            logger.info(
                f"Processing run finished: {result.claimed} claimed, "
                f"{result.dispatched} dispatched, {result.dispatch_failures} failed",
                extra={"claimed": result.claimed, "dispatch_failures": result.dispatch_failures},
            )
        return result

    def _dispatch(self, job: DeploymentJob) -> bool:
        """Start the CI run for a claimed job. Failures fail the job immediately.

        An accepted dispatch without a run id leaves the job processing;
        ``resolve_runs`` or the completion callback correlates it later.
        """
        content_ref = ContentRef(
            post_id=job.post_id, post_slug=job.post_slug, post_title=job.post_title
        )
        try:
            run = self.executor.dispatch(job.id, job.deployment_type, content_ref, job.triggered_by)
        except DispatchError as e:
            self._fail(job.id, str(e))
            return False
        except Exception as e:
            # Any executor bug must still leave the job out of processing.
            logger.exception(f"Unexpected dispatch error for job {job.id}", extra={"job_id": job.id})
            self._fail(job.id, f"{type(e).__name__}: {e}")
            return False

        if run.run_id is None:
            logger.info(f"Dispatched job {job.id}, run not known yet", extra={"job_id": job.id})
            return True

        try:
            self._attach(job.id, run)
        except ConflictError as e:
            self._fail(job.id, e.message)
            return False
        logger.info(
            f"Dispatched job {job.id} as run {run.run_id}",
            extra={"job_id": job.id, "run_id": run.run_id, "run_url": run.run_url},
        )
        return True

    def _attach(self, job_id: str, run: DispatchResult) -> None:
        if not self.repo.attach_run(job_id, run.run_id, run.run_url):
            logger.warning(
                f"Job {job_id} already has a run id, keeping it",
                extra={"job_id": job_id, "run_id": run.run_id},
            )

    def _fail(self, job_id: str, message: str) -> None:
        message = message[:MAX_ERROR_CHARS]
        self.repo.transition(job_id, JobStatus.FAILED, error_message=message)
        logger.warning(f"Dispatch failed for job {job_id}: {message[:200]}", extra={"job_id": job_id})

    def resolve_runs(self, limit: Optional[int] = None) -> int:
        """Ask the executor for the runs of dispatched jobs that have none yet.

        One lookup per job, no waiting. Jobs whose run is still unknown wait
        for a later tick or the completion callback.
        """
        resolved = 0
        for job in self.repo.list_without_run(limit or self.batch_size):
            run = self.executor.find_run(job.id)
            if run is None or run.run_id is None:
                continue
            try:
                if self.repo.attach_run(job.id, run.run_id, run.run_url):
                    resolved += 1
            except ConflictError as e:
                logger.warning(e.message, extra={"job_id": job.id, "run_id": run.run_id})
        if resolved:
            logger.info(f"Resolved {resolved} CI run(s)", extra={"resolved": resolved})
        return resolved

    def sweep_stale(self, timeout_seconds: int) -> int:
        """Fail processing jobs older than *timeout_seconds* with error "timeout".

        Covers lost completion callbacks (CI crash, dropped webhook).
        """
        now = utcnow()
        swept = self.repo.fail_stale(now - timedelta(seconds=timeout_seconds), now=now)
        if swept:
            logger.warning(
                f"Watchdog failed {swept} job(s) stuck in processing for over {timeout_seconds}s",
                extra={"timed_out": swept},
            )
        return swept
