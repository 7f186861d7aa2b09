"""Service for managing site deployment jobs."""

import uuid
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Union

from sqlalchemy.orm import Session

from ..exceptions import ValidationError, ConflictError
from ..models.deployment_job import (
    DeploymentJob,
    JobStatus,
    DeploymentType,
    TriggerSource,
    RETRYABLE_STATUSES,
    as_utc,
)
from ..repositories.deployment_job_repository import DeploymentJobRepository
from .build_executor import BuildExecutor

logger = logging.getLogger(__name__)

# Build outcomes the CI workflow may report.
OUTCOME_SUCCESS = "success"
OUTCOME_FAILURE = "failure"


@dataclass
class IntakeResult:
    job: DeploymentJob
    deduplicated: bool = False


@dataclass
class OutcomeResult:
    job: Optional[DeploymentJob]
    applied: bool


def _parse_enum(enum_cls, value, field: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(e.value for e in enum_cls)
        raise ValidationError(f"Invalid {field} '{value}'. Must be one of: {allowed}", field=field)


def _clean(value: Optional[Union[str, int]]) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _to_utc(value: Optional[datetime]) -> Optional[datetime]:
    value = as_utc(value)
    return value.astimezone(timezone.utc) if value else None


class DeploymentService:
    """
    Manages the lifecycle of deployment jobs.

    Jobs are created by the WordPress webhook, the admin dashboard, or API
    callers, claimed by the queue processor, and finished by CI callbacks
    or the watchdog. A burst of edits to the same post collapses onto one
    active job.
    """

    def __init__(self, db: Session):
        self.db = db
        self.repo = DeploymentJobRepository(db)

    # ----- intake ----------------------------------------------------------

    def create_job(
        self,
        source: Union[str, TriggerSource],
        deployment_type: Union[str, DeploymentType],
        post_id: Optional[Union[str, int]] = None,
        post_slug: Optional[str] = None,
        post_title: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> IntakeResult:
        """
        Create a pending deployment job, deduplicating by post id.

        Incremental jobs must reference a post; full jobs must not. If a
        pending or processing job already exists for the post, it is
        returned instead of inserting a new row.

        Raises:
            ValidationError: invalid source/type/content combination
            ServiceUnavailableError: the job store is unreachable
        """
        source = _parse_enum(TriggerSource, source, "triggered_by")
        deployment_type = _parse_enum(DeploymentType, deployment_type, "deployment_type")
        post_id, post_slug, post_title = _clean(post_id), _clean(post_slug), _clean(post_title)

        if deployment_type == DeploymentType.INCREMENTAL and not post_id:
            raise ValidationError("Incremental deployments require post_id", field="post_id")
        if deployment_type == DeploymentType.FULL and (post_id or post_slug or post_title):
            raise ValidationError(
                "Full deployments rebuild the whole site and take no post reference",
                field="post_id",
            )
        if metadata is not None and not isinstance(metadata, dict):
            raise ValidationError("metadata must be an object", field="metadata")

        if post_id:
            existing = self.repo.find_active_for_post(post_id)
            if existing:
                logger.info(
                    f"Active job already exists for post {post_id}: {existing.id}",
                    extra={"job_id": existing.id, "post_id": post_id},
                )
                return IntakeResult(job=existing, deduplicated=True)

        job = DeploymentJob(
            id=str(uuid.uuid4()),
            post_id=post_id,
            post_slug=post_slug,
            post_title=post_title,
            status=JobStatus.PENDING.value,
            deployment_type=deployment_type.value,
            triggered_by=source.value,
            job_metadata=dict(metadata or {}),
        )
        inserted = self.repo.insert(job)
        if inserted is None:
            # A concurrent request won the active-post unique index.
            existing = self.repo.find_active_for_post(post_id) if post_id else None
            if existing:
                return IntakeResult(job=existing, deduplicated=True)
            # The winner already finished, so the slot is free again.
            return self.create_job(source, deployment_type, post_id, post_slug, post_title, metadata)

        logger.info(
            f"Enqueued {deployment_type.value} job {job.id} (source: {source.value}, post: {post_id or 'N/A'})",
            extra={"job_id": job.id, "post_id": post_id, "triggered_by": source.value},
        )
        return IntakeResult(job=inserted)

    # ----- reads -----------------------------------------------------------

    def get_job(self, job_id: str) -> DeploymentJob:
        """Get a job by id. Raises JobNotFoundError."""
        return self.repo.get_by_id(job_id)

    def get_status(self, job_id: str) -> Tuple[DeploymentJob, Optional[float]]:
        """Job plus its running/total duration in seconds (None before start)."""
        job = self.repo.get_by_id(job_id)
        return job, job.duration_seconds()

    def list_jobs(
        self,
        status: Optional[str] = None,
        triggered_by: Optional[str] = None,
        post_id: Optional[Union[str, int]] = None,
        created_after: Optional[datetime] = None,
        created_before: Optional[datetime] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Tuple[List[DeploymentJob], int]:
        """
        Job history, newest first, with the total matching count.

        ``post_id`` narrows the history to one post. ``created_after`` and
        ``created_before`` are inclusive; naive datetimes are taken as UTC.
        """
        if status is not None:
            status = _parse_enum(JobStatus, status, "status").value
        if triggered_by is not None:
            triggered_by = _parse_enum(TriggerSource, triggered_by, "triggered_by").value
        if limit < 1 or offset < 0:
            raise ValidationError("limit must be >= 1 and offset >= 0", field="limit")

        created_after = _to_utc(created_after)
        created_before = _to_utc(created_before)
        if created_after and created_before and created_after > created_before:
            raise ValidationError("created_after must not be later than created_before", field="created_after")

        return self.repo.search(
            status=status,
            triggered_by=triggered_by,
            post_id=_clean(post_id),
            created_after=created_after,
            created_before=created_before,
            limit=limit,
            offset=offset,
        )

    def get_stats(self) -> Dict[str, Any]:
        """Counts per status and the mean build time of completed jobs."""
        counts = self.repo.count_by_status()
        stats: Dict[str, Any] = {s.value: counts.get(s.value, 0) for s in JobStatus}
        stats["total"] = sum(counts.values())

        spans = [
            (as_utc(end) - as_utc(start)).total_seconds()
            for start, end in self.repo.completed_time_spans()
        ]
        stats["avg_duration_seconds"] = round(sum(spans) / len(spans), 1) if spans else None
        return stats

    # ----- operator actions ------------------------------------------------

    def retry_job(self, job_id: str) -> IntakeResult:
        """
        Enqueue a fresh job derived from a failed or cancelled one.

        The original row is left untouched; the new job's metadata carries
        ``retry_of``. Raises ConflictError for any other status.
        """
        original = self.repo.get_by_id(job_id)
        if JobStatus(original.status) not in RETRYABLE_STATUSES:
            raise ConflictError(
                original.id,
                original.status,
                f"Only failed or cancelled jobs can be retried (job is {original.status})",
            )

        metadata = dict(original.job_metadata or {})
        metadata["retry_of"] = original.id

        result = self.create_job(
            source=original.triggered_by,
            deployment_type=original.deployment_type,
            post_id=original.post_id,
            post_slug=original.post_slug,
            post_title=original.post_title,
            metadata=metadata,
        )
        logger.info(
            f"Job {original.id} retried as {result.job.id}",
            extra={"job_id": result.job.id, "retry_of": original.id},
        )
        return result

    def cancel_job(
        self,
        job_id: str,
        reason: Optional[str] = None,
        executor: Optional[BuildExecutor] = None,
    ) -> DeploymentJob:
        """
        Cancel a pending or processing job.

        If the job was already dispatched, the CI run is cancelled
        best-effort through *executor*, looking the run up first when it
        is not known yet. Raises ConflictError once terminal.
        """
        job = self.repo.get_by_id(job_id)
        was_dispatched = job.status == JobStatus.PROCESSING.value
        fields = {"error_message": None}
        if reason:
            metadata = dict(job.job_metadata or {})
            metadata["cancel_reason"] = reason
            fields["job_metadata"] = metadata

        if not self.repo.transition(job_id, JobStatus.CANCELLED, **fields):
            job = self.repo.get_by_id(job_id)
            raise ConflictError(job.id, job.status, f"Job {job.id} is already {job.status}")

        job = self.repo.get_by_id(job_id)
        logger.info(f"Job {job_id} cancelled", extra={"job_id": job_id, "reason": reason})

        if executor is None or not was_dispatched:
            return job

        run_id = job.github_run_id
        if run_id is None:
            run = executor.find_run(job_id)
            if run is not None and run.run_id:
                run_id = run.run_id
                try:
                    self.repo.attach_run(job_id, run.run_id, run.run_url)
                except ConflictError:
                    run_id = None
                job = self.repo.get_by_id(job_id)

        if run_id and not executor.cancel_run(run_id):
            logger.warning(
                f"Could not cancel CI run {run_id} for job {job_id}",
                extra={"job_id": job_id, "run_id": run_id},
            )
        return job

    # ----- completion ------------------------------------------------------

    def report_outcome(
        self,
        run_id: Optional[str],
        outcome: str,
        build_hash: Optional[str] = None,
        deployment_url: Optional[str] = None,
        error_message: Optional[str] = None,
        job_id: Optional[str] = None,
    ) -> OutcomeResult:
        """
        Apply a CI build outcome to the job it belongs to.

        The job is found by *job_id* when the workflow sends it, else by
        *run_id*. A processing job whose run was never looked up gets
        *run_id* attached here. A report whose run id disagrees with the
        stored one is dropped.

        Idempotent: a report against a job that is already terminal changes
        nothing. Unknown jobs and runs are logged and dropped (``job`` is None).
        """
        if outcome not in (OUTCOME_SUCCESS, OUTCOME_FAILURE):
            raise ValidationError(
                f"Invalid outcome '{outcome}'. Must be one of: {OUTCOME_SUCCESS}, {OUTCOME_FAILURE}",
                field="outcome",
            )
        if not run_id and not job_id:
            raise ValidationError("An outcome needs run_id or job_id", field="run_id")

        job = self.repo.get_by_id_optional(job_id) if job_id else None
        if job is None and run_id:
            job = self.repo.get_by_run_id(run_id)
        if job is None:
            logger.warning(
                f"Outcome reported for unknown job {job_id or '-'} / run {run_id or '-'}, dropping",
                extra={"job_id": job_id, "run_id": run_id},
            )
            return OutcomeResult(job=None, applied=False)

        if run_id and job.github_run_id is None and job.status == JobStatus.PROCESSING.value:
            try:
                self.repo.attach_run(job.id, run_id, None)
            except ConflictError:
                return OutcomeResult(job=self.repo.get_by_id(job.id), applied=False)
            job = self.repo.get_by_id(job.id)

        if run_id and job.github_run_id and job.github_run_id != run_id:
            logger.warning(
                f"Outcome for run {run_id} does not match job {job.id} (run {job.github_run_id}), dropping",
                extra={"job_id": job.id, "run_id": run_id},
            )
            return OutcomeResult(job=job, applied=False)

        if outcome == OUTCOME_SUCCESS:
            applied = self.repo.transition(
                job.id,
                JobStatus.COMPLETED,
                build_hash=build_hash,
                deployment_url=deployment_url,
            )
        else:
            applied = self.repo.transition(
                job.id,
                JobStatus.FAILED,
                error_message=error_message or "Build failed",
            )

        job = self.repo.get_by_id(job.id)
        run_label = run_id or job.github_run_id or "unknown"
        if applied:
            logger.info(
                f"Job {job.id} {job.status} (run {run_label})",
                extra={"job_id": job.id, "run_id": run_id, "status": job.status},
            )
        else:
            logger.info(
                f"Outcome for run {run_label} ignored, job {job.id} is {job.status}",
                extra={"job_id": job.id, "run_id": run_id, "status": job.status},
            )
        return OutcomeResult(job=job, applied=applied)
