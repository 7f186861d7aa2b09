"""Deployment job endpoints: intake, status, history, retry, cancel, processing."""

import logging
from datetime import datetime
from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.orm import Session
from typing import Optional

from ..database import get_db
from ..core.auth import require_cron_secret, require_callback_secret
from ..core.config import settings
from ..models.deployment_job import JobStatus, TriggerSource
from ..schemas.deployment import (
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
from ..services.build_executor import BuildExecutor, GitHubActionsExecutor
from ..services.deployment_service import DeploymentService
from ..services.queue_processor import QueueProcessor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/deployments", tags=["deployments"])


def get_build_executor() -> BuildExecutor:
    """Build executor dependency; tests override it with a fake."""
    return GitHubActionsExecutor.from_settings(settings)


@router.post("", response_model=DeploymentEnvelope, status_code=201)
def create_deployment(
    request: DeploymentCreate,
    db: Session = Depends(get_db),
):
    """Enqueue a deployment job.

    Incremental jobs need a post reference, full jobs take none. If the
    post already has a pending or processing job, that job is returned
    with ``deduplicated: true`` and nothing new is created.
    """
    service = DeploymentService(db)
    result = service.create_job(
        source=request.triggered_by,
        deployment_type=request.deployment_type,
        post_id=request.post_id,
        post_slug=request.post_slug,
        post_title=request.post_title,
        metadata=request.metadata,
    )
    return DeploymentEnvelope(
        job=DeploymentJobResponse.model_validate(result.job),
        deduplicated=result.deduplicated,
    )


@router.get("", response_model=DeploymentListResponse)
def list_deployments(
    status: Optional[JobStatus] = Query(None),
    triggered_by: Optional[TriggerSource] = Query(None),
    post_id: Optional[str] = Query(None, description="Only jobs for this post"),
    created_after: Optional[datetime] = Query(None, description="Inclusive lower bound on created_at"),
    created_before: Optional[datetime] = Query(None, description="Inclusive upper bound on created_at"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    """Job history, newest first, filtered by status, source, post and creation time."""
    service = DeploymentService(db)
    jobs, total = service.list_jobs(
        status=status.value if status else None,
        triggered_by=triggered_by.value if triggered_by else None,
        post_id=post_id,
        created_after=created_after,
        created_before=created_before,
        limit=limit,
        offset=offset,
    )
    return DeploymentListResponse(
        jobs=[DeploymentJobResponse.model_validate(j) for j in jobs],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/stats", response_model=DeploymentStatsResponse)
def deployment_stats(db: Session = Depends(get_db)):
    """Job counts per status and mean build duration for the dashboard."""
    return DeploymentStatsResponse(stats=DeploymentService(db).get_stats())


@router.post("/process", response_model=ProcessResponse, dependencies=[Depends(require_cron_secret)])
def process_deployments(
    db: Session = Depends(get_db),
    executor: BuildExecutor = Depends(get_build_executor),
):
    """Scheduled trigger: sweep timed-out jobs, look up pending CI runs, then claim and dispatch.

    Called by the external scheduler with ``Authorization: Bearer $CRON_SECRET``.
    Overlapping calls are safe.
    """
    processor = QueueProcessor(db, executor, batch_size=settings.process_batch_size)
    timed_out = processor.sweep_stale(settings.job_timeout_seconds)
    resolved = processor.resolve_runs()
    result = processor.process_pending()
    return ProcessResponse(timed_out=timed_out, runs_resolved=resolved, **result.to_dict())


@router.post("/callback", response_model=CompletionResponse, dependencies=[Depends(require_callback_secret)])
def report_completion(
    report: CompletionReport,
    db: Session = Depends(get_db),
):
    """CI workflow reports a build outcome for its job or run.

    Duplicate reports and reports for unknown runs answer 200 with
    ``applied: false``; they never change a terminal job.
    """
    result = DeploymentService(db).report_outcome(
        run_id=report.run_id,
        job_id=report.job_id,
        outcome=report.outcome,
        build_hash=report.build_hash,
        deployment_url=report.deployment_url,
        error_message=report.error_message,
    )
    if result.job is None:
        return CompletionResponse(applied=False)
    return CompletionResponse(
        applied=result.applied,
        job_id=result.job.id,
        status=result.job.status,
    )


@router.get("/{job_id}", response_model=DeploymentStatusResponse)
def get_deployment(
    job_id: str,
    db: Session = Depends(get_db),
):
    """Current state of one job. Safe to poll."""
    job, duration = DeploymentService(db).get_status(job_id)
    return DeploymentStatusResponse(
        job=DeploymentJobResponse.model_validate(job),
        duration_seconds=duration,
    )


@router.post("/{job_id}/retry", response_model=DeploymentEnvelope, status_code=201)
def retry_deployment(
    job_id: str,
    db: Session = Depends(get_db),
):
    """Create a new pending job from a failed or cancelled one."""
    result = DeploymentService(db).retry_job(job_id)
    return DeploymentEnvelope(
        job=DeploymentJobResponse.model_validate(result.job),
        deduplicated=result.deduplicated,
    )


@router.post("/{job_id}/cancel", response_model=DeploymentEnvelope)
def cancel_deployment(
    job_id: str,
    request: Optional[CancelRequest] = Body(None),
    db: Session = Depends(get_db),
    executor: BuildExecutor = Depends(get_build_executor),
):
    """Operator cancellation of a pending or processing job."""
    job = DeploymentService(db).cancel_job(
        job_id,
        reason=request.reason if request else None,
        executor=executor,
    )
    return DeploymentEnvelope(job=DeploymentJobResponse.model_validate(job))
