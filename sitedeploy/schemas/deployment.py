"""Deployment job schemas."""

from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Union

from ..models.deployment_job import DeploymentType, TriggerSource


def _to_str(v: Optional[Union[int, str]]) -> Optional[str]:
    # WordPress sends numeric post ids; they are stored as strings.
    if v is None:
        return None
    return str(v)


class DeploymentCreate(BaseModel):
    """Request to enqueue a deployment job."""
    post_id: Optional[Union[int, str]] = None
    post_slug: Optional[str] = None
    post_title: Optional[str] = None
    deployment_type: DeploymentType = DeploymentType.INCREMENTAL
    triggered_by: TriggerSource = TriggerSource.API
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("post_id")
    @classmethod
    def normalize_post_id(cls, v: Optional[Union[int, str]]) -> Optional[str]:
        return _to_str(v)

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "post_id": "42",
                    "post_slug": "hello-world",
                    "post_title": "Hello World",
                    "deployment_type": "incremental",
                    "triggered_by": "manual",
                },
                {"deployment_type": "full", "triggered_by": "manual"},
            ]
        }
    }


class DeploymentJobResponse(BaseModel):
    """Schema for a deployment job."""
    id: str
    post_id: Optional[str] = None
    post_slug: Optional[str] = None
    post_title: Optional[str] = None
    status: str
    deployment_type: str
    triggered_by: str
    github_run_id: Optional[str] = None
    github_run_url: Optional[str] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    build_hash: Optional[str] = None
    deployment_url: Optional[str] = None
    metadata: Dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("job_metadata", "metadata"),
    )

    class Config:
        from_attributes = True


class DeploymentEnvelope(BaseModel):
    """Single job response. ``deduplicated`` is true when an active job was reused."""
    success: bool = True
    job: DeploymentJobResponse
    deduplicated: bool = False


class DeploymentStatusResponse(BaseModel):
    success: bool = True
    job: DeploymentJobResponse
    duration_seconds: Optional[float] = None


class DeploymentListResponse(BaseModel):
    success: bool = True
    jobs: List[DeploymentJobResponse]
    total: int
    limit: int
    offset: int


class DeploymentStatsResponse(BaseModel):
    success: bool = True
    stats: Dict[str, Any]


class CancelRequest(BaseModel):
    """Optional body for operator cancellation."""
    reason: Optional[str] = None


class ProcessResponse(BaseModel):
    """Result of a scheduled processing run."""
    success: bool = True
    claimed: int
    dispatched: int
    dispatch_failures: int
    timed_out: int
    runs_resolved: int = 0
    job_ids: List[str] = []


class CompletionReport(BaseModel):
    """Build outcome posted by the CI workflow.

    The workflow sends its ``job_id`` input, its own run id, or both.
    """
    run_id: Optional[Union[int, str]] = None
    job_id: Optional[str] = None
    outcome: Literal["success", "failure"]
    build_hash: Optional[str] = None
    deployment_url: Optional[str] = None
    error_message: Optional[str] = None

    @field_validator("run_id")
    @classmethod
    def normalize_run_id(cls, v: Optional[Union[int, str]]) -> Optional[str]:
        return _to_str(v)

    @model_validator(mode="after")
    def require_correlation(self) -> "CompletionReport":
        if not self.run_id and not self.job_id:
            raise ValueError("run_id or job_id is required")
        return self


class CompletionResponse(BaseModel):
    success: bool = True
    applied: bool
    job_id: Optional[str] = None
    status: Optional[str] = None
