"""WordPress webhook schemas."""

from pydantic import BaseModel, field_validator
from typing import Optional, Union


class WordPressPostEvent(BaseModel):
    """Payload sent by the WordPress auto-rebuild plugin on publish/update."""
    post_id: Union[int, str]
    post_slug: str
    post_title: Optional[str] = None
    event_type: Optional[str] = None  # "publish", "update", ...

    @field_validator("post_id")
    @classmethod
    def normalize_post_id(cls, v: Union[int, str]) -> str:
        v = str(v).strip()
        if not v:
            raise ValueError("post_id must not be empty")
        return v

    @field_validator("post_slug")
    @classmethod
    def validate_slug(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("post_slug must not be empty")
        return v


class WebhookResponse(BaseModel):
    """Response after receiving a webhook."""
    success: bool = True
    status: str
    job_id: Optional[str] = None
    message: str
