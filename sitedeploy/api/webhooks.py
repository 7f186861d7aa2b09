"""WordPress webhook endpoint for content-triggered rebuilds."""

import hmac
import hashlib
import logging
from fastapi import APIRouter, Depends, Request
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from ..database import get_db
from ..core.config import settings
from ..exceptions import ValidationError, WebhookValidationError
from ..models.deployment_job import DeploymentType, TriggerSource
from ..schemas.webhook import WordPressPostEvent, WebhookResponse
from ..services.deployment_service import DeploymentService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])

SIGNATURE_HEADER = "X-Webhook-Signature"


def verify_signature(payload: bytes, signature_header: str, secret: str) -> bool:
    """
    Verify an HMAC-SHA256 webhook signature.

    Args:
        payload: Raw request body bytes
        signature_header: Header value in the form ``sha256=<hex digest>``
        secret: Secret shared with the WordPress plugin

    Returns:
        True if signature is valid
    """
    if not signature_header or not signature_header.startswith("sha256="):
        return False

    expected_sig = hmac.new(
        secret.encode("utf-8"),
        payload,
        hashlib.sha256
    ).hexdigest()

    received_sig = signature_header[7:]  # Strip "sha256=" prefix
    return hmac.compare_digest(expected_sig, received_sig)


@router.post("/wordpress", response_model=WebhookResponse)
async def wordpress_webhook(
    request: Request,
    db: Session = Depends(get_db)
):
    """
    Receive WordPress publish/update events and enqueue an incremental rebuild.

    Validates the signature when WORDPRESS_WEBHOOK_SECRET is set, then
    creates a ``triggered_by=wordpress`` job for the post. A burst of saves
    for the same post is deduplicated onto the active job, so editors are
    never blocked by an in-flight build.
    """
    body = await request.body()

    webhook_secret = settings.wordpress_webhook_secret
    if webhook_secret:
        signature = request.headers.get(SIGNATURE_HEADER, "")
        if not verify_signature(body, signature, webhook_secret):
            logger.warning("Webhook signature verification failed")
            raise WebhookValidationError()
    else:
        logger.warning("WORDPRESS_WEBHOOK_SECRET not configured, skipping signature verification")

    try:
        event = WordPressPostEvent.model_validate_json(body)
    except PydanticValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        field = ".".join(str(p) for p in first.get("loc", ())) or None
        raise ValidationError(
            f"Invalid webhook payload: {first.get('msg', 'malformed JSON')}", field=field
        )

    logger.info(
        f"WordPress {event.event_type or 'change'} for post {event.post_id} ({event.post_slug})",
        extra={"post_id": event.post_id, "event_type": event.event_type},
    )

    metadata = {"event_type": event.event_type} if event.event_type else {}
    service = DeploymentService(db)
    result = service.create_job(
        source=TriggerSource.WORDPRESS,
        deployment_type=DeploymentType.INCREMENTAL,
        post_id=event.post_id,
        post_slug=event.post_slug,
        post_title=event.post_title,
        metadata=metadata,
    )

    if result.deduplicated:
        return WebhookResponse(
            status="deduplicated",
            job_id=result.job.id,
            message=f"Deployment already {result.job.status} for post {event.post_id}",
        )
    return WebhookResponse(
        status="queued",
        job_id=result.job.id,
        message=f"Deployment job enqueued for post {event.post_id}",
    )
