"""Custom exception hierarchy for sitedeploy."""

from enum import Enum
from typing import Optional, Dict, Any


class ErrorCode(str, Enum):
    """Standardized error codes for API responses."""

    # Job errors
    JOB_NOT_FOUND = "JOB_NOT_FOUND"

    # Validation errors
    VALIDATION_ERROR = "VALIDATION_ERROR"

    # State machine errors
    CONFLICT = "CONFLICT"

    # Store or build executor unreachable
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"

    # Webhook errors
    WEBHOOK_VALIDATION_FAILED = "WEBHOOK_VALIDATION_FAILED"

    # Shared-secret auth
    UNAUTHORIZED = "UNAUTHORIZED"

    # Generic errors
    INTERNAL_ERROR = "INTERNAL_ERROR"


class SiteDeployError(Exception):
    """
    Base exception for all sitedeploy errors.

    Provides structured error responses with:
    - Human-readable message
    - Machine-readable error code
    - HTTP status code
    - Optional additional details
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to the JSON error envelope."""
        return {
            "success": False,
            "error": self.error_code.value,
            "message": self.message,
            "details": self.details
        }


class JobNotFoundError(SiteDeployError):
    """Deployment job not found in database."""

    def __init__(self, job_id: str):
        super().__init__(
            f"Deployment job not found: {job_id}",
            ErrorCode.JOB_NOT_FOUND,
            status_code=404,
            details={"job_id": job_id}
        )


class ValidationError(SiteDeployError):
    """Invalid create or retry input. No state was changed."""

    def __init__(self, message: str, field: Optional[str] = None):
        details = {"field": field} if field else {}
        super().__init__(
            message,
            ErrorCode.VALIDATION_ERROR,
            status_code=400,
            details=details
        )


class ConflictError(SiteDeployError):
    """Requested transition is not allowed from the job's current status."""

    def __init__(self, job_id: str, current_status: str, message: Optional[str] = None):
        super().__init__(
            message or f"Job {job_id} is {current_status}",
            ErrorCode.CONFLICT,
            status_code=409,
            details={"job_id": job_id, "status": current_status}
        )


class ServiceUnavailableError(SiteDeployError):
    """Job store or build executor is unreachable. Callers may retry."""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        details = {}
        if original_error:
            details["original_error"] = type(original_error).__name__

        super().__init__(
            message,
            ErrorCode.SERVICE_UNAVAILABLE,
            status_code=503,
            details=details
        )


class WebhookValidationError(SiteDeployError):
    """Webhook signature validation failed."""

    def __init__(self, message: str = "Invalid webhook signature"):
        super().__init__(
            message,
            ErrorCode.WEBHOOK_VALIDATION_FAILED,
            status_code=401,
        )


class AuthenticationError(SiteDeployError):
    """Request lacks the expected shared-secret credential."""

    def __init__(self, message: str = "Invalid or missing credentials"):
        super().__init__(
            message,
            ErrorCode.UNAUTHORIZED,
            status_code=401,
        )
