"""Exception handlers for structured error responses."""

import logging
from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError

from ..exceptions import SiteDeployError, ServiceUnavailableError, ErrorCode

logger = logging.getLogger(__name__)


async def sitedeploy_exception_handler(request: Request, exc: SiteDeployError) -> JSONResponse:
    """
    Handle custom exceptions and return structured JSON responses.

    Client errors log at WARNING, everything else at ERROR.
    """
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        f"{type(exc).__name__}: {exc.error_code.value}",
        extra={
            "error_code": exc.error_code.value,
            "path": request.url.path,
            "method": request.method,
            "details": exc.details,
            "status_code": exc.status_code
        }
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict()
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render FastAPI body/query validation failures in the same envelope."""
    errors = [
        {"field": ".".join(str(p) for p in err.get("loc", ())), "message": err.get("msg", "")}
        for err in exc.errors()
    ]
    logger.warning(
        "Request validation failed",
        extra={"path": request.url.path, "method": request.method, "errors": errors},
    )
    return JSONResponse(
        status_code=422,
        content={
            "success": False,
            "error": ErrorCode.VALIDATION_ERROR.value,
            "message": "Request validation failed",
            "details": {"errors": errors},
        },
    )


async def database_unavailable_handler(request: Request, exc: OperationalError) -> JSONResponse:
    """A lost database connection is a retryable 503, never a bare 500."""
    return await sitedeploy_exception_handler(
        request, ServiceUnavailableError("Job store unavailable", original_error=exc)
    )
