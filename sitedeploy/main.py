"""Main FastAPI application."""

import logging
import re
import time
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from . import __version__
from .database import engine, get_db, init_db, DATABASE_URL
from .api import deployments_router, webhooks_router
from .core.config import settings, ConfigurationError, Environment
from .core.logging_config import setup_logging
from .middleware.exception_handler import (
    sitedeploy_exception_handler,
    request_validation_handler,
    database_unavailable_handler,
)
from .middleware.request_context import RequestContextMiddleware
from .exceptions import SiteDeployError
from .models.deployment_job import DeploymentJob, JobStatus

# Setup logging first
setup_logging(log_level=settings.log_level, log_format=settings.log_format)
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Startup validation: the job store is the single source of truth, so refuse
# to serve anything until it is reachable.
# ---------------------------------------------------------------------------

def _mask_url(url: str) -> str:
    """Mask password in database URL for safe logging."""
    return re.sub(r'://([^:]+):([^@]+)@', r'://\1:***@', url)


def _validate_database_connection() -> None:
    """Test that the database is reachable. Exits with clear message on failure."""
    masked = _mask_url(DATABASE_URL)
    logger.info(f"Connecting to database: {masked}")

    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        logger.info("Database connection verified")
    except Exception as e:
        error_str = str(e)
        if DATABASE_URL.startswith("postgresql"):
            hint = (
                "  Possible fixes:\n"
                "    1. Verify PostgreSQL is running: pg_isready -h <host> -p <port>\n"
                "    2. Check DATABASE_URL in .env or environment variables\n"
            )
        elif DATABASE_URL.startswith("sqlite"):
            hint = "  Check that the directory exists and is writable.\n"
        else:
            hint = ""
        logger.critical(
            "Database connection failed.\n"
            f"  DATABASE_URL: {masked}\n"
            f"{hint}"
            f"  Error: {error_str}"
        )
        raise SystemExit(1)


_validate_database_connection()
init_db()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle for the deployment API."""
    logger.info(f"Environment: {settings.environment.value}")
    try:
        settings.validate_production_config()
    except ConfigurationError as e:
        logger.critical(f"STARTUP BLOCKED: {e}")
        raise SystemExit(1) from e

    if settings.environment == Environment.DEVELOPMENT:
        if not settings.cron_secret:
            logger.warning(
                "SECURITY: CRON_SECRET is empty. "
                "POST /api/deployments/process accepts unauthenticated calls."
            )
        if not settings.ci_callback_secret:
            logger.warning(
                "SECURITY: CI_CALLBACK_SECRET is empty. "
                "Anyone can report build outcomes."
            )
        if not settings.wordpress_webhook_secret:
            logger.warning(
                "SECURITY: WORDPRESS_WEBHOOK_SECRET is empty. "
                "Webhook signature verification is disabled."
            )
        if not settings.github_token:
            logger.warning("GITHUB_TOKEN is empty. Every dispatch will fail.")

    yield


app = FastAPI(
    title="sitedeploy API",
    description=(
        "Deployment job orchestrator for the statically generated site. "
        "Tracks, deduplicates and dispatches rebuild requests from WordPress, "
        "the admin dashboard and API callers to GitHub Actions, and exposes "
        "a pollable status surface.\n\n"
        "**Machine callers:** the scheduler and the CI workflow authenticate "
        "with `Authorization: Bearer <shared secret>`."
    ),
    version=__version__,
    lifespan=lifespan,
)

# Middleware stack (outermost first: CORS wraps request context).
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
)
app.add_middleware(RequestContextMiddleware)

app.add_exception_handler(SiteDeployError, sitedeploy_exception_handler)
app.add_exception_handler(RequestValidationError, request_validation_handler)
app.add_exception_handler(OperationalError, database_unavailable_handler)

db_type = "PostgreSQL" if DATABASE_URL.startswith("postgresql") else "SQLite"
logger.info(
    "sitedeploy API started | env=%s | db=%s | workflow=%s/%s:%s",
    settings.environment.value,
    db_type,
    settings.github_owner or "-",
    settings.github_repo or "-",
    settings.github_workflow,
)

app.include_router(deployments_router)
app.include_router(webhooks_router)


@app.get("/")
def root():
    """Root endpoint."""
    return {
        "name": "sitedeploy API",
        "version": __version__,
        "status": "running"
    }


_startup_time = time.monotonic()


@app.get("/health")
def health_check(db: Session = Depends(get_db)):
    """Health check returning database status, uptime and queue depth.

    Never raises: returns degraded status on DB failure so load balancers
    can still check it without receiving 5xx.
    """
    db_status = "ok"
    pending = 0
    try:
        pending = (
            db.query(DeploymentJob)
            .filter(DeploymentJob.status == JobStatus.PENDING.value)
            .count()
        )
    except Exception:
        db_status = "error"

    return {
        "status": "healthy" if db_status == "ok" else "degraded",
        "db": db_status,
        "uptime_seconds": round(time.monotonic() - _startup_time),
        "version": __version__,
        "pending_jobs": pending,
    }
