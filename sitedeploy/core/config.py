"""Application configuration with validation."""

from enum import Enum
from pydantic_settings import BaseSettings
from pydantic import Field, field_validator
from typing import List


class Environment(str, Enum):
    """Application environment."""
    DEVELOPMENT = "development"
    PRODUCTION = "production"


class ConfigurationError(Exception):
    """Raised when application configuration is invalid for the environment."""
    pass


class Settings(BaseSettings):
    """
    Application settings with validation.

    Uses Pydantic for configuration validation, preventing
    common security issues like wildcard CORS or empty shared secrets
    in production.
    """

    # Environment
    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Application environment (development/production)"
    )

    # CORS Configuration (admin dashboard origin)
    cors_allowed_origins: str = Field(
        default="http://localhost:3000,http://localhost:3001",
        description="Allowed CORS origins (comma-separated)"
    )

    # Database Configuration
    database_url: str = Field(
        default="sqlite:///./sitedeploy.db",
        description="Database connection URL"
    )
    # Connection pool tuning (PostgreSQL only; ignored for SQLite).
    db_pool_size: int = Field(
        default=5,
        description="Number of persistent database connections"
    )
    db_max_overflow: int = Field(
        default=10,
        description="Extra connections allowed during traffic bursts"
    )
    db_pool_timeout: int = Field(
        default=30,
        description="Seconds to wait for a connection from the pool before raising"
    )
    db_pool_recycle: int = Field(
        default=1800,
        description="Seconds before a connection is recycled (prevents stale connections)"
    )

    # Shared secrets
    # CRON_SECRET: bearer credential the external scheduler presents to
    # POST /api/deployments/process. Empty = endpoint open (dev only).
    cron_secret: str = Field(
        default="",
        description="Bearer secret for the scheduled processing trigger"
    )
    # CI_CALLBACK_SECRET: bearer credential the CI workflow presents when
    # reporting a build outcome.
    ci_callback_secret: str = Field(
        default="",
        description="Bearer secret for CI completion callbacks"
    )
    # HMAC secret shared with the WordPress auto-rebuild plugin.
    wordpress_webhook_secret: str = Field(
        default="",
        description="WordPress webhook secret for HMAC signature verification"
    )

    # Build executor (GitHub Actions)
    github_token: str = Field(
        default="",
        description="GitHub token with actions:write on the site repository"
    )
    github_owner: str = Field(default="", description="Owner of the site repository")
    github_repo: str = Field(default="", description="Name of the site repository")
    github_workflow: str = Field(
        default="deploy-cloudflare.yml",
        description="Workflow file that builds and publishes the site"
    )
    github_ref: str = Field(default="main", description="Branch the workflow runs on")
    github_api_url: str = Field(default="https://api.github.com")

    # Queue processing
    process_batch_size: int = Field(
        default=10,
        description="Maximum pending jobs claimed per processing run"
    )
    # Processing jobs older than this are failed by the watchdog.
    job_timeout_seconds: int = Field(
        default=1800,
        description="Seconds a job may stay in processing before it is marked failed"
    )
    worker_poll_interval: int = Field(
        default=10,
        description="Seconds between worker polling ticks"
    )

    # Logging Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    log_format: str = Field(
        default="json",
        description="Log output format: 'json' for structured, 'text' for human-readable"
    )

    def get_cors_origins(self) -> List[str]:
        """
        Get CORS origins as a list.

        Parses comma-separated string and validates no wildcards.
        """
        origins = [origin.strip() for origin in self.cors_allowed_origins.split(',') if origin.strip()]

        # SECURITY: Prevent wildcard CORS
        if "*" in origins:
            raise ValueError(
                "Wildcard CORS (*) not allowed. "
                "Specify explicit origins in CORS_ALLOWED_ORIGINS"
            )

        return origins

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is one of the standard Python logging levels."""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v_upper

    @field_validator('job_timeout_seconds', 'process_batch_size')
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("Must be a positive integer")
        return v

    def validate_production_config(self) -> None:
        """Validate configuration for production environment.

        In production, fails startup if security-critical settings are empty.
        In development, returns silently; main.py logs warnings.

        Raises:
            ConfigurationError: If production config is insecure.
        """
        errors: list[str] = []

        if not self.cron_secret:
            errors.append(
                "CRON_SECRET is empty. The processing trigger would accept "
                "unauthenticated calls. Generate one: openssl rand -hex 32"
            )

        if not self.ci_callback_secret:
            errors.append(
                "CI_CALLBACK_SECRET is empty. Anyone could report build outcomes."
            )

        if not self.wordpress_webhook_secret:
            errors.append(
                "WORDPRESS_WEBHOOK_SECRET is empty. "
                "Webhook signature verification would be disabled."
            )

        origins = self.get_cors_origins()
        localhost_origins = [o for o in origins if "localhost" in o or "127.0.0.1" in o]
        if localhost_origins:
            errors.append(
                f"CORS allows localhost origins: {localhost_origins}. "
                "Remove localhost origins for production."
            )

        if errors:
            if self.environment == Environment.PRODUCTION:
                raise ConfigurationError(
                    "Production configuration is insecure:\n  - " + "\n  - ".join(errors)
                )
            return

    class Config:
        """Pydantic configuration."""
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


# Global settings instance
settings = Settings()
