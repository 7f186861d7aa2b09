"""Shared-secret authentication for machine callers.

Public interface:
    ``require_cron_secret``     guards the scheduled processing trigger.
    ``require_callback_secret`` guards CI completion callbacks.

Both expect ``Authorization: Bearer <secret>``. When the matching secret is
not configured the check is skipped (development only; production startup
refuses empty secrets, see ``Settings.validate_production_config``).
End-user authentication of the dashboard happens upstream of this service.
"""

import hmac
import logging
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .config import settings
from ..exceptions import AuthenticationError

logger = logging.getLogger(__name__)

_bearer_scheme = HTTPBearer(auto_error=False)


def check_shared_secret(
    credentials: Optional[HTTPAuthorizationCredentials],
    expected: str,
    caller: str,
) -> None:
    """Raise AuthenticationError unless *credentials* carry *expected*."""
    if not expected:
        logger.debug(f"No secret configured for {caller}, skipping check")
        return

    if credentials is None:
        raise AuthenticationError(f"Missing bearer credential for {caller}")

    if not hmac.compare_digest(credentials.credentials.encode(), expected.encode()):
        logger.warning(f"Rejected {caller} call with a bad credential")
        raise AuthenticationError(f"Invalid bearer credential for {caller}")


def require_cron_secret(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> None:
    check_shared_secret(credentials, settings.cron_secret, "scheduler")


def require_callback_secret(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> None:
    check_shared_secret(credentials, settings.ci_callback_secret, "CI callback")
