"""REST client for the sitedeploy API.

Used by scripts and the admin dashboard backend to enqueue a rebuild and
follow it to its outcome. Polling is a plain GET of the status endpoint, so
a missed or repeated poll is harmless.
"""

import logging
import os
import time
from typing import Any, Callable, Dict, Optional

import requests

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = frozenset({"completed", "failed", "cancelled"})


class DeploymentClientError(Exception):
    """Raised when a request fails. ``status_code`` is 0 for network errors."""

    def __init__(self, message: str, status_code: int = 0):
        super().__init__(message)
        self.status_code = status_code

    @property
    def transient(self) -> bool:
        """Whether asking again may succeed: status 0, 429 or 5xx."""
        return self.status_code == 0 or self.status_code == 429 or self.status_code >= 500


class DeploymentClient:
    """Client for the deployment job endpoints.

    Args:
        api_url: Base URL of the API. Defaults to ``SITEDEPLOY_API_URL``.
        api_token: Bearer token sent on every request. Defaults to
                   ``SITEDEPLOY_API_TOKEN``; when empty no auth header is sent.
        timeout: Per-request timeout in seconds.
    """

    def __init__(
        self,
        api_url: Optional[str] = None,
        api_token: Optional[str] = None,
        timeout: float = 30,
    ):
        self.api_url = (api_url or os.getenv("SITEDEPLOY_API_URL") or "").rstrip("/")
        if not self.api_url:
            raise DeploymentClientError(
                "SITEDEPLOY_API_URL not set and no api_url argument provided."
            )
        self.api_token = api_token if api_token is not None else os.getenv("SITEDEPLOY_API_TOKEN", "")
        self.timeout = timeout

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"
        return headers

    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        url = f"{self.api_url}{path}"
        try:
            response = requests.request(
                method, url, headers=self._headers(), timeout=self.timeout, **kwargs
            )
        except requests.exceptions.RequestException as exc:
            raise DeploymentClientError(f"{method} {path} failed: {exc}") from exc

        if not response.ok:
            try:
                message = response.json().get("message") or response.text
            except ValueError:
                message = response.text
            raise DeploymentClientError(
                f"{method} {path} returned {response.status_code}: {message}",
                status_code=response.status_code,
            )
        return response.json()

    # ----- operations ------------------------------------------------------

    def create_job(
        self,
        deployment_type: str = "incremental",
        post_id: Optional[str] = None,
        post_slug: Optional[str] = None,
        post_title: Optional[str] = None,
        triggered_by: str = "api",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Enqueue a job. Returns ``{success, job, deduplicated}``."""
        payload = {
            "deployment_type": deployment_type,
            "triggered_by": triggered_by,
            "post_id": post_id,
            "post_slug": post_slug,
            "post_title": post_title,
            "metadata": metadata or {},
        }
        result = self._request("POST", "/api/deployments", json=payload)
        logger.info(
            "Deployment job %s (deduplicated=%s)",
            result["job"]["id"], result.get("deduplicated", False),
        )
        return result

    def get_status(self, job_id: str) -> Dict[str, Any]:
        """Current job state. Returns ``{success, job, duration_seconds}``."""
        return self._request("GET", f"/api/deployments/{job_id}")

    def retry_job(self, job_id: str) -> Dict[str, Any]:
        return self._request("POST", f"/api/deployments/{job_id}/retry")

    def wait_for_completion(
        self,
        job_id: str,
        interval: float = 5.0,
        timeout: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> Dict[str, Any]:
        """Poll the status endpoint until the job is terminal.

        Returns the job dict from the first terminal response. Network
        errors, 5xx and 429 answers count as a missed poll; other client
        errors are raised. Raises DeploymentClientError if *timeout*
        seconds pass first.
        """
        waited = 0.0
        status = "unknown"
        while True:
            try:
                job = self.get_status(job_id)["job"]
            except DeploymentClientError as exc:
                if not exc.transient:
                    raise
                logger.warning("Poll for job %s missed: %s", job_id, exc)
            else:
                status = job["status"]
                if status in TERMINAL_STATUSES:
                    logger.info("Job %s finished: %s", job_id, status)
                    return job

            if timeout is not None and waited >= timeout:
                raise DeploymentClientError(
                    f"Job {job_id} still {status} after {timeout}s"
                )
            sleep(interval)
            waited += interval
