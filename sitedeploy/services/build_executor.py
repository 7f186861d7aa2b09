"""Build executor adapter: hands a claimed job to GitHub Actions.

Deep module: callers pass a job in and get a DispatchResult back, or a
DispatchError. The orchestrator never builds anything itself.

``workflow_dispatch`` answers 204 with no body, so the dispatch itself
carries no run id. The site workflow names its runs after the ``job_id``
input::

    run-name: deploy ${{ inputs.job_id }}

``find_run`` matches on ``display_title`` in a later processing tick, and
the workflow's completion callback sends ``job_id`` as well, so a run that
is never found by lookup is still correlated when it reports back.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Optional

import requests

from ..core.config import Settings

logger = logging.getLogger(__name__)


class DispatchError(Exception):
    """The build executor could not start a run for a job."""

    def __init__(self, message: str, status_code: int = 0):
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class ContentRef:
    """The CMS item an incremental build is scoped to."""
    post_id: Optional[str] = None
    post_slug: Optional[str] = None
    post_title: Optional[str] = None


@dataclass(frozen=True)
class DispatchResult:
    """An accepted dispatch. ``run_id`` is None until the run is known."""
    run_id: Optional[str] = None
    run_url: Optional[str] = None


class BuildExecutor(ABC):
    """Contract for starting an external CI build.

    ``dispatch`` is called at most once per job; the queue processor's
    claim guarantees it. None of the methods wait for the build.
    """

    @abstractmethod
    def dispatch(
        self,
        job_id: str,
        deployment_type: str,
        content_ref: ContentRef,
        triggered_by: str = "api",
    ) -> DispatchResult:
        ...

    def find_run(self, job_id: str) -> Optional[DispatchResult]:
        """Look up the run started for *job_id*. Default knows of none."""
        return None

    def cancel_run(self, run_id: str) -> bool:
        """Ask the executor to stop a run. Best-effort; default does nothing."""
        return False


class GitHubActionsExecutor(BuildExecutor):
    """Triggers the site's deploy workflow through the GitHub REST API.

    Args:
        token: GitHub token with ``actions:write`` on the site repository.
        owner: Repository owner.
        repo: Repository name.
        workflow: Workflow file name, e.g. ``deploy-cloudflare.yml``.
        ref: Branch the workflow runs on.
        api_url: GitHub API base URL.
        timeout: Per-request timeout in seconds.
    """

    def __init__(
        self,
        token: str,
        owner: str,
        repo: str,
        workflow: str = "deploy-cloudflare.yml",
        ref: str = "main",
        api_url: str = "https://api.github.com",
        timeout: int = 30,
    ):
        self.token = token
        self.owner = owner
        self.repo = repo
        self.workflow = workflow
        self.ref = ref
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "GitHubActionsExecutor":
        return cls(
            token=settings.github_token,
            owner=settings.github_owner,
            repo=settings.github_repo,
            workflow=settings.github_workflow,
            ref=settings.github_ref,
            api_url=settings.github_api_url,
        )

    def _headers(self) -> Dict[str, str]:
        return {
            "Accept": "application/vnd.github+json",
            "Authorization": f"Bearer {self.token}",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "sitedeploy/1.0",
        }

    @property
    def _repo_url(self) -> str:
        return f"{self.api_url}/repos/{self.owner}/{self.repo}"

    # ----- dispatch --------------------------------------------------------

    def dispatch(
        self,
        job_id: str,
        deployment_type: str,
        content_ref: ContentRef,
        triggered_by: str = "api",
    ) -> DispatchResult:
        if not self.token or not self.owner or not self.repo:
            raise DispatchError("GitHub executor is not configured (GITHUB_TOKEN/OWNER/REPO)")

        endpoint = f"{self._repo_url}/actions/workflows/{self.workflow}/dispatches"
        payload = {
            "ref": self.ref,
            "inputs": {
                "job_id": job_id,
                "deployment_type": deployment_type,
                "post_id": content_ref.post_id or "",
                "post_slug": content_ref.post_slug or "",
                "triggered_by": triggered_by,
            },
        }

        try:
            response = requests.post(
                endpoint, json=payload, headers=self._headers(), timeout=self.timeout
            )
        except requests.exceptions.RequestException as exc:
            raise DispatchError(f"GitHub API unreachable: {type(exc).__name__}: {exc}") from exc

        if response.status_code >= 300:
            # GitHub error bodies are short JSON documents; keep enough to diagnose.
            raise DispatchError(
                f"GitHub API error ({response.status_code}): {response.text[:500]}",
                status_code=response.status_code,
            )

        logger.info("Workflow dispatched", extra={"job_id": job_id, "workflow": self.workflow})
        return DispatchResult()

    def find_run(self, job_id: str) -> Optional[DispatchResult]:
        """Single lookup of recent dispatched runs. Errors count as not found."""
        endpoint = f"{self._repo_url}/actions/workflows/{self.workflow}/runs"
        params = {"event": "workflow_dispatch", "per_page": 20}

        try:
            response = requests.get(
                endpoint, params=params, headers=self._headers(), timeout=self.timeout
            )
            response.raise_for_status()
        except requests.exceptions.RequestException as exc:
            logger.warning(f"Run lookup failed for job {job_id}: {exc}", extra={"job_id": job_id})
            return None

        for run in response.json().get("workflow_runs", []):
            if job_id in (run.get("display_title") or run.get("name") or ""):
                return DispatchResult(run_id=str(run["id"]), run_url=run.get("html_url"))
        return None

    def cancel_run(self, run_id: str) -> bool:
        try:
            response = requests.post(
                f"{self._repo_url}/actions/runs/{run_id}/cancel",
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as exc:
            logger.warning("Run cancel failed for %s: %s", run_id, exc)
            return False
        return response.ok
