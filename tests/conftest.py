"""Shared test fixtures for the sitedeploy test suite.

Tests run against a SQLite file by default; set TEST_DATABASE_URL to point
them at PostgreSQL instead. Each test starts from an empty deployment_jobs
table. The app creates its tables on import, so no explicit create_all is
needed here.

The GitHub executor is replaced by ``FakeExecutor``, which records every
dispatch, run lookup and cancel call instead of talking to the network.
"""

import itertools
import os

# Use the test database and quiet, readable logs before any app imports.
os.environ["DATABASE_URL"] = os.environ.get(
    "TEST_DATABASE_URL",
    "sqlite:///./test_sitedeploy.db",
)
os.environ["ENVIRONMENT"] = "development"
os.environ["LOG_FORMAT"] = "text"
os.environ["CRON_SECRET"] = ""
os.environ["CI_CALLBACK_SECRET"] = ""
os.environ["WORDPRESS_WEBHOOK_SECRET"] = ""

import pytest
from sqlalchemy import text
from fastapi.testclient import TestClient

from sitedeploy.database import get_db, SessionLocal
from sitedeploy.main import app
from sitedeploy.api.deployments import get_build_executor
from sitedeploy.services.build_executor import (
    BuildExecutor,
    DispatchError,
    DispatchResult,
)
from sitedeploy.services.deployment_service import DeploymentService

_run_ids = itertools.count(9000)


class FakeExecutor(BuildExecutor):
    """In-memory build executor.

    Args:
        fail: When true every dispatch raises DispatchError.
        report_run: When false dispatch returns no run id, like a real
            ``workflow_dispatch``; the run is only found through ``find_run``.
    """

    def __init__(self, fail: bool = False, report_run: bool = True):
        self.fail = fail
        self.report_run = report_run
        self.dispatched = []
        self.cancelled = []
        self.lookups = []
        self.runs = {}

    def dispatch(self, job_id, deployment_type, content_ref, triggered_by="api"):
        self.dispatched.append(job_id)
        if self.fail:
            raise DispatchError("GitHub API error (500): upstream unavailable", status_code=500)
        run_id = str(next(_run_ids))
        run = DispatchResult(
            run_id=run_id,
            run_url=f"https://github.com/acme/site/actions/runs/{run_id}",
        )
        self.runs[job_id] = run
        return run if self.report_run else DispatchResult()

    def find_run(self, job_id):
        self.lookups.append(job_id)
        return self.runs.get(job_id)

    def cancel_run(self, run_id):
        self.cancelled.append(run_id)
        return True


@pytest.fixture(autouse=True)
def _clean_tables():
    """Empty the job table before each test.

    Runs before the test (not after) so failures leave rows available
    for debugging.
    """
    db = SessionLocal()
    try:
        db.execute(text("DELETE FROM deployment_jobs"))
        db.commit()
    finally:
        db.close()
    yield


@pytest.fixture()
def db():
    """Per-test database session."""
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture()
def executor():
    return FakeExecutor()


@pytest.fixture()
def failing_executor():
    return FakeExecutor(fail=True)


@pytest.fixture()
def deferred_executor():
    """Executor whose dispatches only become visible through find_run."""
    return FakeExecutor(report_run=False)


@pytest.fixture()
def client(db, executor):
    """FastAPI TestClient using the test session and the fake executor."""

    def _override_get_db():
        yield db

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_build_executor] = lambda: executor
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture()
def make_job(db):
    """Factory creating jobs through the service, like a real trigger would."""

    def _make(post_id="42", deployment_type="incremental", source="api", **overrides):
        if deployment_type == "full":
            post_id = None
        overrides.setdefault("post_slug", f"post-{post_id}" if post_id else None)
        return DeploymentService(db).create_job(
            source=source,
            deployment_type=deployment_type,
            post_id=post_id,
            **overrides,
        ).job

    return _make


def make_deployment(post_id="42", **overrides) -> dict:
    """Payload for POST /api/deployments."""
    payload = {
        "post_id": post_id,
        "post_slug": f"post-{post_id}",
        "post_title": f"Post {post_id}",
        "deployment_type": "incremental",
        "triggered_by": "manual",
    }
    payload.update(overrides)
    return payload
