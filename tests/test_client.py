"""Tests for DeploymentClient, including the poll-until-terminal loop."""

from unittest.mock import patch, MagicMock

import pytest
import requests

from sitedeploy.client import DeploymentClient, DeploymentClientError

MODULE = "sitedeploy.client"


def _response(status_code=200, json_data=None, text=""):
    resp = MagicMock()
    resp.status_code = status_code
    resp.ok = status_code < 400
    resp.text = text
    resp.json.return_value = json_data if json_data is not None else {}
    return resp


def _status(status):
    return _response(200, {"success": True, "job": {"id": "job-1", "status": status}})


@pytest.fixture()
def api():
    return DeploymentClient(api_url="http://deploy.local/", api_token="tok")


class TestConstruction:

    def test_requires_url(self, monkeypatch):
        monkeypatch.delenv("SITEDEPLOY_API_URL", raising=False)
        with pytest.raises(DeploymentClientError):
            DeploymentClient()

    def test_url_from_environment(self, monkeypatch):
        monkeypatch.setenv("SITEDEPLOY_API_URL", "http://env.local")
        assert DeploymentClient().api_url == "http://env.local"

    def test_no_auth_header_without_token(self, monkeypatch):
        monkeypatch.delenv("SITEDEPLOY_API_TOKEN", raising=False)
        client = DeploymentClient(api_url="http://x")
        assert "Authorization" not in client._headers()


class TestRequests:

    @patch(f"{MODULE}.requests")
    def test_create_job(self, mock_requests, api):
        mock_requests.exceptions = requests.exceptions
        mock_requests.request.return_value = _response(201, {
            "success": True, "deduplicated": False, "job": {"id": "job-1", "status": "pending"},
        })

        result = api.create_job(post_id="42", post_slug="hello", triggered_by="manual")

        assert result["job"]["id"] == "job-1"
        method, url = mock_requests.request.call_args.args
        assert (method, url) == ("POST", "http://deploy.local/api/deployments")
        kwargs = mock_requests.request.call_args.kwargs
        assert kwargs["json"]["post_id"] == "42"
        assert kwargs["json"]["deployment_type"] == "incremental"
        assert kwargs["headers"]["Authorization"] == "Bearer tok"

    @patch(f"{MODULE}.requests")
    def test_error_envelope_raises(self, mock_requests, api):
        mock_requests.exceptions = requests.exceptions
        mock_requests.request.return_value = _response(
            409, {"success": False, "error": "CONFLICT", "message": "Job job-1 is pending"},
        )

        with pytest.raises(DeploymentClientError) as exc:
            api.retry_job("job-1")
        assert exc.value.status_code == 409
        assert "Job job-1 is pending" in str(exc.value)

    @patch(f"{MODULE}.requests")
    def test_network_error_raises(self, mock_requests, api):
        mock_requests.exceptions = requests.exceptions
        mock_requests.request.side_effect = requests.exceptions.ConnectionError("refused")

        with pytest.raises(DeploymentClientError) as exc:
            api.get_status("job-1")
        assert exc.value.status_code == 0


class TestWaitForCompletion:

    @patch(f"{MODULE}.requests")
    def test_stops_at_first_terminal_status(self, mock_requests, api):
        mock_requests.exceptions = requests.exceptions
        mock_requests.request.side_effect = [
            _status("pending"), _status("processing"), _status("completed"), _status("completed"),
        ]
        sleeps = []

        job = api.wait_for_completion("job-1", interval=5, sleep=sleeps.append)

        assert job["status"] == "completed"
        assert mock_requests.request.call_count == 3
        assert sleeps == [5, 5]

    @patch(f"{MODULE}.requests")
    def test_already_terminal_does_not_sleep(self, mock_requests, api):
        mock_requests.exceptions = requests.exceptions
        mock_requests.request.return_value = _status("cancelled")
        sleeps = []

        assert api.wait_for_completion("job-1", sleep=sleeps.append)["status"] == "cancelled"
        assert sleeps == []

    @patch(f"{MODULE}.requests")
    def test_timeout(self, mock_requests, api):
        mock_requests.exceptions = requests.exceptions
        mock_requests.request.return_value = _status("processing")

        with pytest.raises(DeploymentClientError, match="still processing"):
            api.wait_for_completion("job-1", interval=10, timeout=30, sleep=lambda s: None)
        assert mock_requests.request.call_count == 4

    @patch(f"{MODULE}.requests")
    def test_server_error_counts_as_missed_poll(self, mock_requests, api):
        mock_requests.exceptions = requests.exceptions
        mock_requests.request.side_effect = [
            _status("processing"),
            _response(503, {"success": False, "message": "Job store unavailable"}),
            _status("completed"),
        ]
        sleeps = []

        job = api.wait_for_completion("job-1", interval=5, sleep=sleeps.append)

        assert job["status"] == "completed"
        assert sleeps == [5, 5]

    @patch(f"{MODULE}.requests")
    def test_network_error_counts_as_missed_poll(self, mock_requests, api):
        mock_requests.exceptions = requests.exceptions
        mock_requests.request.side_effect = [
            requests.exceptions.ConnectionError("reset"),
            _response(429, text="slow down"),
            _status("failed"),
        ]

        job = api.wait_for_completion("job-1", interval=1, sleep=lambda s: None)

        assert job["status"] == "failed"
        assert mock_requests.request.call_count == 3

    @patch(f"{MODULE}.requests")
    def test_client_error_stops_polling(self, mock_requests, api):
        mock_requests.exceptions = requests.exceptions
        mock_requests.request.return_value = _response(
            404, {"success": False, "error": "JOB_NOT_FOUND", "message": "Deployment job not found: job-1"},
        )

        with pytest.raises(DeploymentClientError) as exc:
            api.wait_for_completion("job-1", sleep=lambda s: None)
        assert exc.value.status_code == 404
        assert mock_requests.request.call_count == 1

    @patch(f"{MODULE}.requests")
    def test_timeout_while_server_keeps_failing(self, mock_requests, api):
        mock_requests.exceptions = requests.exceptions
        mock_requests.request.return_value = _response(502, text="bad gateway")

        with pytest.raises(DeploymentClientError, match="still unknown"):
            api.wait_for_completion("job-1", interval=10, timeout=20, sleep=lambda s: None)
        assert mock_requests.request.call_count == 3
