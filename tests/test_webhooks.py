"""Tests for the WordPress webhook endpoint and its HMAC signature check."""

import hashlib
import hmac
import json

import pytest

from sitedeploy.api.webhooks import verify_signature
from sitedeploy.core.config import settings

SECRET = "wp-hook-secret"


def _sign(body: bytes, secret: str = SECRET) -> str:
    return "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def _event(post_id=42, **overrides) -> bytes:
    payload = {
        "post_id": post_id,
        "post_slug": "hello-world",
        "post_title": "Hello World",
        "event_type": "publish",
    }
    payload.update(overrides)
    return json.dumps(payload).encode()


@pytest.fixture()
def signed(monkeypatch):
    monkeypatch.setattr(settings, "wordpress_webhook_secret", SECRET)


class TestVerifySignature:

    def test_valid_signature(self):
        body = b'{"post_id": 1}'
        assert verify_signature(body, _sign(body), SECRET) is True

    def test_wrong_secret(self):
        body = b'{"post_id": 1}'
        assert verify_signature(body, _sign(body, "other"), SECRET) is False

    def test_tampered_body(self):
        assert verify_signature(b'{"post_id": 2}', _sign(b'{"post_id": 1}'), SECRET) is False

    def test_missing_prefix(self):
        body = b"{}"
        digest = hmac.new(SECRET.encode(), body, hashlib.sha256).hexdigest()
        assert verify_signature(body, digest, SECRET) is False

    def test_empty_header(self):
        assert verify_signature(b"{}", "", SECRET) is False


class TestWordPressWebhook:

    def test_unsigned_accepted_without_secret(self, client):
        resp = client.post("/api/webhooks/wordpress", content=_event())
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "queued"

        job = client.get(f"/api/deployments/{data['job_id']}").json()["job"]
        assert job["triggered_by"] == "wordpress"
        assert job["deployment_type"] == "incremental"
        assert job["post_id"] == "42"
        assert job["metadata"] == {"event_type": "publish"}

    def test_burst_of_saves_is_deduplicated(self, client):
        first = client.post("/api/webhooks/wordpress", content=_event()).json()
        second = client.post("/api/webhooks/wordpress", content=_event(event_type="update")).json()
        assert second["status"] == "deduplicated"
        assert second["job_id"] == first["job_id"]

    def test_valid_signature_accepted(self, client, signed):
        body = _event()
        resp = client.post(
            "/api/webhooks/wordpress",
            content=body,
            headers={"X-Webhook-Signature": _sign(body)},
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "queued"

    def test_missing_signature_rejected(self, client, signed):
        resp = client.post("/api/webhooks/wordpress", content=_event())
        assert resp.status_code == 401
        assert resp.json()["error"] == "WEBHOOK_VALIDATION_FAILED"
        assert client.get("/api/deployments").json()["total"] == 0

    def test_bad_signature_rejected(self, client, signed):
        resp = client.post(
            "/api/webhooks/wordpress",
            content=_event(),
            headers={"X-Webhook-Signature": _sign(b"something else")},
        )
        assert resp.status_code == 401

    def test_missing_slug_is_400(self, client):
        body = json.dumps({"post_id": 7}).encode()
        resp = client.post("/api/webhooks/wordpress", content=body)
        assert resp.status_code == 400
        assert resp.json()["details"]["field"] == "post_slug"

    def test_malformed_json_is_400(self, client):
        resp = client.post("/api/webhooks/wordpress", content=b"not json")
        assert resp.status_code == 400
        assert resp.json()["error"] == "VALIDATION_ERROR"
