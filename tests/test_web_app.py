"""Tests for the web API."""

import json
from datetime import datetime, timezone

import httpx
import pytest
from fastapi.testclient import TestClient

from mailtriage.config import CompactionConfig, CompletionConfig, Config, LoggingConfig, SessionConfig
from mailtriage.errors import AuthError, MailboxConnectionError
from mailtriage.models import Message
from mailtriage.web.app import create_app

CREDENTIALS = {"name": "Jane", "email": "jane@example.com", "appPassword": "app-pass"}


def email_payload(id: str, subject: str = "Lunch?") -> dict:
    return {
        "id": id,
        "from": "bob@example.com",
        "subject": subject,
        "receivedAt": "2024-03-01T10:00:00Z",
        "snippet": "Want to grab lunch?",
        "body": "Want to grab lunch?",
    }


def completion_handler(request: httpx.Request) -> httpx.Response:
    prompt = json.loads(request.content)["messages"][0]["content"]
    if "Email Subject: broken" in prompt:
        return httpx.Response(500, text="upstream exploded")
    content = '```json\n{"category": "Personal", "summary": "Lunch invite.", "suggestedResponse": "Sure!", "action": "Reply"}\n```'
    return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})


class FakeFetcher:
    def __init__(self):
        self.calls = []
        self.error: Exception | None = None

    def __call__(self, user, secret, limit, config):
        self.calls.append((user, secret, limit))
        if self.error:
            raise self.error
        return [
            Message(
                id="9",
                sender="bob@example.com",
                subject="Lunch?",
                received_at=datetime(2024, 3, 1, 10, tzinfo=timezone.utc),
                snippet="Want to grab lunch?",
                body="Want to grab lunch?",
                html="<p>Want to grab lunch?</p>",
            )
        ]


def make_config(api_key: str = "test-key") -> Config:
    return Config(
        completion=CompletionConfig(base_url="https://llm.test/v1", api_key=api_key),
        compaction=CompactionConfig(enabled=False),
        session=SessionConfig(secret_key="x" * 40),
        logging=LoggingConfig(audit_file=None),
    )


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def client(fetcher):
    app = create_app(make_config(), fetcher=fetcher, transport=httpx.MockTransport(completion_handler))
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def logged_in(client):
    assert client.post("/api/login", json=CREDENTIALS).status_code == 200
    return client


class TestSession:
    """Tests for login, logout and session state."""

    def test_health(self, client):
        assert client.get("/api/health").json()["status"] == "ok"

    @pytest.mark.parametrize("missing", ["name", "email", "appPassword"])
    def test_login_requires_all_fields(self, client, missing):
        body = {k: v for k, v in CREDENTIALS.items() if k != missing}
        response = client.post("/api/login", json=body)

        assert response.status_code == 400
        assert response.json() == {"error": "Missing required fields"}

    def test_session_state_hides_secret(self, logged_in):
        data = logged_in.get("/api/session").json()

        assert data == {"isLoggedIn": True, "user": {"name": "Jane", "email": "jane@example.com"}}
        assert "app-pass" not in json.dumps(data)

    def test_logout_clears_session(self, logged_in):
        assert logged_in.post("/api/logout").json() == {"success": True}

        assert logged_in.get("/api/session").json()["isLoggedIn"] is False
        assert logged_in.get("/api/emails").status_code == 401


class TestEmails:
    """Tests for GET /api/emails."""

    def test_requires_login(self, client):
        response = client.get("/api/emails")

        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized"}

    def test_returns_messages(self, logged_in, fetcher):
        response = logged_in.get("/api/emails?limit=5")

        assert response.status_code == 200
        emails = response.json()["emails"]
        assert emails[0]["id"] == "9"
        assert emails[0]["from"] == "bob@example.com"
        assert emails[0]["receivedAt"].startswith("2024-03-01T10:00:00")
        assert emails[0]["html"] == "<p>Want to grab lunch?</p>"
        assert fetcher.calls == [("jane@example.com", "app-pass", 5)]

    def test_auth_failure_is_401(self, logged_in, fetcher):
        fetcher.error = AuthError("rejected")
        response = logged_in.get("/api/emails")

        assert response.status_code == 401
        assert "error" in response.json()

    def test_connection_failure_is_500(self, logged_in, fetcher):
        fetcher.error = MailboxConnectionError("unreachable")
        response = logged_in.get("/api/emails")

        assert response.status_code == 500
        assert response.json() == {"error": "Failed to fetch emails"}

    def test_invalid_limit_is_400(self, logged_in):
        assert logged_in.get("/api/emails?limit=0").status_code == 400


class TestTriage:
    """Tests for POST /api/triage."""

    def test_requires_login(self, client):
        response = client.post("/api/triage", json={"email": email_payload("1")})
        assert response.status_code == 401

    def test_missing_email_is_400(self, logged_in):
        response = logged_in.post("/api/triage", json={})

        assert response.status_code == 400
        assert response.json() == {"error": "Email data required"}

    def test_returns_result(self, logged_in):
        response = logged_in.post("/api/triage", json={"email": email_payload("1")})

        assert response.status_code == 200
        assert response.json()["result"] == {
            "messageId": "1",
            "category": "Personal",
            "summary": "Lunch invite.",
            "suggestedResponse": "Sure!",
            "action": "Reply",
        }

    def test_upstream_failure_is_500(self, logged_in):
        response = logged_in.post("/api/triage", json={"email": email_payload("1", subject="broken")})

        assert response.status_code == 500
        assert response.json() == {"error": "Failed to triage email"}

    def test_missing_api_key_is_500(self, fetcher, monkeypatch):
        monkeypatch.delenv("GROQ_API_KEY", raising=False)
        app = create_app(make_config(api_key=""), fetcher=fetcher)
        with TestClient(app) as client:
            client.post("/api/login", json=CREDENTIALS)
            response = client.post("/api/triage", json={"email": email_payload("1")})

        assert response.status_code == 500
        assert "Missing completion API key" in response.json()["error"]


class TestBatchTriage:
    """Tests for POST /api/triage/batch."""

    def test_streams_progress_and_results(self, logged_in):
        emails = [email_payload("1"), email_payload("2", subject="broken"), email_payload("3")]
        triaged = {
            "3": {"messageId": "3", "category": "Work", "summary": "Earlier.", "action": "Archive"}
        }

        response = logged_in.post("/api/triage/batch", json={"emails": emails, "triaged": triaged})

        assert response.status_code == 200
        events = [json.loads(line) for line in response.text.splitlines() if line]
        assert [e["type"] for e in events] == ["progress", "result", "progress", "error", "done"]
        assert events[0]["current"] == 1 and events[0]["total"] == 3
        assert events[1]["result"]["category"] == "Personal"
        assert events[3]["messageId"] == "2"
        assert events[4] == {"type": "done", "triaged": 1, "failed": 1}

    def test_limit(self, logged_in):
        emails = [email_payload(str(i)) for i in range(1, 5)]

        response = logged_in.post("/api/triage/batch", json={"emails": emails, "limit": 1})

        events = [json.loads(line) for line in response.text.splitlines() if line]
        assert [e["type"] for e in events] == ["progress", "result", "done"]

    def test_requires_emails(self, logged_in):
        assert logged_in.post("/api/triage/batch", json={"emails": []}).status_code == 400

    def test_requires_login(self, client):
        response = client.post("/api/triage/batch", json={"emails": [email_payload("1")]})
        assert response.status_code == 401
