"""
Integration tests for the dashboard API

Runs the real app against the test database with Gmail and the LLM replaced
through dependency overrides.
"""

from __future__ import annotations

import pytest
from cryptography.fernet import Fernet
from fastapi.testclient import TestClient

from inbox_helper.api.app import app
from inbox_helper.api.dependencies import get_bucket_classifier, get_gmail_factory
from inbox_helper.api.routes import health
from inbox_helper.classification.classifier import BucketClassifier
from inbox_helper.gmail.client import GmailAuthError, GmailFetchError
from inbox_helper.storage.models import GoogleOAuthToken, MessageDetail, ThreadSummary
from inbox_helper.storage.token_repository import TokenRepository

USER = "local-user"


class FakeGmail:
    """In-memory stand-in for GmailClient"""

    def __init__(self):
        self.threads = [
            ThreadSummary(
                id="m1", subject="URGENT: contract", snippet="Sign today", sender="boss@corp.example",
                received_at=3_000,
            ),
            ThreadSummary(
                id="m2", subject="Weekly digest", snippet="Click to unsubscribe", sender="news@list.example",
                received_at=2_000,
            ),
            ThreadSummary(
                id="m3", subject="Flight to Lisbon", snippet="Your booking is confirmed", sender="air@example.com",
                received_at=1_000,
            ),
        ]
        self.error: Exception | None = None

    def __call__(self, user_id, token, token_store):
        return self

    def _raise(self):
        if self.error is not None:
            raise self.error

    def list_recent_messages(self, limit):
        self._raise()
        return list(self.threads)

    def list_recent_message_ids(self, limit):
        self._raise()
        return [t.id for t in self.threads][:limit]

    def fetch_message_detail(self, message_id):
        self._raise()
        return MessageDetail(
            id=message_id,
            subject="Flight to Lisbon",
            from_address="air@example.com",
            to="me@example.com",
            date="Tue, 14 Nov 2023 22:13:20 +0000",
            html="<p>Booking</p>",
        )


class SpyClassifier(BucketClassifier):
    """Keyword-only classifier recording how many threads each call received"""

    def __init__(self):
        super().__init__(providers=[])
        self.calls: list[list[str]] = []
        self.error: Exception | None = None

    def classify_threads(self, threads, buckets):
        if self.error is not None:
            raise self.error
        self.calls.append([t.id for t in threads])
        return super().classify_threads(threads, buckets)


@pytest.fixture
def gmail():
    return FakeGmail()


@pytest.fixture
def classifier():
    return SpyClassifier()


@pytest.fixture
def client(gmail, classifier):
    app.dependency_overrides[get_gmail_factory] = lambda: gmail
    app.dependency_overrides[get_bucket_classifier] = lambda: classifier
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def connected():
    TokenRepository().save_token(USER, GoogleOAuthToken(access_token="ya29.test"))


@pytest.fixture
def undecryptable_token(monkeypatch):
    """A stored token written under an encryption key that has since been replaced"""
    TokenRepository().save_token(USER, GoogleOAuthToken(access_token="ya29.test"))
    monkeypatch.setenv("INBOX_HELPER_ENCRYPTION_KEY", Fernet.generate_key().decode())


def bucket_of(payload, thread_id):
    for group in payload["grouped"]:
        if any(t["id"] == thread_id for t in group["threads"]):
            return group["bucket"]["name"]
    return None


class TestThreads:
    def test_requires_google_connection(self, client):
        response = client.get("/api/threads")

        assert response.status_code == 400
        assert response.json() == {
            "error": "Google account is not connected",
            "needsGoogleAuth": True,
        }

    def test_fetch_classify_and_group(self, client, connected):
        response = client.get("/api/threads")

        assert response.status_code == 200
        payload = response.json()
        assert payload["limit"] == 200
        assert [b["name"] for b in payload["buckets"]] == [
            "Important",
            "Can Wait",
            "Auto-Archive",
            "Newsletter",
        ]
        assert bucket_of(payload, "m1") == "Important"
        assert bucket_of(payload, "m2") == "Newsletter"
        assert bucket_of(payload, "m3") == "Can Wait"
        thread = payload["grouped"][0]["threads"][0]
        assert set(thread) == {"id", "subject", "snippet", "sender", "receivedAt", "confidence"}
        assert response.headers["X-RateLimit-Limit"] == "30"

    def test_second_fetch_only_classifies_new_mail(self, client, connected, gmail, classifier):
        client.get("/api/threads")
        gmail.threads.append(
            ThreadSummary(id="m4", subject="Lunch?", snippet="Noon works", received_at=4_000)
        )

        response = client.get("/api/threads")

        assert response.status_code == 200
        assert classifier.calls == [["m1", "m2", "m3"], ["m4"]]

    def test_expired_gmail_auth(self, client, connected, gmail):
        gmail.error = GmailAuthError("Gmail rejected credentials: 401")
        response = client.get("/api/threads")

        assert response.status_code == 400
        assert response.json() == {
            "error": "Gmail authorization expired. Please sign in again.",
            "needsGoogleAuth": True,
        }

    def test_undecryptable_token_asks_for_reconnect(self, client, undecryptable_token):
        response = client.get("/api/threads")

        assert response.status_code == 400
        assert response.json() == {
            "error": "Gmail authorization expired. Please sign in again.",
            "needsGoogleAuth": True,
        }

    def test_gmail_failure(self, client, connected, gmail):
        gmail.error = GmailFetchError("Failed to fetch Gmail messages: 503", status=503)
        response = client.get("/api/threads")

        assert response.status_code == 500
        assert response.json() == {"error": "Failed to fetch Gmail messages: 503"}

    def test_classify_uses_stored_threads(self, client, connected, gmail, classifier):
        client.get("/api/threads")
        gmail.error = GmailFetchError("should not be called")

        response = client.post("/api/classify")

        assert response.status_code == 200
        assert bucket_of(response.json(), "m2") == "Newsletter"
        assert classifier.calls == [["m1", "m2", "m3"]]


class TestBuckets:
    def test_create_reclassifies_everything(self, client, connected, classifier):
        client.get("/api/threads")

        response = client.post("/api/buckets", json={"name": "Travel", "description": "Trips"})

        assert response.status_code == 200
        payload = response.json()
        assert [b["name"] for b in payload["buckets"]][-1] == "Travel"
        assert payload["buckets"][-1]["type"] == "custom"
        assert classifier.calls[-1] == ["m1", "m2", "m3"]

    def test_create_validation_error(self, client):
        response = client.post("/api/buckets", json={"name": "x"})

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["formErrors"] == []
        assert "name" in error["fieldErrors"]

    def test_update_bucket(self, client):
        created = client.post("/api/buckets", json={"name": "Travel"}).json()
        bucket_id = created["buckets"][-1]["id"]

        response = client.put(
            "/api/buckets", json={"id": bucket_id, "name": "Trips", "description": "Flights"}
        )

        assert response.status_code == 200
        assert response.json()["buckets"][-1] == {
            "id": bucket_id,
            "name": "Trips",
            "type": "custom",
            "description": "Flights",
        }

    def test_update_unknown_bucket(self, client):
        response = client.put("/api/buckets", json={"id": "9999", "name": "Nope"})

        assert response.status_code == 404
        assert response.json() == {"error": "Bucket not found"}

    def test_delete_bucket_moves_threads(self, client, connected):
        payload = client.get("/api/threads").json()
        newsletter = next(b for b in payload["buckets"] if b["name"] == "Newsletter")

        response = client.request("DELETE", "/api/buckets", json={"id": newsletter["id"]})

        assert response.status_code == 200
        payload = response.json()
        assert "Newsletter" not in [b["name"] for b in payload["buckets"]]
        assert bucket_of(payload, "m2") is not None

    def test_cannot_delete_last_bucket(self, client):
        buckets = client.post("/api/classify").json()["buckets"]
        for bucket in buckets[1:]:
            client.request("DELETE", "/api/buckets", json={"id": bucket["id"]})

        response = client.request("DELETE", "/api/buckets", json={"id": buckets[0]["id"]})

        assert response.status_code == 400
        assert response.json() == {"error": "Cannot delete the last category"}

    def test_reclassify_failure_is_sanitized(self, client, connected, classifier):
        client.get("/api/threads")
        client.post("/api/buckets", json={"name": "Travel"})
        classifier.error = RuntimeError("/srv/app/secret_path.py exploded")

        response = client.post("/api/buckets", json={"name": "Family"})

        assert response.status_code == 500
        assert response.json() == {"error": "Failed to update categories"}


class TestChatSearch:
    def test_keyword_search_over_stored_threads(self, client, connected):
        client.get("/api/threads")

        response = client.post("/api/chat/search", json={"query": "  flight  "})

        assert response.status_code == 200
        payload = response.json()
        assert payload["query"] == "flight"
        assert payload["totalCandidates"] == 3
        assert [r["id"] for r in payload["results"]] == ["m3"]
        assert set(payload["results"][0]) == {"id", "subject", "snippet", "sender", "receivedAt"}

    def test_empty_inbox(self, client):
        response = client.post("/api/chat/search", json={"query": "flight", "limit": 5})

        assert response.status_code == 200
        assert response.json() == {"query": "flight", "totalCandidates": 0, "results": []}

    def test_query_too_short(self, client):
        response = client.post("/api/chat/search", json={"query": " a "})

        assert response.status_code == 400
        assert "query" in response.json()["error"]["fieldErrors"]


class TestMessages:
    def test_detail_requires_connection(self, client):
        response = client.post("/api/messages/detail", json={"id": "m3"})

        assert response.status_code == 400
        assert response.json()["needsGoogleAuth"] is True

    def test_detail(self, client, connected):
        response = client.post("/api/messages/detail", json={"id": "m3"})

        assert response.status_code == 200
        assert response.json() == {
            "id": "m3",
            "subject": "Flight to Lisbon",
            "from": "air@example.com",
            "to": "me@example.com",
            "date": "Tue, 14 Nov 2023 22:13:20 +0000",
            "html": "<p>Booking</p>",
        }

    def test_detail_auth_expired(self, client, connected, gmail):
        gmail.error = GmailAuthError("expired")
        response = client.post("/api/messages/detail", json={"id": "m3"})

        assert response.status_code == 400
        assert response.json()["needsGoogleAuth"] is True

    def test_check_new_without_connection(self, client):
        response = client.post("/api/messages/check-new", json={"knownIds": []})

        assert response.status_code == 200
        assert response.json() == {
            "hasNew": False,
            "newCount": 0,
            "latestIds": [],
            "needsGoogleAuth": True,
        }

    def test_check_new_auth_expired(self, client, connected, gmail):
        gmail.error = GmailAuthError("Gmail rejected credentials: 401")
        response = client.post("/api/messages/check-new", json={"knownIds": []})

        assert response.status_code == 200
        assert response.json() == {
            "hasNew": False,
            "newCount": 0,
            "latestIds": [],
            "needsGoogleAuth": True,
            "error": "Gmail authorization expired. Please sign in again.",
        }

    def test_check_new_undecryptable_token(self, client, undecryptable_token):
        response = client.post("/api/messages/check-new", json={"knownIds": []})

        assert response.status_code == 200
        assert response.json()["needsGoogleAuth"] is True

    def test_detail_undecryptable_token(self, client, undecryptable_token):
        response = client.post("/api/messages/detail", json={"id": "m3"})

        assert response.status_code == 400
        assert response.json() == {
            "error": "Gmail authorization expired. Please sign in again.",
            "needsGoogleAuth": True,
        }

    def test_check_new_counts_unknown_ids(self, client, connected):
        response = client.post("/api/messages/check-new", json={"knownIds": ["m1", "zzz"]})

        assert response.status_code == 200
        assert response.json() == {"hasNew": True, "newCount": 2, "latestIds": ["m1", "m2", "m3"]}

    def test_check_new_nothing_new(self, client, connected):
        response = client.post("/api/messages/check-new", json={"knownIds": ["m1", "m2", "m3"]})
        assert response.json()["hasNew"] is False

    def test_check_new_too_many_ids(self, client):
        response = client.post(
            "/api/messages/check-new", json={"knownIds": [str(i) for i in range(201)]}
        )
        assert response.status_code == 400


class TestSession:
    def test_logout_forgets_token(self, client, connected):
        response = client.post("/api/logout")

        assert response.status_code == 200
        assert response.json() == {"ok": True}
        assert TokenRepository().get_token(USER) is None
        assert client.get("/api/threads").json()["needsGoogleAuth"] is True

    def test_logout_rate_limited(self, client):
        for _ in range(20):
            assert client.post("/api/logout").status_code == 200

        response = client.post("/api/logout")

        assert response.status_code == 429
        assert response.json() == {"error": "Rate limit exceeded"}
        assert "Retry-After" in response.headers


class TestServiceEndpoints:
    def test_root(self, client):
        payload = client.get("/").json()
        assert payload["service"] == "Inbox Helper API"
        assert payload["endpoints"]["threads"] == "/api/threads"

    def test_health(self, client):
        payload = client.get("/health").json()
        assert payload["status"] == "healthy"
        assert payload["llm"] == {"ready": False, "providers": []}

    def test_database_health(self, client):
        payload = client.get("/health/db").json()
        assert payload["schema_valid"] is True
        assert payload["status"] == "healthy"

    def test_debug_stats(self, client, connected):
        client.get("/api/threads")
        payload = client.get("/debug/stats").json()
        assert payload["counters"]["classifier.heuristic_fallback"] == 3

    def test_debug_stats_disabled_in_production(self, client, monkeypatch):
        monkeypatch.setattr(health, "is_production", lambda: True)
        response = client.get("/debug/stats")
        assert response.status_code == 404

    def test_security_headers(self, client):
        response = client.get("/health")
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"
        assert response.headers["Cache-Control"] == "no-store"

    def test_unknown_route_uses_error_envelope(self, client):
        response = client.get("/api/nope")
        assert response.status_code == 404
        assert response.json() == {"error": "Not Found"}
