# backend/tests/routes/test_rest_routes.py
"""
Tests for the REST surface: health, user directory, conversations and
history, including the problem document error format.
"""

from fastapi.testclient import TestClient
import pytest

from courier.database import SessionLocal
from courier.main import app
from courier.models.message import DeleteScope
from courier.services.message_service import LifecyclePolicy, MessageService


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def send(clock):
    def _send(sender_id: str, receiver_id: str, body: str) -> str:
        with SessionLocal() as session:
            service = MessageService(session, clock, LifecyclePolicy())
            return service.create_message(sender_id, receiver_id, body).id

    return _send


def _as(user_id: str) -> dict:
    return {"X-User-Id": user_id}


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["database"] == "ok"
        assert body["connected_users"] == 0

    def test_live(self, client):
        assert client.get("/live").json() == {"status": "ok"}

    def test_prometheus_metrics(self, client):
        response = client.get("/metrics/prometheus")
        assert response.status_code == 200
        assert "courier_prometheus_scrapes_total" in response.text


class TestUsers:
    def test_upsert_and_get(self, client):
        response = client.post(
            "/api/v1/users", json={"userId": "alice", "displayName": "  Alice  "}
        )
        assert response.status_code == 200
        assert response.json()["displayName"] == "Alice"

        fetched = client.get("/api/v1/users/alice").json()
        assert fetched["userId"] == "alice"
        assert fetched["isOnline"] is False

    def test_list_users(self, client, make_user):
        make_user("u2", "Zoe")
        make_user("u1", "Adam")
        body = client.get("/api/v1/users").json()
        assert body["count"] == 2
        assert [u["displayName"] for u in body["users"]] == ["Adam", "Zoe"]

    def test_unknown_user_is_problem_document(self, client):
        response = client.get("/api/v1/users/ghost")
        assert response.status_code == 404
        body = response.json()
        assert body["code"] == "NOT_FOUND"
        assert body["title"] == "Not Found"
        assert body["instance"] == "/api/v1/users/ghost"

    def test_invalid_payload(self, client):
        response = client.post("/api/v1/users", json={"userId": "bad id", "displayName": "X"})
        assert response.status_code == 422
        assert response.json()["code"] == "validation_error"


class TestAuthentication:
    def test_missing_header(self, client):
        response = client.get("/api/v1/conversations")
        assert response.status_code == 401
        assert response.json()["code"] == "UNAUTHENTICATED"

    def test_malformed_header(self, client):
        response = client.get("/api/v1/conversations", headers=_as("not valid"))
        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_USER_ID"


class TestConversations:
    def test_list_most_recent_first(self, client, send):
        send("alice", "bob", "hi bob")
        last = send("carol", "alice", "hi alice")

        body = client.get("/api/v1/conversations", headers=_as("alice")).json()

        assert body["count"] == 2
        assert body["conversations"][0]["otherUserId"] == "carol"
        assert body["conversations"][0]["lastMessageId"] == last
        assert body["conversations"][1]["conversationKey"] == "alice:bob"


class TestHistory:
    def test_history_for_viewer(self, client, send, clock):
        m1 = send("alice", "bob", "one")
        m2 = send("bob", "alice", "two")
        with SessionLocal() as session:
            MessageService(session, clock).delete_message(m1, "bob", DeleteScope.FOR_SENDER_ONLY)

        as_alice = client.get("/api/v1/messages/history/bob", headers=_as("alice")).json()
        as_bob = client.get("/api/v1/messages/history/alice", headers=_as("bob")).json()

        assert [m["id"] for m in as_alice["messages"]] == [m1, m2]
        assert [m["id"] for m in as_bob["messages"]] == [m2]
        assert as_alice["conversationKey"] == "alice:bob"
        assert as_alice["messages"][0]["senderId"] == "alice"

    def test_limit_is_applied(self, client, send):
        ids = [send("alice", "bob", f"m{i}") for i in range(3)]
        body = client.get(
            "/api/v1/messages/history/bob", params={"limit": 2}, headers=_as("alice")
        ).json()
        assert [m["id"] for m in body["messages"]] == ids[-2:]
        assert body["limit"] == 2

    def test_zero_limit_rejected(self, client):
        response = client.get(
            "/api/v1/messages/history/bob", params={"limit": 0}, headers=_as("alice")
        )
        assert response.status_code == 422
