"""
Tests for the REST read path and user actions.

Tests cover:
- GET /api/chat/user/chats and /api/chat/user/unread
- GET /api/chat/{id} (history, read marking, access control)
- DELETE /api/chat/{id}
- POST /api/chat/{id}/report and /api/users/{id}/block
- Health and metrics endpoints
- Consistency with messages sent through the socket relay
"""

import asyncio

import pytest
from fastapi.testclient import TestClient

from sharedish.main import app
from sharedish.storage import SessionLocal, append_message, create_thread


def as_user(user_id: str) -> dict:
    return {"X-User-Id": user_id}


@pytest.fixture(scope="function")
def client(db_tables):
    """Create test client with fresh database for each test."""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def conversation(db_tables):
    """Thread between A and B about P1 with three messages."""
    with SessionLocal() as db:
        thread = create_thread(db, "P1", ("A", "B"))
        append_message(db, thread.id, "A", "Is this still available?")
        append_message(db, thread.id, "B", "Yes, pick up after 6")
        append_message(db, thread.id, "A", "Great, see you then")
        return thread.id


class TestIdentity:

    def test_missing_identity(self, client):
        response = client.get("/api/chat/user/chats")

        assert response.status_code == 401
        assert response.json() == {"detail": "missing user identity"}

    def test_blank_identity(self, client):
        response = client.get("/api/chat/user/unread", headers=as_user("  "))

        assert response.status_code == 401


class TestListChats:

    def test_empty_inbox(self, client):
        response = client.get("/api/chat/user/chats", headers=as_user("A"))

        assert response.status_code == 200
        assert response.json() == {"data": [], "total": 0}

    def test_inbox_with_last_message(self, client, conversation):
        response = client.get("/api/chat/user/chats", headers=as_user("B"))

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 1
        thread = body["data"][0]
        assert thread["id"] == conversation
        assert thread["postId"] == "P1"
        assert thread["users"] == ["A", "B"]
        assert thread["lastMessage"]["sender"] == "A"
        assert thread["lastMessage"]["text"] == "Great, see you then"
        assert thread["lastMessage"]["createdAt"].endswith("Z")

    def test_other_users_threads_not_listed(self, client, conversation):
        response = client.get("/api/chat/user/chats", headers=as_user("C"))

        assert response.json()["total"] == 0


class TestUnreadAndHistory:

    def test_unread_count(self, client, conversation):
        assert client.get("/api/chat/user/unread", headers=as_user("B")).json() == {"count": 2}
        assert client.get("/api/chat/user/unread", headers=as_user("A")).json() == {"count": 1}

    def test_history_in_order_and_marks_read(self, client, conversation):
        response = client.get(f"/api/chat/{conversation}", headers=as_user("B"))

        assert response.status_code == 200
        body = response.json()
        assert body["postId"] == "P1"
        assert [m["text"] for m in body["messages"]] == [
            "Is this still available?",
            "Yes, pick up after 6",
            "Great, see you then",
        ]
        assert [m["sender"] for m in body["messages"]] == ["A", "B", "A"]

        assert client.get("/api/chat/user/unread", headers=as_user("B")).json() == {"count": 0}
        # The other participant's unread messages are untouched
        assert client.get("/api/chat/user/unread", headers=as_user("A")).json() == {"count": 1}

    def test_history_not_found(self, client):
        response = client.get("/api/chat/999", headers=as_user("A"))

        assert response.status_code == 404
        assert response.json() == {"detail": "thread not found"}

    def test_history_forbidden_for_non_participant(self, client, conversation):
        response = client.get(f"/api/chat/{conversation}", headers=as_user("C"))

        assert response.status_code == 403
        assert response.json() == {"detail": "not a participant"}


class TestDeleteChat:

    def test_delete(self, client, conversation):
        response = client.delete(f"/api/chat/{conversation}", headers=as_user("A"))

        assert response.status_code == 200
        assert response.json() == {"status": "deleted"}
        assert client.get(f"/api/chat/{conversation}", headers=as_user("A")).status_code == 404
        assert client.get("/api/chat/user/unread", headers=as_user("B")).json() == {"count": 0}

    def test_delete_forbidden_for_non_participant(self, client, conversation):
        response = client.delete(f"/api/chat/{conversation}", headers=as_user("C"))

        assert response.status_code == 403
        assert client.get(f"/api/chat/{conversation}", headers=as_user("A")).status_code == 200


class TestReport:

    def test_report_other_participant(self, client, conversation):
        response = client.post(
            f"/api/chat/{conversation}/report",
            json={"reportedUserId": "B", "message": "No-show twice"},
            headers=as_user("A"),
        )

        assert response.status_code == 200
        assert response.json() == {"status": "reported"}

        from sharedish.models import ChatReport
        with SessionLocal() as db:
            report = db.query(ChatReport).one()
            assert (report.reporter_id, report.reported_user_id, report.message) == ("A", "B", "No-show twice")

    def test_report_user_outside_thread(self, client, conversation):
        response = client.post(
            f"/api/chat/{conversation}/report",
            json={"reportedUserId": "C"},
            headers=as_user("A"),
        )

        assert response.status_code == 400

    def test_report_validation_error(self, client, conversation):
        response = client.post(f"/api/chat/{conversation}/report", json={}, headers=as_user("A"))

        assert response.status_code == 422


class TestBlock:

    def test_block_hides_conversation(self, client, conversation):
        response = client.post("/api/users/A/block", json={"blockedUserId": "B"}, headers=as_user("A"))

        assert response.status_code == 200
        assert response.json() == {"status": "blocked"}
        assert client.get("/api/chat/user/chats", headers=as_user("A")).json()["total"] == 0

    def test_block_twice(self, client):
        client.post("/api/users/A/block", json={"blockedUserId": "B"}, headers=as_user("A"))
        response = client.post("/api/users/A/block", json={"blockedUserId": "B"}, headers=as_user("A"))

        assert response.json() == {"status": "already_blocked"}

    def test_block_on_behalf_of_another_user(self, client):
        response = client.post("/api/users/A/block", json={"blockedUserId": "B"}, headers=as_user("C"))

        assert response.status_code == 403

    def test_block_self(self, client):
        response = client.post("/api/users/A/block", json={"blockedUserId": "A"}, headers=as_user("A"))

        assert response.status_code == 400


class TestSocketConsistency:

    def test_socket_message_visible_through_rest(self, relay, server, users):
        async def send():
            await relay.on_join_room("sid-a", {"postId": "P1", "userId": "A"})
            await relay.on_send_message("sid-a", {"postId": "P1", "receiverId": "B", "text": "Is this still available?"})

        asyncio.run(send())
        created_at = server.events("receiveMessage")[0]["data"]["createdAt"]

        with TestClient(app) as client:
            inbox = client.get("/api/chat/user/chats", headers=as_user("B")).json()
            thread_id = inbox["data"][0]["id"]
            history = client.get(f"/api/chat/{thread_id}", headers=as_user("B")).json()

        assert history["messages"] == [{
            "id": history["messages"][0]["id"],
            "sender": "A",
            "text": "Is this still available?",
            "createdAt": created_at,
            "read": True,
        }]


class TestHealthAndMetrics:

    def test_live(self, client):
        response = client.get("/health/live")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_ready(self, client):
        response = client.get("/health/ready")

        assert response.status_code == 200
        assert response.json()["status"] == "ready"

    def test_request_id_header(self, client):
        response = client.get("/health/live")

        assert "X-Request-ID" in response.headers

    def test_metrics(self, client):
        client.get("/health/live")

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "http_requests_total" in response.text
        assert "socket_connections" in response.text
