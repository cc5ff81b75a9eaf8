"""
Unit tests for notification API routes.
Tests GET, PUT endpoints for notifications and the WebSocket handshake.
"""
import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from hoa_courts.api.main import app
from hoa_courts.services import auth_service, user_service, notification_service
from hoa_courts.services.exceptions import NotFound
from hoa_courts.database.models import NotificationType


def make_client_with_auth(monkeypatch, user_id=1):
    """Create a test client with mocked authentication."""
    def fake_verify_token(token):
        return {"user_id": user_id, "hoa_id": 1, "role": "member"}

    async def fake_get_user_by_id(session, uid):
        return {
            "id": user_id,
            "email": "test@example.com",
            "created_at": "2020-01-01T00:00:00Z",
            "updated_at": "2020-01-01T00:00:00Z",
        }

    monkeypatch.setattr(auth_service, "verify_token", fake_verify_token, raising=True)
    monkeypatch.setattr(user_service, "get_user_by_id", fake_get_user_by_id, raising=True)

    return TestClient(app), {"Authorization": "Bearer dummy"}


def make_notification(notification_id=1, user_id=1, is_read=False):
    return {
        "id": notification_id,
        "user_id": user_id,
        "type": NotificationType.BOOKING_INVITATION.value,
        "title": "Court Booking Invitation",
        "message": "Alex invited you to play on court 1",
        "data": {"booking_id": 10, "type": "booking_invitation"},
        "actions": [{"action": "accept", "title": "Accept"}, {"action": "decline", "title": "Decline"}],
        "is_read": is_read,
        "read_at": "2024-01-01T00:05:00+00:00" if is_read else None,
        "link_url": "/bookings/10",
        "created_at": "2024-01-01T00:00:00+00:00",
    }


def test_get_notifications(monkeypatch):
    """Test getting user notifications."""
    client, headers = make_client_with_auth(monkeypatch, user_id=1)
    seen = {}

    async def fake_get_user_notifications(session, user_id, limit=50, offset=0, unread_only=False):
        seen.update(user_id=user_id, limit=limit, offset=offset, unread_only=unread_only)
        return {"notifications": [make_notification()], "total_count": 1, "has_more": False}

    monkeypatch.setattr(
        notification_service, "get_user_notifications", fake_get_user_notifications, raising=True
    )

    response = client.get("/api/notifications?limit=10&offset=5&unread_only=true", headers=headers)
    assert response.status_code == 200
    data = response.json()
    assert data["total_count"] == 1
    assert data["notifications"][0]["actions"][0]["action"] == "accept"
    assert seen == {"user_id": 1, "limit": 10, "offset": 5, "unread_only": True}


def test_get_notifications_unauthorized():
    """Test getting notifications without authentication."""
    client = TestClient(app)

    response = client.get("/api/notifications")
    assert response.status_code in (401, 403)


def test_get_notifications_invalid_token(monkeypatch):
    monkeypatch.setattr(auth_service, "verify_token", lambda token: None)
    client = TestClient(app)

    response = client.get("/api/notifications", headers={"Authorization": "Bearer bad"})
    assert response.status_code == 401


def test_get_unread_count(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch)

    async def fake_get_unread_count(session, user_id):
        return 3

    monkeypatch.setattr(notification_service, "get_unread_count", fake_get_unread_count, raising=True)

    response = client.get("/api/notifications/unread-count", headers=headers)
    assert response.status_code == 200
    assert response.json() == {"count": 3}


def test_mark_notification_as_read(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch)

    async def fake_mark_as_read(session, notification_id, user_id):
        return make_notification(notification_id=notification_id, is_read=True)

    monkeypatch.setattr(notification_service, "mark_as_read", fake_mark_as_read, raising=True)

    response = client.put("/api/notifications/7/read", headers=headers)
    assert response.status_code == 200
    assert response.json()["id"] == 7
    assert response.json()["is_read"] is True


def test_mark_notification_as_read_not_found(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch)

    async def fake_mark_as_read(session, notification_id, user_id):
        raise NotFound("Notification not found")

    monkeypatch.setattr(notification_service, "mark_as_read", fake_mark_as_read, raising=True)

    response = client.put("/api/notifications/999/read", headers=headers)
    assert response.status_code == 404
    assert response.json() == {"detail": "Notification not found"}


def test_mark_all_notifications_as_read(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch)

    async def fake_mark_all_as_read(session, user_id):
        return 4

    monkeypatch.setattr(notification_service, "mark_all_as_read", fake_mark_all_as_read, raising=True)

    response = client.put("/api/notifications/mark-all-read", headers=headers)
    assert response.status_code == 200
    assert response.json() == {"success": True, "count": 4}


def test_get_notifications_error_handling(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch)

    async def fake_get_user_notifications(session, user_id, limit=50, offset=0, unread_only=False):
        raise RuntimeError("Database error")

    monkeypatch.setattr(
        notification_service, "get_user_notifications", fake_get_user_notifications, raising=True
    )

    response = client.get("/api/notifications", headers=headers)
    assert response.status_code == 500
    assert response.json()["detail"] == "Error fetching notifications"


class TestNotificationWebSocket:
    def test_missing_token_closes(self):
        client = TestClient(app)
        with client.websocket_connect("/api/ws/notifications") as websocket:
            with pytest.raises(WebSocketDisconnect) as exc_info:
                websocket.receive_text()
        assert exc_info.value.code == 1008

    def test_invalid_token_closes(self, monkeypatch):
        monkeypatch.setattr(auth_service, "verify_token", lambda token: None)
        client = TestClient(app)
        with client.websocket_connect("/api/ws/notifications?token=bad") as websocket:
            with pytest.raises(WebSocketDisconnect) as exc_info:
                websocket.receive_text()
        assert exc_info.value.code == 1008

    def test_ping_pong(self, monkeypatch):
        monkeypatch.setattr(auth_service, "verify_token", lambda token: {"user_id": 5})
        client = TestClient(app)
        with client.websocket_connect("/api/ws/notifications?token=good") as websocket:
            websocket.send_text("ping")
            assert websocket.receive_text() == "pong"
