"""
Unit tests for the caller's own profile routes.
"""
from datetime import datetime

from fastapi.testclient import TestClient

from hoa_courts.api.main import app
from hoa_courts.services import auth_service, user_service


def make_profile(user_id=3, hoa_id=1, role="hoa_admin"):
    return {
        "id": user_id,
        "user_id": user_id,
        "hoa_id": hoa_id,
        "full_name": "Robin Admin",
        "phone_number": "+15551234567",
        "household_id": None,
        "role": role,
        "prime_hours": 4.0,
        "standard_hours": 8.0,
        "last_reset": None,
        "is_active": True,
        "created_at": "2025-01-01T00:00:00+00:00",
        "updated_at": "2025-01-01T00:00:00+00:00",
    }


def make_client_with_auth(monkeypatch, profile=None):
    profile = profile or make_profile()

    def fake_verify_token(token):
        return {"user_id": profile["user_id"], "hoa_id": profile["hoa_id"], "role": profile["role"]}

    async def fake_get_user_by_id(session, uid):
        return {"id": profile["user_id"], "email": "robin@example.com"}

    async def fake_get_profile_by_user_id(session, uid):
        return dict(profile)

    monkeypatch.setattr(auth_service, "verify_token", fake_verify_token, raising=True)
    monkeypatch.setattr(user_service, "get_user_by_id", fake_get_user_by_id, raising=True)
    monkeypatch.setattr(user_service, "get_profile_by_user_id", fake_get_profile_by_user_id, raising=True)

    return TestClient(app), {"Authorization": "Bearer dummy"}


def test_get_profile_includes_role_labels_and_next_reset(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch)

    response = client.get("/api/profile", headers=headers)

    assert response.status_code == 200
    body = response.json()
    assert body["role_display_name"] == "HOA Administrator"
    assert body["role_description"].startswith("Can manage members")
    next_reset = datetime.fromisoformat(body["next_reset"])
    assert next_reset.weekday() == 0
    assert (next_reset.hour, next_reset.minute) == (3, 0)


def test_change_password_unexpected_error_is_500(monkeypatch):
    client, headers = make_client_with_auth(monkeypatch)

    async def failing_change(session, user_id, current_password, new_password):
        raise RuntimeError("connection reset")

    monkeypatch.setattr(user_service, "change_password", failing_change)

    response = client.post(
        "/api/profile/password",
        json={"current_password": "oldpass123", "new_password": "newpass456"},
        headers=headers,
    )

    assert response.status_code == 500
    assert response.json() == {"detail": "Error changing password"}
