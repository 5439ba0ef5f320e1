"""
Tests for registration, login, profile management, password reset and
the role guards.
"""
from __future__ import annotations

import uuid

from institute.auth import routes_auth
from institute.config import settings
from institute.rate_limit import limiter


def test_register_returns_token(client):
    email = f"new-{uuid.uuid4().hex[:8]}@Example.com"
    resp = client.post("/api/auth/register", json={
        "email": email,
        "password": "secret123",
        "first_name": "Asha",
        "last_name": "Iyer",
        "phone": "+91 90000 00000",
    })
    assert resp.status_code == 201, resp.text
    data = resp.json()["data"]
    assert data["token"]
    assert data["user"]["role"] == "student"
    assert data["user"]["email"] == email.lower()
    assert "password_hash" not in data["user"]


def test_duplicate_email_rejected(client, student):
    resp = client.post("/api/auth/register", json={
        "email": student["email"].upper(),
        "password": "secret123",
        "first_name": "Dup",
        "last_name": "User",
        "phone": "+1 555 0100",
    })
    assert resp.status_code == 400
    assert resp.json() == {"success": False, "message": "User already exists with this email."}


def test_register_cannot_self_assign_admin(client):
    resp = client.post("/api/auth/register", json={
        "email": f"sneaky-{uuid.uuid4().hex[:8]}@example.com",
        "password": "secret123",
        "first_name": "Sneaky",
        "last_name": "User",
        "phone": "+1 555 0100",
        "role": "admin",
    })
    assert resp.status_code == 400
    assert resp.json()["message"] == "Validation error"


def test_login_and_me(client, student):
    resp = client.post("/api/auth/login", json={"email": student["email"], "password": "secret123"})
    assert resp.status_code == 200
    token = resp.json()["data"]["token"]

    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["data"]["user"]["email"] == student["email"]


def test_login_wrong_password(client, student):
    resp = client.post("/api/auth/login", json={"email": student["email"], "password": "nope-nope"})
    assert resp.status_code == 401
    assert resp.json()["message"] == "Invalid credentials."


def test_login_rate_limit_sends_retry_after(client, monkeypatch):
    allowed = int(settings.login_rate_limit.split("/")[0])
    monkeypatch.setattr(limiter, "enabled", True)
    limiter.reset()
    try:
        creds = {"email": "nobody@example.com", "password": "wrong-pass"}
        for _ in range(allowed):
            assert client.post("/api/auth/login", json=creds).status_code == 401
        resp = client.post("/api/auth/login", json=creds)
    finally:
        limiter.reset()

    assert resp.status_code == 429
    assert resp.json()["success"] is False
    assert int(resp.headers["Retry-After"]) > 0


def test_me_requires_token(client):
    resp = client.get("/api/auth/me")
    assert resp.status_code == 401
    assert resp.json() == {"success": False, "message": "No credentials provided."}


def test_garbage_token_rejected(client):
    resp = client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert resp.status_code == 401
    assert resp.json()["message"] == "Invalid or expired token."


def test_instructor_me_includes_profile(client, make_user):
    user = make_user("instructor")
    data = client.get("/api/auth/me", headers=user["headers"]).json()["data"]
    assert data["instructor_profile"]["is_approved"] is False


def test_update_profile(client, make_user):
    user = make_user("instructor")
    resp = client.put(
        "/api/auth/me",
        json={"first_name": "Meera", "designation": "Senior Physics Faculty", "experience_years": 8},
        headers=user["headers"],
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["user"]["first_name"] == "Meera"
    profile = client.get("/api/auth/me", headers=user["headers"]).json()["data"]["instructor_profile"]
    assert profile["designation"] == "Senior Physics Faculty"
    assert profile["experience_years"] == 8


def test_change_password(client, student):
    resp = client.put(
        "/api/auth/me/password",
        json={"current_password": "wrong-one", "new_password": "another123"},
        headers=student["headers"],
    )
    assert resp.status_code == 400

    resp = client.put(
        "/api/auth/me/password",
        json={"current_password": "secret123", "new_password": "another123"},
        headers=student["headers"],
    )
    assert resp.status_code == 200
    login = client.post("/api/auth/login", json={"email": student["email"], "password": "another123"})
    assert login.status_code == 200


def test_forgot_password_does_not_reveal_accounts(client):
    resp = client.post("/api/auth/forgot-password", json={"email": "nobody@example.com"})
    assert resp.status_code == 200
    assert resp.json()["success"] is True


def test_password_reset_flow(client, student, monkeypatch):
    sent = {}

    def capture(to_addr, first_name, token):
        sent["token"] = token
        return True

    monkeypatch.setattr(routes_auth, "send_password_reset_email", capture)
    resp = client.post("/api/auth/forgot-password", json={"email": student["email"]})
    assert resp.status_code == 200
    assert sent["token"]

    resp = client.post("/api/auth/reset-password", json={"token": sent["token"], "password": "brandnew1"})
    assert resp.status_code == 200
    assert client.post("/api/auth/login", json={"email": student["email"], "password": "brandnew1"}).status_code == 200

    # Tokens are single use
    resp = client.post("/api/auth/reset-password", json={"token": sent["token"], "password": "again1234"})
    assert resp.status_code == 400
    assert resp.json()["message"] == "Invalid or expired reset token."


def test_deactivated_user_cannot_log_in(client, admin_headers, student):
    resp = client.put(f"/api/admin/users/{student['id']}/status", json={"isActive": False}, headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json()["message"] == "User deactivated successfully"

    login = client.post("/api/auth/login", json={"email": student["email"], "password": "secret123"})
    assert login.status_code == 401
    assert login.json()["message"] == "Account is deactivated."
    # Existing tokens stop working too
    assert client.get("/api/auth/me", headers=student["headers"]).status_code == 401


def test_unknown_route_uses_envelope(client):
    resp = client.get("/api/does-not-exist")
    assert resp.status_code == 404
    body = resp.json()
    assert body["success"] is False
    assert body["message"] == "API endpoint not found"
    assert body["path"] == "/api/does-not-exist"


def test_health(client):
    assert client.get("/health").json()["status"] == "healthy"
