"""
pytest configuration – point the app at a throwaway database and upload
directory before anything imports it, then initialise tables.
Provides a shared session-scoped admin token and helpers for creating
students and instructors.
"""
import os
import tempfile
import uuid

_TMP = tempfile.mkdtemp(prefix="institute-tests-")
os.environ["INSTITUTE_DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP, 'test_institute.db')}"
os.environ["INSTITUTE_UPLOAD_DIR"] = os.path.join(_TMP, "uploads")
os.environ["INSTITUTE_ENVIRONMENT"] = "development"
os.environ["INSTITUTE_RATE_LIMIT_ENABLED"] = "false"
os.environ["INSTITUTE_LOG_FORMAT"] = "text"
os.environ["INSTITUTE_RECAPTCHA_SECRET_KEY"] = ""
os.environ["INSTITUTE_SMTP_HOST"] = ""
os.environ["INSTITUTE_ADMIN_EMAIL"] = "admin@institute.local"
os.environ["INSTITUTE_ADMIN_PASSWORD"] = "changeme"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from institute.database import Base, engine  # noqa: E402
from institute import models  # noqa: E402,F401 – registers ORM mappings with Base.metadata
from institute.auth.seed import seed_admin  # noqa: E402
from institute.contact.factory import build_contact_pipeline  # noqa: E402
from institute.main import app  # noqa: E402


@pytest.fixture(autouse=True, scope="session")
def create_tables():
    Base.metadata.create_all(bind=engine)
    seed_admin()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def fresh_contact_pipeline():
    """Each test gets its own contact counters and CAPTCHA challenges."""
    app.state.contact_pipeline = build_contact_pipeline()
    yield app.state.contact_pipeline


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


# Session-scoped admin token - login happens ONCE per test run
_session_token: str | None = None


@pytest.fixture(scope="session")
def admin_token() -> str:
    global _session_token
    if _session_token is None:
        client = TestClient(app)
        resp = client.post("/api/auth/login", json={"email": "admin@institute.local", "password": "changeme"})
        assert resp.status_code == 200, f"Login failed: {resp.text}"
        _session_token = resp.json()["data"]["token"]
    return _session_token


@pytest.fixture
def admin_headers(admin_token) -> dict:
    return {"Authorization": f"Bearer {admin_token}"}


def register_user(client: TestClient, role: str = "student", **overrides) -> dict:
    """Register a fresh account; returns ``{"id", "email", "token", "headers"}``."""
    body = {
        "email": f"{role}-{uuid.uuid4().hex[:10]}@example.com",
        "password": "secret123",
        "first_name": "Test",
        "last_name": role.capitalize(),
        "phone": "+1 555 0100",
        "role": role,
    }
    body.update(overrides)
    resp = client.post("/api/auth/register", json=body)
    assert resp.status_code == 201, resp.text
    data = resp.json()["data"]
    return {
        "id": data["user"]["id"],
        "email": body["email"],
        "password": body["password"],
        "token": data["token"],
        "headers": {"Authorization": f"Bearer {data['token']}"},
    }


@pytest.fixture
def make_user(client):
    def _make(role: str = "student", **overrides) -> dict:
        return register_user(client, role, **overrides)
    return _make


@pytest.fixture
def student(client) -> dict:
    return register_user(client, "student")


@pytest.fixture
def instructor(client, admin_headers) -> dict:
    """An instructor an admin has already approved."""
    user = register_user(client, "instructor")
    resp = client.put(f"/api/admin/instructors/{user['id']}/approve", headers=admin_headers)
    assert resp.status_code == 200, resp.text
    return user


@pytest.fixture
def course(client, instructor) -> dict:
    resp = client.post(
        "/api/courses",
        json={
            "name": f"Physics {uuid.uuid4().hex[:6]}",
            "description": "Mechanics, waves and thermodynamics for board exams.",
            "fees": 4500,
            "duration": "6 months",
        },
        headers=instructor["headers"],
    )
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]
