"""
Tests for the course catalog: authoring permissions, soft deletes,
subjects and material uploads.
"""
from __future__ import annotations

import io
import uuid
from pathlib import Path

from fastapi import UploadFile

from institute.config import settings
from institute.storage import staged_upload, staging_dir


def _course_body(**overrides) -> dict:
    body = {
        "name": f"Chemistry {uuid.uuid4().hex[:6]}",
        "description": "Organic and inorganic chemistry for entrance exams.",
        "fees": 3200,
        "duration": "4 months",
    }
    body.update(overrides)
    return body


# ---------------------------------------------------------------------------
# Authoring
# ---------------------------------------------------------------------------

def test_instructor_owns_created_course(course, instructor):
    assert course["instructor_id"] == instructor["id"]
    assert course["is_active"] is True
    assert course["enrollment_count"] == 0


def test_pending_instructor_cannot_create(client, make_user):
    pending = make_user("instructor")
    resp = client.post("/api/courses", json=_course_body(), headers=pending["headers"])
    assert resp.status_code == 403
    assert resp.json()["message"] == "Instructor account is pending approval."


def test_student_cannot_create(client, student):
    resp = client.post("/api/courses", json=_course_body(), headers=student["headers"])
    assert resp.status_code == 403


def test_admin_assigns_instructor(client, admin_headers, instructor, student):
    resp = client.post("/api/courses", json=_course_body(instructor_id=instructor["id"]), headers=admin_headers)
    assert resp.status_code == 201
    assert resp.json()["data"]["instructor_id"] == instructor["id"]

    resp = client.post("/api/courses", json=_course_body(instructor_id=student["id"]), headers=admin_headers)
    assert resp.status_code == 400


def test_invalid_course_body(client, instructor):
    resp = client.post("/api/courses", json=_course_body(fees=-1), headers=instructor["headers"])
    assert resp.status_code == 400
    assert resp.json()["error"].startswith("fees")


def test_only_owner_or_admin_can_update(client, course, make_user, admin_headers):
    other = make_user("instructor")
    client.put(f"/api/admin/instructors/{other['id']}/approve", headers=admin_headers)

    resp = client.put(f"/api/courses/{course['id']}", json={"fees": 1}, headers=other["headers"])
    assert resp.status_code == 403

    resp = client.put(f"/api/courses/{course['id']}", json={"fees": 5000}, headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json()["data"]["fees"] == 5000


# ---------------------------------------------------------------------------
# Public catalog & soft delete
# ---------------------------------------------------------------------------

def test_public_listing_and_search(client, course):
    resp = client.get("/api/courses", params={"search": course["name"]})
    data = resp.json()["data"]
    assert [c["id"] for c in data["courses"]] == [course["id"]]
    assert data["pagination"]["total"] == 1

    detail = client.get(f"/api/courses/{course['id']}").json()["data"]
    assert detail["course"]["name"] == course["name"]
    assert detail["instructor"]["name"] == "Test Instructor"


def test_soft_deleted_course_hidden_except_for_admin(client, course, instructor, admin_headers):
    resp = client.delete(f"/api/courses/{course['id']}", headers=instructor["headers"])
    assert resp.json() == {"success": True, "message": "Course deleted successfully"}

    listing = client.get("/api/courses", params={"search": course["name"]}).json()["data"]
    assert listing["courses"] == []
    assert client.get(f"/api/courses/{course['id']}").status_code == 404

    resp = client.get(f"/api/courses/{course['id']}", headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json()["data"]["course"]["is_active"] is False


# ---------------------------------------------------------------------------
# Subjects
# ---------------------------------------------------------------------------

def test_subject_lifecycle(client, course, instructor):
    resp = client.post(
        "/api/subjects",
        json={"course_id": course["id"], "name": "Kinematics", "description": "Motion in one and two dimensions."},
        headers=instructor["headers"],
    )
    assert resp.status_code == 201
    subject = resp.json()["data"]

    resp = client.put(f"/api/subjects/{subject['id']}", json={"name": "Kinematics I"}, headers=instructor["headers"])
    assert resp.json()["data"]["name"] == "Kinematics I"

    listed = client.get(f"/api/courses/{course['id']}/subjects").json()["data"]
    assert [s["name"] for s in listed] == ["Kinematics I"]

    client.delete(f"/api/subjects/{subject['id']}", headers=instructor["headers"])
    assert client.get(f"/api/courses/{course['id']}/subjects").json()["data"] == []


def test_subject_on_foreign_course_forbidden(client, course, make_user, admin_headers):
    other = make_user("instructor")
    client.put(f"/api/admin/instructors/{other['id']}/approve", headers=admin_headers)
    resp = client.post(
        "/api/subjects",
        json={"course_id": course["id"], "name": "Optics", "description": "Reflection and refraction basics."},
        headers=other["headers"],
    )
    assert resp.status_code == 403


# ---------------------------------------------------------------------------
# Materials
# ---------------------------------------------------------------------------

def _upload(client, course_id, headers, name="notes.pdf", content=b"%PDF-1.4 lecture notes", **form):
    data = {"course_id": str(course_id), "title": "Lecture 1 notes"}
    data.update(form)
    return client.post(
        "/api/materials",
        data=data,
        files={"file": (name, content, "application/pdf")},
        headers=headers,
    )


def test_material_upload_and_access(client, course, instructor, student, make_user):
    resp = _upload(client, course["id"], instructor["headers"])
    assert resp.status_code == 201, resp.text
    material = resp.json()["data"]
    assert material["file_name"] == "notes.pdf"
    assert material["file_url"].startswith("/uploads/materials/")

    stored = Path(settings.upload_dir) / material["file_url"][len("/uploads/"):]
    assert stored.read_bytes() == b"%PDF-1.4 lecture notes"
    assert client.get(material["file_url"]).content == b"%PDF-1.4 lecture notes"

    # Anonymous, not enrolled, then enrolled
    assert client.get(f"/api/courses/{course['id']}/materials").status_code == 401
    assert client.get(f"/api/courses/{course['id']}/materials", headers=student["headers"]).status_code == 403
    client.post(f"/api/enrollments/{course['id']}", headers=student["headers"])
    listed = client.get(f"/api/courses/{course['id']}/materials", headers=student["headers"]).json()["data"]
    assert [m["id"] for m in listed] == [material["id"]]

    client.delete(f"/api/materials/{material['id']}", headers=instructor["headers"])
    listed = client.get(f"/api/courses/{course['id']}/materials", headers=instructor["headers"]).json()["data"]
    assert listed == []


def test_upload_rejects_disallowed_extension(client, course, instructor):
    resp = _upload(client, course["id"], instructor["headers"], name="payload.exe")
    assert resp.status_code == 400
    assert "not allowed" in resp.json()["message"]


def test_upload_rejects_empty_file(client, course, instructor):
    resp = _upload(client, course["id"], instructor["headers"], content=b"")
    assert resp.status_code == 400
    assert resp.json()["message"] == "Uploaded file is empty."


def test_upload_rejects_oversized_file(client, course, instructor, monkeypatch):
    monkeypatch.setattr(settings, "upload_max_bytes", 10)
    resp = _upload(client, course["id"], instructor["headers"], content=b"x" * 100)
    assert resp.status_code == 400
    assert resp.json()["message"].startswith("File too large")


def test_failed_upload_leaves_no_temp_files(client, course, instructor):
    _upload(client, course["id"], instructor["headers"], content=b"")
    assert list(staging_dir().iterdir()) == []


def test_uploads_are_staged_outside_the_served_directory():
    root = Path(settings.upload_dir).resolve()
    upload = UploadFile(io.BytesIO(b"%PDF-1.4 draft"), filename="draft.pdf")
    with staged_upload(upload, "materials") as staged:
        assert staged.temp_path.exists()
        assert root not in staged.temp_path.resolve().parents
    assert not staged.temp_path.exists()
    assert not (root / ".tmp").exists()


def test_subject_must_belong_to_course(client, course, instructor):
    resp = _upload(client, course["id"], instructor["headers"], subject_id="999999")
    assert resp.status_code == 400
