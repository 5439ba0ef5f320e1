from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from ..auth.dependencies import require_instructor
from ..database import db_session
from ..models import Subject, User
from ..schemas import SubjectCreate, SubjectRead, SubjectUpdate, ok
from .routes_courses import ensure_can_manage, load_course

router = APIRouter(prefix="/api/subjects", tags=["subjects"])


def _load_subject(session, subject_id: int, user: User) -> Subject:
    subject = session.get(Subject, subject_id)
    if not subject or (not subject.is_active and user.role != "admin"):
        raise HTTPException(status_code=404, detail="Subject not found")
    ensure_can_manage(load_course(session, subject.course_id, user), user)
    return subject


@router.post("", status_code=201)
def create_subject(body: SubjectCreate, user: User = Depends(require_instructor)) -> dict:
    with db_session() as session:
        course = load_course(session, body.course_id, user)
        ensure_can_manage(course, user)
        subject = Subject(course_id=course.id, name=body.name.strip(), description=body.description)
        session.add(subject)
        session.flush()
        session.refresh(subject)
        return ok(SubjectRead.model_validate(subject), "Subject created successfully")


@router.put("/{subject_id}")
def update_subject(subject_id: int, body: SubjectUpdate, user: User = Depends(require_instructor)) -> dict:
    with db_session() as session:
        subject = _load_subject(session, subject_id, user)
        for field, value in body.model_dump(exclude_unset=True).items():
            if value is not None:
                setattr(subject, field, value)
        session.flush()
        session.refresh(subject)
        return ok(SubjectRead.model_validate(subject), "Subject updated successfully")


@router.delete("/{subject_id}")
def delete_subject(subject_id: int, user: User = Depends(require_instructor)) -> dict:
    with db_session() as session:
        subject = _load_subject(session, subject_id, user)
        subject.is_active = False
    return ok(message="Subject deleted successfully")
