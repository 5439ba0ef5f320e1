from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile

from ..auth.dependencies import require_instructor
from ..database import db_session
from ..models import Material, Subject, User
from ..schemas import MaterialRead, ok
from ..storage import staged_upload
from .routes_courses import ensure_can_manage, load_course

router = APIRouter(prefix="/api/materials", tags=["materials"])


@router.post("", status_code=201)
def upload_material(
    course_id: int = Form(...),
    title: str = Form(..., min_length=1, max_length=256),
    subject_id: Optional[int] = Form(None),
    file: UploadFile = File(...),
    user: User = Depends(require_instructor),
) -> dict:
    with db_session() as session:
        course = load_course(session, course_id, user)
        ensure_can_manage(course, user)
        if subject_id is not None:
            subject = session.get(Subject, subject_id)
            if not subject or subject.course_id != course.id:
                raise HTTPException(status_code=400, detail="Subject does not belong to this course.")

    with staged_upload(file, "materials") as staged:
        stored = staged.commit()
        with db_session() as session:
            material = Material(
                course_id=course_id,
                subject_id=subject_id,
                title=title.strip(),
                file_url=stored.url,
                file_name=stored.original_name,
                file_size=stored.size,
                content_type=stored.content_type,
                uploaded_by=user.id,
            )
            session.add(material)
            session.flush()
            session.refresh(material)
            result = MaterialRead.model_validate(material)

    return ok(result, "Material uploaded successfully")


@router.delete("/{material_id}")
def delete_material(material_id: int, user: User = Depends(require_instructor)) -> dict:
    with db_session() as session:
        material = session.get(Material, material_id)
        if not material or not material.is_active:
            raise HTTPException(status_code=404, detail="Material not found")
        ensure_can_manage(load_course(session, material.course_id, user), user)
        material.is_active = False
    return ok(message="Material deleted successfully")
