from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from ..auth.dependencies import require_student
from ..database import db_session
from ..models import Course, Enrollment, User
from ..schemas import CourseRead, EnrollmentRead, EnrollmentWithCourse, ProgressUpdate, ok

logger = logging.getLogger("institute.enrollments")

router = APIRouter(prefix="/api/enrollments", tags=["enrollments"])

_ALREADY_ENROLLED = "You are already enrolled in this course"


@router.post("/{course_id}")
def enroll(course_id: int, student: User = Depends(require_student)) -> dict:
    with db_session() as session:
        course = session.get(Course, course_id)
        if not course or not course.is_active:
            raise HTTPException(status_code=404, detail="Course not found")

        existing = session.execute(
            select(Enrollment.id).where(
                Enrollment.student_id == student.id, Enrollment.course_id == course_id
            )
        ).scalar_one_or_none()
        if existing is not None:
            raise HTTPException(status_code=400, detail=_ALREADY_ENROLLED)

    try:
        with db_session() as session:
            enrollment = Enrollment(student_id=student.id, course_id=course_id, status="active", progress=0)
            session.add(enrollment)
            session.flush()
            # Lost increments under races are tolerated
            session.execute(
                update(Course)
                .where(Course.id == course_id)
                .values(enrollment_count=Course.enrollment_count + 1)
            )
            session.refresh(enrollment)
            result = EnrollmentRead.model_validate(enrollment)
    except IntegrityError:
        # Unique (student, course) constraint caught a concurrent duplicate
        raise HTTPException(status_code=400, detail=_ALREADY_ENROLLED)

    logger.info("Student %s enrolled in course %s", student.id, course_id)
    return ok(result, "Successfully enrolled in course")


@router.get("/my")
def my_enrollments(student: User = Depends(require_student)) -> dict:
    with db_session() as session:
        rows = session.execute(
            select(Enrollment, Course)
            .join(Course, Course.id == Enrollment.course_id)
            .where(Enrollment.student_id == student.id)
            .order_by(Enrollment.enrolled_at.desc())
        ).all()
        enrollments = [
            EnrollmentWithCourse(
                **EnrollmentRead.model_validate(e).model_dump(),
                course=CourseRead.model_validate(c),
            )
            for e, c in rows
        ]
    return ok({"enrollments": enrollments})


@router.put("/{enrollment_id}/progress")
def update_progress(
    enrollment_id: int,
    body: ProgressUpdate,
    student: User = Depends(require_student),
) -> dict:
    with db_session() as session:
        enrollment = session.get(Enrollment, enrollment_id)
        if not enrollment or enrollment.student_id != student.id:
            raise HTTPException(status_code=404, detail="Enrollment not found")

        enrollment.progress = body.progress
        if body.progress == 100:
            enrollment.status = "completed"
            enrollment.completed_at = datetime.now(timezone.utc)
        session.flush()
        session.refresh(enrollment)
        return ok(EnrollmentRead.model_validate(enrollment), "Progress updated successfully")
