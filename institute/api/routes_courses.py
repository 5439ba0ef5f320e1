from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError

from ..auth.dependencies import get_optional_user, require_instructor, require_student
from ..database import db_session
from ..models import Course, CourseReview, Enrollment, Material, Subject, User
from ..schemas import (
    CourseCreate,
    CourseRead,
    CourseUpdate,
    MaterialRead,
    ReviewCreate,
    ReviewRead,
    SubjectRead,
    ok,
    paginate,
)
from ..site_settings import get_category

logger = logging.getLogger("institute.courses")

router = APIRouter(prefix="/api/courses", tags=["courses"])


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def load_course(session, course_id: int, viewer: Optional[User] = None) -> Course:
    """Fetch a course; inactive courses are only visible to admins."""
    course = session.get(Course, course_id)
    if not course or (not course.is_active and not (viewer and viewer.role == "admin")):
        raise HTTPException(status_code=404, detail="Course not found")
    return course


def ensure_can_manage(course: Course, user: User) -> None:
    if user.role == "admin":
        return
    if course.instructor_id != user.id:
        raise HTTPException(status_code=403, detail="You can only manage your own courses.")


# ---------------------------------------------------------------------------
# Public catalog
# ---------------------------------------------------------------------------

@router.get("")
def list_courses(
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    search: Optional[str] = None,
) -> dict:
    """Active courses only; soft-deleted ones never show up here."""
    stmt = select(Course).where(Course.is_active.is_(True))
    if search:
        like = f"%{search}%"
        stmt = stmt.where(or_(Course.name.ilike(like), Course.description.ilike(like)))

    with db_session() as session:
        total = session.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
        rows = session.execute(
            stmt.order_by(Course.created_at.desc(), Course.id.desc())
            .offset((page - 1) * limit).limit(limit)
        ).scalars().all()
        courses = [CourseRead.model_validate(c) for c in rows]

    return ok({"courses": courses, "pagination": paginate(total, page, limit)})


@router.get("/{course_id}")
def get_course(course_id: int, viewer: Optional[User] = Depends(get_optional_user)) -> dict:
    with db_session() as session:
        course = load_course(session, course_id, viewer)
        subjects = session.execute(
            select(Subject)
            .where(Subject.course_id == course.id, Subject.is_active.is_(True))
            .order_by(Subject.id)
        ).scalars().all()
        instructor = session.get(User, course.instructor_id) if course.instructor_id else None
        data = {
            "course": CourseRead.model_validate(course),
            "subjects": [SubjectRead.model_validate(s) for s in subjects],
            "instructor": (
                {"id": instructor.id, "name": instructor.full_name} if instructor else None
            ),
        }
    return ok(data)


@router.get("/{course_id}/subjects")
def list_course_subjects(course_id: int, viewer: Optional[User] = Depends(get_optional_user)) -> dict:
    with db_session() as session:
        course = load_course(session, course_id, viewer)
        subjects = session.execute(
            select(Subject)
            .where(Subject.course_id == course.id, Subject.is_active.is_(True))
            .order_by(Subject.id)
        ).scalars().all()
        return ok([SubjectRead.model_validate(s) for s in subjects])


@router.get("/{course_id}/materials")
def list_course_materials(course_id: int, viewer: Optional[User] = Depends(get_optional_user)) -> dict:
    """Materials are for enrolled students, the owning instructor and admins."""
    if viewer is None:
        raise HTTPException(status_code=401, detail="No credentials provided.")
    with db_session() as session:
        course = load_course(session, course_id, viewer)
        if viewer.role == "student":
            enrolled = session.execute(
                select(Enrollment.id).where(
                    Enrollment.student_id == viewer.id, Enrollment.course_id == course.id
                )
            ).scalar_one_or_none()
            if enrolled is None:
                raise HTTPException(status_code=403, detail="Enroll in this course to access its materials.")
        else:
            ensure_can_manage(course, viewer)

        rows = session.execute(
            select(Material)
            .where(Material.course_id == course.id, Material.is_active.is_(True))
            .order_by(Material.created_at.desc())
        ).scalars().all()
        return ok([MaterialRead.model_validate(m) for m in rows])


# ---------------------------------------------------------------------------
# Authoring - admins and approved instructors
# ---------------------------------------------------------------------------

@router.post("", status_code=201)
def create_course(body: CourseCreate, user: User = Depends(require_instructor)) -> dict:
    instructor_id = user.id if user.role == "instructor" else body.instructor_id
    with db_session() as session:
        if instructor_id is not None:
            owner = session.get(User, instructor_id)
            if not owner or owner.role != "instructor":
                raise HTTPException(status_code=400, detail="instructor_id must reference an instructor.")
        course = Course(
            name=body.name.strip(),
            description=body.description,
            fees=body.fees,
            duration=body.duration,
            image_url=body.image_url,
            instructor_id=instructor_id,
            is_active=True,
        )
        session.add(course)
        session.flush()
        session.refresh(course)
        return ok(CourseRead.model_validate(course), "Course created successfully")


@router.put("/{course_id}")
def update_course(course_id: int, body: CourseUpdate, user: User = Depends(require_instructor)) -> dict:
    with db_session() as session:
        course = load_course(session, course_id, user)
        ensure_can_manage(course, user)
        for field, value in body.model_dump(exclude_unset=True).items():
            if value is not None:
                setattr(course, field, value)
        session.flush()
        session.refresh(course)
        return ok(CourseRead.model_validate(course), "Course updated successfully")


@router.delete("/{course_id}")
def delete_course(course_id: int, user: User = Depends(require_instructor)) -> dict:
    """Soft delete - the course stays retrievable by id for admins."""
    with db_session() as session:
        course = load_course(session, course_id, user)
        ensure_can_manage(course, user)
        course.is_active = False
    return ok(message="Course deleted successfully")


# ---------------------------------------------------------------------------
# Reviews - enrolled students, one each
# ---------------------------------------------------------------------------

@router.get("/{course_id}/reviews")
def list_course_reviews(course_id: int, viewer: Optional[User] = Depends(get_optional_user)) -> dict:
    with db_session() as session:
        course = load_course(session, course_id, viewer)
        rows = session.execute(
            select(CourseReview, User)
            .join(User, User.id == CourseReview.student_id)
            .where(CourseReview.course_id == course.id)
            .order_by(CourseReview.created_at.desc(), CourseReview.id.desc())
        ).all()
        reviews = [
            {**ReviewRead.model_validate(r).model_dump(), "student_name": u.full_name}
            for r, u in rows
        ]
        return ok({"rating": course.rating, "reviews": reviews})


@router.post("/{course_id}/review", status_code=201)
def add_review(course_id: int, body: ReviewCreate, student: User = Depends(require_student)) -> dict:
    with db_session() as session:
        course_settings = get_category(session, "courses") or {}
        if not course_settings.get("enableCourseReviews", True):
            raise HTTPException(status_code=403, detail="Course reviews are disabled")

        course = load_course(session, course_id, student)
        enrolled = session.execute(
            select(Enrollment.id).where(
                Enrollment.student_id == student.id, Enrollment.course_id == course.id
            )
        ).scalar_one_or_none()
        if enrolled is None:
            raise HTTPException(status_code=403, detail="You must be enrolled in this course to add a review")

    try:
        with db_session() as session:
            review = CourseReview(
                course_id=course_id,
                student_id=student.id,
                rating=body.rating,
                comment=body.comment.strip(),
            )
            session.add(review)
            session.flush()
            average = session.execute(
                select(func.avg(CourseReview.rating)).where(CourseReview.course_id == course_id)
            ).scalar_one()
            course = session.get(Course, course_id)
            course.rating = round(float(average), 2)
            session.flush()
            session.refresh(review)
            result = {"review": ReviewRead.model_validate(review), "rating": course.rating}
    except IntegrityError:
        raise HTTPException(status_code=400, detail="You have already reviewed this course")

    logger.info("Student %s reviewed course %s (%s stars)", student.id, course_id, body.rating)
    return ok(result, "Review added successfully")
