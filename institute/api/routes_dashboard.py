from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import func, select

from ..auth.dependencies import get_current_user, is_approved_instructor, require_admin, require_student
from ..database import db_session
from ..models import ContactMessage, Course, Enrollment, InstructorProfile, User
from ..schemas import CourseRead, EnrollmentRead, EnrollmentWithCourse, ok

router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])


@router.get("/student")
def student_dashboard(student: User = Depends(require_student)) -> dict:
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

    total = len(enrollments)
    completed = sum(1 for e in enrollments if e.status == "completed")
    in_progress = sum(1 for e in enrollments if e.status == "active")
    average = round(sum(e.progress for e in enrollments) / total, 1) if total else 0

    return ok({
        "stats": {
            "totalCourses": total,
            "completedCourses": completed,
            "inProgressCourses": in_progress,
            "overallProgress": average,
        },
        "enrollments": enrollments,
    })


@router.get("/instructor")
def instructor_dashboard(user: User = Depends(get_current_user)) -> dict:
    """Available before approval so a pending instructor can see their status."""
    if user.role != "instructor":
        raise HTTPException(status_code=403, detail="Instructor access required.")

    with db_session() as session:
        courses = session.execute(
            select(Course)
            .where(Course.instructor_id == user.id, Course.is_active.is_(True))
            .order_by(Course.created_at.desc())
        ).scalars().all()
        course_ids = [c.id for c in courses]
        total_students = 0
        if course_ids:
            total_students = session.execute(
                select(func.count(func.distinct(Enrollment.student_id)))
                .where(Enrollment.course_id.in_(course_ids))
            ).scalar_one() or 0
        course_list = [CourseRead.model_validate(c) for c in courses]

    return ok({
        "isApproved": is_approved_instructor(user),
        "stats": {
            "totalCourses": len(course_list),
            "totalStudents": total_students,
            "totalEnrollments": sum(c.enrollment_count for c in course_list),
        },
        "courses": course_list,
    })


@router.get("/admin")
def admin_dashboard(_admin: User = Depends(require_admin)) -> dict:
    with db_session() as session:
        def count(stmt) -> int:
            return session.execute(stmt).scalar_one() or 0

        stats = {
            "totalUsers": count(select(func.count(User.id)).where(User.is_active.is_(True))),
            "totalStudents": count(
                select(func.count(User.id)).where(User.role == "student", User.is_active.is_(True))
            ),
            "totalInstructors": count(
                select(func.count(User.id)).where(User.role == "instructor", User.is_active.is_(True))
            ),
            "totalCourses": count(select(func.count(Course.id)).where(Course.is_active.is_(True))),
            "totalEnrollments": count(select(func.count(Enrollment.id))),
            "newMessages": count(
                select(func.count(ContactMessage.id)).where(ContactMessage.status == "new")
            ),
            "pendingInstructors": count(
                select(func.count(InstructorProfile.id)).where(InstructorProfile.is_approved.is_(False))
            ),
        }

        recent_messages = session.execute(
            select(ContactMessage).order_by(ContactMessage.created_at.desc()).limit(5)
        ).scalars().all()
        recent = [
            {"id": m.id, "name": m.name, "subject": m.subject, "status": m.status, "createdAt": m.created_at}
            for m in recent_messages
        ]

    return ok({"stats": stats, "recentMessages": recent})
