"""
routes_admin.py - Admin-only account management, catalog stats and site settings
================================================================================
Users: list, stats, create, get, update, soft delete, activate/deactivate.
Instructors: pending list and approval.
Settings: read, update and reset each category.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import delete, func, or_, select

from ..auth.core import hash_password
from ..auth.dependencies import require_admin
from ..database import db_session
from ..models import Course, Enrollment, InstructorProfile, User
from ..schemas import (
    AdminUserCreate,
    AdminUserUpdate,
    CourseRead,
    InstructorProfileRead,
    ROLE_PATTERN,
    SettingsReset,
    SettingsUpdate,
    UserRead,
    UserStatusUpdate,
    ok,
    paginate,
)
from ..site_settings import all_settings, get_category, reset_to_defaults, update_category

logger = logging.getLogger("institute.admin")

router = APIRouter(prefix="/api/admin", tags=["admin"])


def _get_user_or_404(session, user_id: int) -> User:
    user = session.get(User, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

@router.get("/users")
def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    role: Optional[str] = Query(None, pattern=ROLE_PATTERN),
    search: Optional[str] = None,
    _admin: User = Depends(require_admin),
) -> dict:
    stmt = select(User)
    if role:
        stmt = stmt.where(User.role == role)
    if search:
        like = f"%{search}%"
        stmt = stmt.where(or_(
            User.first_name.ilike(like),
            User.last_name.ilike(like),
            User.email.ilike(like),
        ))

    with db_session() as session:
        total = session.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
        rows = session.execute(
            stmt.order_by(User.created_at.desc(), User.id.desc())
            .offset((page - 1) * limit).limit(limit)
        ).scalars().all()
        users = [UserRead.model_validate(u) for u in rows]

    return ok({"users": users, "pagination": paginate(total, page, limit)})


@router.get("/users/stats")
def user_stats(_admin: User = Depends(require_admin)) -> dict:
    month_ago = datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(days=30)

    def count(*where) -> int:
        return session.execute(select(func.count(User.id)).where(*where)).scalar_one()

    with db_session() as session:
        total = count()
        active = count(User.is_active.is_(True))
        recent = session.execute(
            select(User).order_by(User.created_at.desc(), User.id.desc()).limit(10)
        ).scalars().all()
        data = {
            "totalUsers": total,
            "activeUsers": active,
            "inactiveUsers": total - active,
            "totalStudents": count(User.role == "student"),
            "totalInstructors": count(User.role == "instructor"),
            "totalAdmins": count(User.role == "admin"),
            "newUsersThisMonth": count(User.created_at >= month_ago),
            "recentUsers": [UserRead.model_validate(u) for u in recent],
        }
    return ok(data)


@router.post("/users", status_code=201)
def create_user(body: AdminUserCreate, admin: User = Depends(require_admin)) -> dict:
    email = body.email.strip().lower()
    with db_session() as session:
        if session.execute(select(User.id).where(User.email == email)).scalar_one_or_none():
            raise HTTPException(status_code=400, detail="User already exists with this email")
        user = User(
            email=email,
            password_hash=hash_password(body.password),
            first_name=body.first_name.strip(),
            last_name=body.last_name.strip(),
            phone=body.phone.strip(),
            role=body.role,
            is_active=True,
        )
        session.add(user)
        session.flush()
        if user.role == "instructor":
            session.add(InstructorProfile(user_id=user.id, is_approved=False))
        session.refresh(user)
        result = UserRead.model_validate(user)

    logger.info("Admin %s created %s account %s", admin.id, result.role, result.id)
    return ok(result, "User created successfully")


@router.get("/users/{user_id}")
def get_user(user_id: int, _admin: User = Depends(require_admin)) -> dict:
    with db_session() as session:
        user = _get_user_or_404(session, user_id)
        data = UserRead.model_validate(user).model_dump()
        if user.role == "instructor":
            profile = session.execute(
                select(InstructorProfile).where(InstructorProfile.user_id == user.id)
            ).scalar_one_or_none()
            data["instructor_profile"] = InstructorProfileRead.model_validate(profile) if profile else None
    return ok(data)


@router.put("/users/{user_id}")
def update_user(user_id: int, body: AdminUserUpdate, admin: User = Depends(require_admin)) -> dict:
    if user_id == admin.id and body.is_active is False:
        raise HTTPException(status_code=400, detail="You cannot deactivate your own account")
    if user_id == admin.id and body.role not in (None, "admin"):
        raise HTTPException(status_code=400, detail="You cannot change your own role")
    with db_session() as session:
        user = _get_user_or_404(session, user_id)
        changes = body.model_dump(exclude_unset=True, exclude={"role"})
        for field, value in changes.items():
            if value is not None:
                setattr(user, field, value.strip() if isinstance(value, str) else value)

        if body.role and body.role != user.role:
            # The instructor profile follows the role
            if user.role == "instructor":
                session.execute(delete(InstructorProfile).where(InstructorProfile.user_id == user.id))
            elif body.role == "instructor":
                session.add(InstructorProfile(user_id=user.id, is_approved=False))
            logger.info("Admin %s changed role of user %s: %s -> %s", admin.id, user.id, user.role, body.role)
            user.role = body.role

        session.flush()
        session.refresh(user)
        result = UserRead.model_validate(user)
    return ok(result, "User updated successfully")


@router.delete("/users/{user_id}")
def delete_user(user_id: int, admin: User = Depends(require_admin)) -> dict:
    """Soft delete: the account is deactivated, its history stays."""
    if user_id == admin.id:
        raise HTTPException(status_code=400, detail="You cannot delete your own account")
    with db_session() as session:
        user = _get_user_or_404(session, user_id)
        user.is_active = False
    logger.info("Admin %s deleted user %s", admin.id, user_id)
    return ok(message="User deactivated successfully")


@router.put("/users/{user_id}/status")
def set_user_status(
    user_id: int,
    body: UserStatusUpdate,
    admin: User = Depends(require_admin),
) -> dict:
    if user_id == admin.id:
        raise HTTPException(status_code=400, detail="You cannot change your own account status")
    with db_session() as session:
        user = _get_user_or_404(session, user_id)
        user.is_active = body.is_active
        session.flush()
        session.refresh(user)
        result = UserRead.model_validate(user)

    verb = "activated" if body.is_active else "deactivated"
    logger.info("Admin %s %s user %s", admin.id, verb, user_id)
    return ok(result, f"User {verb} successfully")


# ---------------------------------------------------------------------------
# Instructors
# ---------------------------------------------------------------------------

@router.get("/instructors/pending")
def pending_instructors(_admin: User = Depends(require_admin)) -> dict:
    with db_session() as session:
        rows = session.execute(
            select(User, InstructorProfile)
            .join(InstructorProfile, InstructorProfile.user_id == User.id)
            .where(InstructorProfile.is_approved.is_(False))
            .order_by(InstructorProfile.created_at)
        ).all()
        instructors = [
            {
                "user": UserRead.model_validate(u),
                "profile": InstructorProfileRead.model_validate(p),
            }
            for u, p in rows
        ]
    return ok({"instructors": instructors})


@router.put("/instructors/{user_id}/approve")
def approve_instructor(user_id: int, admin: User = Depends(require_admin)) -> dict:
    with db_session() as session:
        profile = session.execute(
            select(InstructorProfile).where(InstructorProfile.user_id == user_id)
        ).scalar_one_or_none()
        if not profile:
            raise HTTPException(status_code=404, detail="Instructor not found")
        if not profile.is_approved:
            profile.is_approved = True
            profile.approved_at = datetime.now(timezone.utc)
        session.flush()
        session.refresh(profile)
        result = InstructorProfileRead.model_validate(profile)

    logger.info("Admin %s approved instructor %s", admin.id, user_id)
    return ok(result, "Instructor approved successfully")


# ---------------------------------------------------------------------------
# Courses
# ---------------------------------------------------------------------------

@router.get("/courses/stats")
def course_stats(_admin: User = Depends(require_admin)) -> dict:
    with db_session() as session:
        total = session.execute(select(func.count(Course.id))).scalar_one()
        active = session.execute(
            select(func.count(Course.id)).where(Course.is_active.is_(True))
        ).scalar_one()
        enrollments = session.execute(select(func.count(Enrollment.id))).scalar_one()
        avg_rating = session.execute(
            select(func.avg(Course.rating)).where(Course.rating > 0)
        ).scalar_one()
        revenue = session.execute(
            select(func.sum(Course.fees)).select_from(Enrollment).join(Course, Course.id == Enrollment.course_id)
        ).scalar_one()
        top = session.execute(
            select(Course)
            .where(Course.is_active.is_(True))
            .order_by(Course.enrollment_count.desc(), Course.rating.desc(), Course.id)
            .limit(5)
        ).scalars().all()
        data = {
            "totalCourses": total,
            "activeCourses": active,
            "inactiveCourses": total - active,
            "totalEnrollments": enrollments,
            "avgRating": round(avg_rating or 0.0, 2),
            "totalRevenue": revenue or 0.0,
            "topCourses": [CourseRead.model_validate(c) for c in top],
        }
    return ok(data)


# ---------------------------------------------------------------------------
# Site settings
# ---------------------------------------------------------------------------

@router.get("/settings")
def get_settings(_admin: User = Depends(require_admin)) -> dict:
    with db_session() as session:
        return ok(all_settings(session))


@router.get("/settings/{category}")
def get_setting_category(category: str, _admin: User = Depends(require_admin)) -> dict:
    with db_session() as session:
        values = get_category(session, category)
    if values is None:
        raise HTTPException(status_code=404, detail="Setting category not found")
    return ok(values)


@router.put("/settings")
def put_settings(body: SettingsUpdate, admin: User = Depends(require_admin)) -> dict:
    with db_session() as session:
        values = update_category(session, body.category, body.settings, admin.id)
    logger.info("Admin %s updated %s settings", admin.id, body.category)
    return ok(values, "Settings updated successfully")


@router.post("/settings/reset")
def reset_settings(body: SettingsReset, admin: User = Depends(require_admin)) -> dict:
    with db_session() as session:
        values = reset_to_defaults(session, body.category, admin.id)
    logger.info("Admin %s reset %s settings", admin.id, body.category or "all")
    message = f"{body.category} settings reset to default" if body.category else "All settings reset to default"
    return ok(values, message)
