from __future__ import annotations

from typing import Optional

from fastapi import Depends, HTTPException, Security, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy import select

from .core import decode_token
from ..database import db_session
from ..models import InstructorProfile, User

bearer_scheme = HTTPBearer(auto_error=False)


# ---------------------------------------------------------------------------
# Resolve current user from the bearer JWT
# ---------------------------------------------------------------------------

def _user_from_token(token: str) -> User:
    try:
        payload = decode_token(token)
        email: str = payload.get("sub", "")
    except JWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,
                            detail="Invalid or expired token.")
    with db_session() as session:
        user = session.execute(
            select(User).where(User.email == email)
        ).scalar_one_or_none()
    if not user or not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,
                            detail="User not found or inactive.")
    return user


def get_current_user(
    bearer: HTTPAuthorizationCredentials | None = Security(bearer_scheme),
) -> User:
    """Accepts ``Authorization: Bearer <jwt>``; returns the User or raises 401."""
    if bearer and bearer.credentials:
        return _user_from_token(bearer.credentials)
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="No credentials provided.",
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_optional_user(
    bearer: HTTPAuthorizationCredentials | None = Security(bearer_scheme),
) -> Optional[User]:
    """Like get_current_user, but anonymous callers get None instead of 401."""
    if bearer and bearer.credentials:
        return _user_from_token(bearer.credentials)
    return None


# ---------------------------------------------------------------------------
# Role guards
# ---------------------------------------------------------------------------

def require_admin(current_user: User = Depends(get_current_user)) -> User:
    if current_user.role != "admin":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN,
                            detail="Admin access required.")
    return current_user


def require_student(current_user: User = Depends(get_current_user)) -> User:
    if current_user.role != "student":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN,
                            detail="Student access required.")
    return current_user


def is_approved_instructor(user: User) -> bool:
    if user.role != "instructor":
        return False
    with db_session() as session:
        profile = session.execute(
            select(InstructorProfile).where(InstructorProfile.user_id == user.id)
        ).scalar_one_or_none()
    return bool(profile and profile.is_approved)


def require_instructor(current_user: User = Depends(get_current_user)) -> User:
    """Admins, or instructors whose profile an admin has approved."""
    if current_user.role == "admin":
        return current_user
    if current_user.role != "instructor":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN,
                            detail="Instructor access required.")
    if not is_approved_instructor(current_user):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN,
                            detail="Instructor account is pending approval.")
    return current_user
