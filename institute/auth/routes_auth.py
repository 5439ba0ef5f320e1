from typing import Optional
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field
from sqlalchemy import select

from .core import (
    create_access_token,
    generate_reset_token,
    hash_password,
    hash_reset_token,
    verify_password,
)
from .dependencies import get_current_user
from ..config import settings
from ..database import db_session
from ..mailer import (
    send_password_reset_confirmation,
    send_password_reset_email,
    send_welcome_email,
)
from ..models import InstructorProfile, User
from ..rate_limit import limiter
from ..schemas import EMAIL_PATTERN, PHONE_PATTERN, InstructorProfileRead, UserRead, ok

router = APIRouter(prefix="/api/auth", tags=["auth"])


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------

class LoginRequest(BaseModel):
    email: str = Field(..., pattern=EMAIL_PATTERN)
    password: str


class RegisterRequest(BaseModel):
    email: str = Field(..., pattern=EMAIL_PATTERN, max_length=256)
    password: str = Field(..., min_length=6)
    first_name: str = Field(..., min_length=2, max_length=50)
    last_name: str = Field(..., min_length=2, max_length=50)
    phone: str = Field(..., pattern=PHONE_PATTERN, max_length=32)
    role: str = Field(default="student", pattern="^(student|instructor)$")


class ProfileUpdate(BaseModel):
    first_name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    last_name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    phone: Optional[str] = Field(default=None, pattern=PHONE_PATTERN, max_length=32)
    bio: Optional[str] = None
    designation: Optional[str] = Field(default=None, max_length=100)
    experience_years: Optional[int] = Field(default=None, ge=0)


class PasswordChange(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=6)


class ForgotPasswordRequest(BaseModel):
    email: str = Field(..., pattern=EMAIL_PATTERN)


class ResetPasswordRequest(BaseModel):
    token: str = Field(..., min_length=10)
    password: str = Field(..., min_length=6)


def _token_payload(user: User) -> dict:
    return {
        "token": create_access_token(subject=user.email, role=user.role),
        "token_type": "bearer",
        "user": UserRead.model_validate(user),
    }


def _instructor_profile(user_id: int) -> Optional[InstructorProfileRead]:
    with db_session() as session:
        profile = session.execute(
            select(InstructorProfile).where(InstructorProfile.user_id == user_id)
        ).scalar_one_or_none()
        return InstructorProfileRead.model_validate(profile) if profile else None


# ---------------------------------------------------------------------------
# Registration & login
# ---------------------------------------------------------------------------

@router.post("/register", status_code=201)
@limiter.limit(settings.register_rate_limit)
def register(request: Request, body: RegisterRequest) -> dict:
    if not settings.registration_enabled:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Public registration is disabled. Contact an administrator.",
        )
    email = body.email.strip().lower()
    with db_session() as session:
        existing = session.execute(
            select(User).where(User.email == email)
        ).scalar_one_or_none()
        if existing:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="User already exists with this email.",
            )

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
        payload = _token_payload(user)

    send_welcome_email(user.email, user.first_name, user.role)
    return ok(payload, "Registration successful")


@router.post("/login")
@limiter.limit(settings.login_rate_limit)
def login(request: Request, body: LoginRequest) -> dict:
    email = body.email.strip().lower()
    with db_session() as session:
        user = session.execute(
            select(User).where(User.email == email)
        ).scalar_one_or_none()

        if not user or not verify_password(body.password, user.password_hash):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,
                                detail="Invalid credentials.")
        if not user.is_active:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,
                                detail="Account is deactivated.")

        user.last_login_at = datetime.now(timezone.utc)
        session.flush()
        return ok(_token_payload(user), "Login successful")


# ---------------------------------------------------------------------------
# Current user
# ---------------------------------------------------------------------------

@router.get("/me")
def me(current_user: User = Depends(get_current_user)) -> dict:
    data = {"user": UserRead.model_validate(current_user)}
    if current_user.role == "instructor":
        data["instructor_profile"] = _instructor_profile(current_user.id)
    return ok(data)


@router.put("/me")
def update_me(body: ProfileUpdate, current_user: User = Depends(get_current_user)) -> dict:
    with db_session() as session:
        user = session.get(User, current_user.id)
        if not user:
            raise HTTPException(status_code=404, detail="User not found.")
        if body.first_name is not None:
            user.first_name = body.first_name.strip()
        if body.last_name is not None:
            user.last_name = body.last_name.strip()
        if body.phone is not None:
            user.phone = body.phone.strip()

        if user.role == "instructor":
            profile = session.execute(
                select(InstructorProfile).where(InstructorProfile.user_id == user.id)
            ).scalar_one_or_none()
            if profile is not None:
                if body.bio is not None:
                    profile.bio = body.bio
                if body.designation is not None:
                    profile.designation = body.designation
                if body.experience_years is not None:
                    profile.experience_years = body.experience_years
        session.flush()
        session.refresh(user)
        return ok({"user": UserRead.model_validate(user)}, "Profile updated successfully")


@router.put("/me/password")
def change_password(body: PasswordChange, current_user: User = Depends(get_current_user)) -> dict:
    if not verify_password(body.current_password, current_user.password_hash):
        raise HTTPException(status_code=400, detail="Current password is incorrect.")
    with db_session() as session:
        user = session.get(User, current_user.id)
        user.password_hash = hash_password(body.new_password)
    return ok(message="Password changed successfully")


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------

@router.post("/forgot-password")
@limiter.limit(settings.register_rate_limit)
def forgot_password(request: Request, body: ForgotPasswordRequest) -> dict:
    """Always answers the same way so the endpoint can't be used to discover registered emails."""
    email = body.email.strip().lower()
    token = None
    with db_session() as session:
        user = session.execute(
            select(User).where(User.email == email)
        ).scalar_one_or_none()
        if user and user.is_active:
            token, digest = generate_reset_token()
            user.reset_token_hash = digest
            user.reset_token_expires_at = datetime.now(timezone.utc) + timedelta(
                minutes=settings.password_reset_expire_minutes
            )
            first_name = user.first_name

    if token:
        send_password_reset_email(email, first_name, token)
    return ok(message="If an account exists for that email, a reset link has been sent.")


@router.post("/reset-password")
def reset_password(body: ResetPasswordRequest) -> dict:
    digest = hash_reset_token(body.token)
    with db_session() as session:
        user = session.execute(
            select(User).where(User.reset_token_hash == digest)
        ).scalar_one_or_none()
        expires = user.reset_token_expires_at if user else None
        # SQLite stores naive UTC datetimes
        if expires is not None and expires.tzinfo is None:
            expires = expires.replace(tzinfo=timezone.utc)
        if not user or expires is None or expires < datetime.now(timezone.utc):
            raise HTTPException(status_code=400, detail="Invalid or expired reset token.")

        user.password_hash = hash_password(body.password)
        user.reset_token_hash = None
        user.reset_token_expires_at = None
        email, first_name = user.email, user.first_name

    send_password_reset_confirmation(email, first_name)
    return ok(message="Password has been reset successfully")
