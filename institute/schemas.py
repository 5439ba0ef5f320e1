from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field

EMAIL_PATTERN = r"^\S+@\S+\.\S+$"
PHONE_PATTERN = r"^[+]?[\d\s\-()]+$"

ROLE_PATTERN = "^(admin|student|instructor)$"
MESSAGE_STATUS_PATTERN = "^(new|read|replied|closed)$"
PRIORITY_PATTERN = "^(low|medium|high|urgent)$"
SKILL_CATEGORY_PATTERN = "^(programming|design|marketing|business|data-science|other)$"
SKILL_LEVEL_PATTERN = "^(beginner|intermediate|advanced)$"


# ---------------------------------------------------------------------------
# Response envelope
# ---------------------------------------------------------------------------

class ApiResponse(BaseModel):
    """Uniform response body: ``{success, message?, data?}``."""

    success: bool
    message: Optional[str] = None
    data: Optional[Any] = None


def ok(data: Any = None, message: Optional[str] = None) -> dict:
    body: dict = {"success": True}
    if message is not None:
        body["message"] = message
    if data is not None:
        body["data"] = data
    return body


class Pagination(BaseModel):
    current: int
    pages: int
    total: int
    limit: int


def paginate(total: int, page: int, limit: int) -> Pagination:
    return Pagination(current=page, pages=(total + limit - 1) // limit, total=total, limit=limit)


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

class UserRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    first_name: str
    last_name: str
    phone: Optional[str] = None
    role: str
    is_active: bool
    created_at: datetime
    last_login_at: Optional[datetime] = None


class InstructorProfileRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: int
    bio: str
    designation: str
    experience_years: int
    is_approved: bool
    approved_at: Optional[datetime] = None


class UserStatusUpdate(BaseModel):
    is_active: bool = Field(..., alias="isActive")

    model_config = ConfigDict(populate_by_name=True)


class AdminUserCreate(BaseModel):
    email: str = Field(..., pattern=EMAIL_PATTERN, max_length=256)
    password: str = Field(..., min_length=6)
    first_name: str = Field(..., min_length=2, max_length=50)
    last_name: str = Field(..., min_length=2, max_length=50)
    phone: str = Field(..., pattern=PHONE_PATTERN, max_length=32)
    role: str = Field(default="student", pattern=ROLE_PATTERN)


class AdminUserUpdate(BaseModel):
    first_name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    last_name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    phone: Optional[str] = Field(default=None, pattern=PHONE_PATTERN, max_length=32)
    role: Optional[str] = Field(default=None, pattern=ROLE_PATTERN)
    is_active: Optional[bool] = Field(default=None, alias="isActive")

    model_config = ConfigDict(populate_by_name=True)


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

class CourseCreate(BaseModel):
    name: str = Field(..., min_length=3, max_length=100)
    description: str = Field(..., min_length=10)
    fees: float = Field(..., ge=0)
    duration: str = Field(..., min_length=1, max_length=64)
    image_url: Optional[str] = None
    instructor_id: Optional[int] = Field(
        default=None, description="Owner instructor; admins may assign, instructors own what they create."
    )


class CourseUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=3, max_length=100)
    description: Optional[str] = Field(default=None, min_length=10)
    fees: Optional[float] = Field(default=None, ge=0)
    duration: Optional[str] = Field(default=None, min_length=1, max_length=64)
    image_url: Optional[str] = None
    is_active: Optional[bool] = None


class CourseRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: str
    fees: float
    duration: str
    image_url: Optional[str] = None
    instructor_id: Optional[int] = None
    is_active: bool
    enrollment_count: int
    rating: float = 0.0
    created_at: datetime


class SubjectCreate(BaseModel):
    course_id: int
    name: str = Field(..., min_length=3, max_length=100)
    description: str = Field(..., min_length=10)


class SubjectUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=3, max_length=100)
    description: Optional[str] = Field(default=None, min_length=10)
    is_active: Optional[bool] = None


class SubjectRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    course_id: int
    name: str
    description: str
    is_active: bool


class MaterialRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    course_id: int
    subject_id: Optional[int] = None
    title: str
    file_url: str
    file_name: str
    file_size: int
    content_type: Optional[str] = None
    uploaded_by: int
    created_at: datetime


# ---------------------------------------------------------------------------
# Enrollments
# ---------------------------------------------------------------------------

class ProgressUpdate(BaseModel):
    progress: int = Field(..., ge=0, le=100)


class EnrollmentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    student_id: int
    course_id: int
    progress: int
    status: str
    enrolled_at: datetime
    completed_at: Optional[datetime] = None


class EnrollmentWithCourse(EnrollmentRead):
    course: Optional[CourseRead] = None


class ReviewCreate(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field(default="", max_length=1000)


class ReviewRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    course_id: int
    student_id: int
    rating: int
    comment: str
    created_at: datetime


# ---------------------------------------------------------------------------
# Contact messages
# ---------------------------------------------------------------------------

class ContactSubmission(BaseModel):
    """Shape of a public contact-form body (camelCase accepted)."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=3, max_length=100)
    email: str = Field(..., pattern=EMAIL_PATTERN, max_length=256)
    phone: str = Field(..., pattern=PHONE_PATTERN, max_length=32)
    subject: str = Field(..., min_length=5, max_length=200)
    message: str = Field(..., min_length=10, max_length=2000)
    captcha_token: str = Field(..., alias="captchaToken", min_length=1)
    form_start_time: int = Field(..., alias="formStartTime", gt=0)
    # Honeypot fields (must stay empty)
    website: Optional[str] = Field(default=None, max_length=0)
    url: Optional[str] = Field(default=None, max_length=0)
    link: Optional[str] = Field(default=None, max_length=0)


class ContactMessageRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    created_at: datetime
    name: str
    email: str
    phone: str
    subject: str
    message: str
    status: str
    priority: str
    reply_message: Optional[str] = None
    replied_by_id: Optional[int] = None
    replied_at: Optional[datetime] = None
    ip_address: Optional[str] = None
    fingerprint: Optional[str] = None
    form_fill_ms: Optional[int] = None


class StatusUpdate(BaseModel):
    status: str = Field(..., pattern=MESSAGE_STATUS_PATTERN)


class PriorityUpdate(BaseModel):
    priority: str = Field(..., pattern=PRIORITY_PATTERN)


class ReplyRequest(BaseModel):
    reply_message: str = Field(..., alias="replyMessage", min_length=1, max_length=5000)

    model_config = ConfigDict(populate_by_name=True)


class BulkAction(BaseModel):
    message_ids: List[int] = Field(..., alias="messageIds", min_length=1)
    action: str = Field(..., pattern="^(mark-read|mark-closed|set-priority|delete)$")
    priority: Optional[str] = Field(default=None, pattern=PRIORITY_PATTERN)

    model_config = ConfigDict(populate_by_name=True)


# ---------------------------------------------------------------------------
# CAPTCHA
# ---------------------------------------------------------------------------

class ChallengeRequest(BaseModel):
    type: str = Field(default="math", pattern="^(math|slider|puzzle|text|timing)$")
    difficulty: str = Field(default="medium", pattern="^(easy|medium|hard)$")


class ChallengeRead(BaseModel):
    id: str
    type: str
    prompt: str
    payload: dict = Field(default_factory=dict)
    expires_in: int


class ChallengeAnswer(BaseModel):
    response: Any = None


# ---------------------------------------------------------------------------
# Sliders & skills
# ---------------------------------------------------------------------------

class SliderCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=256)
    description: str = Field(..., min_length=1)
    button_text: str = "Learn More"
    button_link: str = "#"
    order: int = 0
    is_active: bool = True
    is_default: bool = False


class SliderUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=256)
    description: Optional[str] = Field(default=None, min_length=1)
    button_text: Optional[str] = None
    button_link: Optional[str] = None
    order: Optional[int] = None
    is_active: Optional[bool] = None
    is_default: Optional[bool] = None


class SliderRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    description: str
    image_url: Optional[str] = None
    button_text: str
    button_link: str
    order: int
    is_active: bool
    is_default: bool


class SkillCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=50)
    description: str = Field(default="", max_length=200)
    category: str = Field(default="other", pattern=SKILL_CATEGORY_PATTERN)
    level: str = Field(default="beginner", pattern=SKILL_LEVEL_PATTERN)


class SkillUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    description: Optional[str] = Field(default=None, max_length=200)
    category: Optional[str] = Field(default=None, pattern=SKILL_CATEGORY_PATTERN)
    level: Optional[str] = Field(default=None, pattern=SKILL_LEVEL_PATTERN)
    is_active: Optional[bool] = None


class SkillRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: str
    category: str
    level: str
    is_active: bool


# ---------------------------------------------------------------------------
# Site settings
# ---------------------------------------------------------------------------

SETTINGS_CATEGORY_PATTERN = "^(general|email|courses|notifications|security|uploads|backup)$"


class SettingsUpdate(BaseModel):
    category: str = Field(..., pattern=SETTINGS_CATEGORY_PATTERN)
    settings: dict


class SettingsReset(BaseModel):
    category: Optional[str] = Field(default=None, pattern=SETTINGS_CATEGORY_PATTERN)
