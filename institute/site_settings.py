"""
site_settings.py - Admin-editable site settings, one JSON object per category
=============================================================================
Categories are created with their defaults the first time anything reads
them.  Only ``general`` is exposed to anonymous visitors.
"""
from __future__ import annotations

import copy
import logging
from typing import Dict, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from .models import SiteSetting

logger = logging.getLogger("institute.settings")

PUBLIC_CATEGORIES = ("general",)

DEFAULT_SETTINGS: Dict[str, dict] = {
    "general": {
        "siteName": "Coaching Institute",
        "siteDescription": "Coaching for school boards and entrance exams",
        "contactEmail": "info@institute.local",
        "contactPhone": "",
        "address": "",
        "timezone": "Asia/Kolkata",
        "language": "en",
        "currency": "INR",
    },
    "email": {
        "fromEmail": "noreply@institute.local",
        "fromName": "Coaching Institute",
    },
    "courses": {
        "defaultCourseDuration": "3 months",
        "allowSelfEnrollment": True,
        "enableCourseReviews": True,
        "maxStudentsPerBatch": 30,
    },
    "notifications": {
        "enableEmailNotifications": True,
        "notifyOnEnrollment": True,
    },
    "security": {
        "sessionTimeout": 3600,
        "maxLoginAttempts": 5,
        "passwordMinLength": 6,
    },
    "uploads": {
        "maxFileSize": 10 * 1024 * 1024,
        "allowedDocumentTypes": ["pdf", "doc", "docx", "ppt", "pptx", "txt"],
        "allowedImageTypes": ["jpg", "jpeg", "png", "gif", "webp"],
    },
    "backup": {
        "enableAutoBackup": False,
        "backupFrequency": "daily",
        "backupRetention": 30,
    },
}


def ensure_defaults(session: Session) -> None:
    """Insert any category that has no row yet."""
    existing = set(session.execute(select(SiteSetting.category)).scalars())
    missing = [c for c in DEFAULT_SETTINGS if c not in existing]
    for category in missing:
        session.add(SiteSetting(category=category, values=copy.deepcopy(DEFAULT_SETTINGS[category])))
    if missing:
        session.flush()
        logger.info("Initialised default settings for %s", ", ".join(missing))


def all_settings(session: Session) -> Dict[str, dict]:
    ensure_defaults(session)
    rows = session.execute(select(SiteSetting).order_by(SiteSetting.category)).scalars()
    return {row.category: row.values for row in rows}


def get_category(session: Session, category: str) -> Optional[dict]:
    ensure_defaults(session)
    row = session.execute(
        select(SiteSetting).where(SiteSetting.category == category)
    ).scalar_one_or_none()
    return row.values if row else None


def update_category(session: Session, category: str, values: dict, user_id: Optional[int] = None) -> dict:
    """Replace a category's values wholesale (upsert)."""
    row = session.execute(
        select(SiteSetting).where(SiteSetting.category == category)
    ).scalar_one_or_none()
    if row is None:
        row = SiteSetting(category=category)
        session.add(row)
    row.values = dict(values)
    row.modified_by_id = user_id
    session.flush()
    return row.values


def reset_to_defaults(session: Session, category: Optional[str] = None, user_id: Optional[int] = None) -> dict:
    """Restore one category, or every category when *category* is None."""
    if category is not None:
        return update_category(session, category, copy.deepcopy(DEFAULT_SETTINGS[category]), user_id)
    return {
        c: update_category(session, c, copy.deepcopy(values), user_id)
        for c, values in DEFAULT_SETTINGS.items()
    }
