from __future__ import annotations

import logging
import os
import sys

from sqlalchemy import select

from .core import hash_password
from ..database import db_session
from ..models import User

logger = logging.getLogger("institute.seed")

_DEFAULT_PASSWORD = "changeme"


def seed_admin() -> None:
    """
    Create a default admin account on first startup if no admin exists.
    Credentials are read from environment variables so they can be
    overridden before deployment.

    Defaults (for local dev only - change before production):
      INSTITUTE_ADMIN_EMAIL    = admin@institute.local
      INSTITUTE_ADMIN_PASSWORD = changeme
      INSTITUTE_ADMIN_NAME     = Institute Admin
    """
    email    = os.getenv("INSTITUTE_ADMIN_EMAIL",    "admin@institute.local").lower()
    password = os.getenv("INSTITUTE_ADMIN_PASSWORD", _DEFAULT_PASSWORD)
    name     = os.getenv("INSTITUTE_ADMIN_NAME",     "Institute Admin")

    env = os.getenv("INSTITUTE_ENVIRONMENT", "development")

    with db_session() as session:
        existing = session.execute(
            select(User).where(User.role == "admin").limit(1)
        ).scalar_one_or_none()
        if existing:
            return  # Admin already seeded - don't overwrite

        if password == _DEFAULT_PASSWORD:
            print(
                "\n⚠️  WARNING: Seeding admin with DEFAULT password 'changeme'.\n"
                "   Set INSTITUTE_ADMIN_PASSWORD before deploying to production.\n",
                file=sys.stderr,
            )
            if env != "development":
                print(
                    "🚨 REFUSING to seed default password in non-development "
                    f"environment ({env}).\n"
                    "   Set INSTITUTE_ADMIN_PASSWORD env var.\n",
                    file=sys.stderr,
                )
                return

        first, _, last = name.partition(" ")
        admin = User(
            email=email,
            first_name=first or "Admin",
            last_name=last or "User",
            password_hash=hash_password(password),
            role="admin",
            is_active=True,
        )
        session.add(admin)
        logger.info("Default admin created: %s", email)
