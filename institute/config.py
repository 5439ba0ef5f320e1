from __future__ import annotations

import sys
from functools import lru_cache
from typing import List

from pydantic import field_validator
from pydantic_settings import BaseSettings


_DEFAULT_JWT_SECRET = "change-me-in-production-use-long-random-string"


class Settings(BaseSettings):
    # Database
    database_url: str = "sqlite:///./institute.db"
    log_sql: bool = False

    # Server
    environment: str = "development"
    log_level: str = "info"
    log_format: str = "json"
    allow_cors_origins: List[str] = ["http://localhost:5173"]
    frontend_url: str = "http://localhost:5173"

    # Uploads
    upload_dir: str = "uploads"
    upload_max_bytes: int = 10 * 1024 * 1024  # 10 MB
    allowed_upload_extensions: List[str] = [
        ".pdf", ".doc", ".docx", ".ppt", ".pptx", ".txt",
        ".jpg", ".jpeg", ".png", ".gif", ".webp", ".mp4", ".zip",
    ]

    # Auth
    jwt_secret: str = _DEFAULT_JWT_SECRET
    jwt_expire_minutes: int = 60 * 24 * 7  # 7 days
    password_reset_expire_minutes: int = 60
    registration_enabled: bool = True

    # Rate limiting (slowapi, per-route)
    rate_limit_enabled: bool = True
    login_rate_limit: str = "5/minute"
    register_rate_limit: str = "3/minute"

    # Contact form anti-abuse
    contact_min_fill_seconds: float = 5.0
    contact_max_fill_seconds: float = 30 * 60.0
    contact_ip_limit: int = 3
    contact_ip_window_seconds: int = 3600
    contact_ip_block_seconds: int = 3600
    contact_email_limit: int = 2
    contact_email_window_seconds: int = 3600
    contact_email_block_seconds: int = 1800
    contact_phone_limit: int = 2
    contact_phone_window_seconds: int = 3600
    contact_phone_block_seconds: int = 1800
    contact_global_limit: int = 50
    contact_global_window_seconds: int = 3600
    contact_strike_limit: int = 10
    contact_strike_window_seconds: int = 86400
    contact_strike_block_seconds: int = 86400
    spam_keyword_threshold: int = 2
    blocked_ips: List[str] = []

    # CAPTCHA
    recaptcha_secret_key: str = ""
    recaptcha_verify_url: str = "https://www.google.com/recaptcha/api/siteverify"
    recaptcha_min_score: float = 0.5
    recaptcha_timeout_seconds: float = 10.0
    captcha_challenge_ttl_seconds: int = 300

    # Mail
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    mail_from: str = "no-reply@coaching-institute.local"

    @field_validator("jwt_secret")
    @classmethod
    def validate_jwt_secret(cls, v: str, info) -> str:
        """Refuse to start in production with the default JWT secret."""
        env = info.data.get("environment", "development")
        if env != "development" and v == _DEFAULT_JWT_SECRET:
            print(
                "\n🚨 FATAL: INSTITUTE_JWT_SECRET is set to the default value.\n"
                "   Set INSTITUTE_JWT_SECRET to a strong random string before "
                "running in production.\n"
                "   Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(48))\"\n",
                file=sys.stderr,
            )
            raise ValueError(
                "JWT secret must be changed from default in non-development environments. "
                "Set INSTITUTE_JWT_SECRET env var."
            )
        return v

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    class Config:
        env_prefix = "INSTITUTE_"


@lru_cache
def get_settings() -> Settings:
    return Settings()


# Module-level singleton for convenience
settings = get_settings()
