from __future__ import annotations

from typing import Callable, Optional

from fastapi import Request

from ..captcha.service import CaptchaService
from ..config import Settings, settings as default_settings
from .pipeline import ContactPipeline
from .store import KeyedWindowStore


def build_contact_pipeline(
    settings: Optional[Settings] = None,
    captcha: Optional[CaptchaService] = None,
    store: Optional[KeyedWindowStore] = None,
    recaptcha: Optional[Callable[[str, str], dict]] = None,
) -> ContactPipeline:
    """Wire a pipeline with its own counter store and CAPTCHA service."""
    s = settings or default_settings
    return ContactPipeline(
        settings=s,
        store=store or KeyedWindowStore(),
        captcha=captcha or CaptchaService(ttl_seconds=s.captcha_challenge_ttl_seconds),
        recaptcha=recaptcha,
    )


def get_contact_pipeline(request: Request) -> ContactPipeline:
    """FastAPI dependency: the pipeline owned by the running app."""
    return request.app.state.contact_pipeline


def get_captcha_service(request: Request) -> CaptchaService:
    return request.app.state.contact_pipeline.captcha
