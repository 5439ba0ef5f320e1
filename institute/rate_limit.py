"""
rate_limit.py - Request rate limiting for security-sensitive endpoints
======================================================================
Uses slowapi to enforce per-IP rate limits on login and registration,
preventing brute-force attacks and sign-up abuse.  The contact form has
its own keyed limits inside the contact pipeline.
"""
from __future__ import annotations

from slowapi import Limiter
from slowapi.util import get_remote_address

from .config import settings

limiter = Limiter(key_func=get_remote_address, enabled=settings.rate_limit_enabled)
