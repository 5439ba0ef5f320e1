"""
pipeline.py - Contact form anti-abuse pipeline
==============================================
Runs a public contact submission through fixed, independent stages and
short-circuits on the first one that rejects:

  1. Fingerprint     - sha256(ip, user agent, language, form start time)
  2. IP reputation   - blocklist + strike counter
  3. Sanitization    - strip markup, scripts and control characters
  4. Honeypot        - hidden fields must be empty (soft reject)
  5. Timing          - form filled neither too fast nor too slow
  6. Rate limit      - per IP, email, phone and global rolling windows
  7. CAPTCHA         - alternative pass token or reCAPTCHA
  8. Content         - spam keywords, suspicious patterns, links, length
  9. Schema          - field presence, shape and length

Each stage records a trace step.  A soft reject answers the client as if
the message were accepted and nothing is persisted.
"""
from __future__ import annotations

import hashlib
import logging
import math
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from functools import partial
from typing import Any, Callable, Dict, List, Optional

import httpx
from pydantic import ValidationError

from ..captcha.recaptcha import verify_recaptcha
from ..captcha.service import TOKEN_PREFIX, CaptchaService, token_variant
from ..config import Settings
from ..schemas import ContactSubmission
from .store import KeyedWindowStore, LimitRule

logger = logging.getLogger("institute.contact")

HONEYPOT_FIELDS = ("website", "url", "link")
MAX_FIELD_LENGTH = 5000
MIN_MESSAGE_LENGTH = 10
MAX_MESSAGE_LENGTH = 2000
MAX_LINKS = 2

SPAM_KEYWORDS = [
    "viagra", "casino", "lottery", "winner", "congratulations",
    "click here", "free money", "make money fast", "work from home",
    "bitcoin", "cryptocurrency", "investment opportunity", "loan",
    "weight loss", "diet pills", "enlargement", "dating",
    "seo services", "website promotion", "backlinks",
]

_SUSPICIOUS_PATTERNS = [
    re.compile(r"(.)\1{4,}"),          # aaaaa
    re.compile(r"[A-Z]{10,}"),         # SHOUTING
    re.compile(r"\d{10,}"),            # long digit runs
    re.compile(r"https?://\S+", re.IGNORECASE),
]
_URL_RE = re.compile(r"https?://\S+", re.IGNORECASE)

_BLOCK_TAGS_RE = re.compile(r"<(script|iframe|style)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
_TAG_RE = re.compile(r"</?[a-zA-Z][^>]*>")
_JS_SCHEME_RE = re.compile(r"javascript\s*:", re.IGNORECASE)
_EVENT_HANDLER_RE = re.compile(r"\bon\w+\s*=", re.IGNORECASE)
_DATA_HTML_RE = re.compile(r"data:text/html", re.IGNORECASE)
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")

GENERIC_SUCCESS = "Your message has been sent successfully. We will get back to you soon."
GENERIC_BLOCKED = "Unable to process your request at this time."


# ---------------------------------------------------------------------------
# Data
# ---------------------------------------------------------------------------

@dataclass
class ContactRequest:
    """What the pipeline needs from an incoming HTTP request."""
    ip: str
    user_agent: str = ""
    accept_language: str = ""
    body: Dict[str, Any] = field(default_factory=dict)


@dataclass
class StageStep:
    stage: str
    outcome: str          # pass | reject | soft_reject
    detail: Optional[str] = None
    duration_ms: float = 0.0


@dataclass
class Rejection:
    status_code: int
    message: str
    soft: bool = False
    strike: bool = False
    error: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ContactVerdict:
    outcome: str          # accept | reject | soft_reject
    fingerprint: str = ""
    rejection: Optional[Rejection] = None
    submission: Optional[ContactSubmission] = None
    form_fill_ms: Optional[int] = None
    trace: List[StageStep] = field(default_factory=list)

    @property
    def accepted(self) -> bool:
        return self.outcome == "accept"


@dataclass
class _Context:
    request: ContactRequest
    body: Dict[str, Any]
    fingerprint: str = ""
    form_fill_ms: Optional[int] = None
    submission: Optional[ContactSubmission] = None
    detail: Optional[str] = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def sanitize_text(value: str) -> str:
    value = _BLOCK_TAGS_RE.sub("", value)
    value = _TAG_RE.sub("", value)
    value = _JS_SCHEME_RE.sub("", value)
    value = _EVENT_HANDLER_RE.sub("", value)
    value = _DATA_HTML_RE.sub("", value)
    value = _CONTROL_RE.sub("", value)
    return value.strip()[:MAX_FIELD_LENGTH]


def make_fingerprint(ip: str, user_agent: str, accept_language: str, form_start: str) -> str:
    raw = "|".join([ip or "", user_agent or "", accept_language or "", form_start or ""])
    return hashlib.sha256(raw.encode()).hexdigest()


def _text(body: Dict[str, Any], key: str) -> str:
    value = body.get(key)
    return value if isinstance(value, str) else ""


def _parse_start_ms(raw: Any) -> Optional[int]:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, float):
        # json.loads accepts NaN, Infinity and overflowing literals like 1e400
        return int(raw) if math.isfinite(raw) else None
    if isinstance(raw, int):
        return raw
    if isinstance(raw, str) and raw.strip().isdigit():
        return int(raw.strip())
    return None


def spam_score(text: str) -> int:
    lowered = text.lower()
    return sum(1 for kw in SPAM_KEYWORDS if kw in lowered)


def suspicious_pattern_count(text: str) -> int:
    return sum(1 for p in _SUSPICIOUS_PATTERNS if p.search(text))


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

class ContactPipeline:
    def __init__(
        self,
        settings: Settings,
        store: KeyedWindowStore,
        captcha: CaptchaService,
        recaptcha: Optional[Callable[[str, str], dict]] = None,
        wall_clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings
        self.store = store
        self.captcha = captcha
        self._recaptcha = recaptcha or partial(
            verify_recaptcha,
            secret=settings.recaptcha_secret_key,
            url=settings.recaptcha_verify_url,
            timeout=settings.recaptcha_timeout_seconds,
        )
        self._now = wall_clock

        s = settings
        self.ip_rule = LimitRule("contact:ip", s.contact_ip_limit,
                                 s.contact_ip_window_seconds, s.contact_ip_block_seconds)
        self.email_rule = LimitRule("contact:email", s.contact_email_limit,
                                    s.contact_email_window_seconds, s.contact_email_block_seconds)
        self.phone_rule = LimitRule("contact:phone", s.contact_phone_limit,
                                    s.contact_phone_window_seconds, s.contact_phone_block_seconds)
        self.global_rule = LimitRule("contact:global", s.contact_global_limit,
                                     s.contact_global_window_seconds)
        self.strike_rule = LimitRule("contact:strike", s.contact_strike_limit,
                                     s.contact_strike_window_seconds, s.contact_strike_block_seconds)

        self._stages = [
            ("fingerprint", self._fingerprint),
            ("reputation", self._reputation),
            ("sanitize", self._sanitize),
            ("honeypot", self._honeypot),
            ("timing", self._timing),
            ("rate_limit", self._rate_limit),
            ("captcha", self._captcha),
            ("content", self._content),
            ("schema", self._schema),
        ]

    # ------------------------------------------------------------------

    def run(self, request: ContactRequest) -> ContactVerdict:
        ctx = _Context(request=request, body=dict(request.body or {}))
        trace: List[StageStep] = []

        for name, stage in self._stages:
            t = time.perf_counter()
            ctx.detail = None
            rejection = stage(ctx)
            duration = round((time.perf_counter() - t) * 1000, 2)
            if rejection is None:
                trace.append(StageStep(name, "pass", ctx.detail, duration))
                continue

            outcome = "soft_reject" if rejection.soft else "reject"
            trace.append(StageStep(name, outcome, rejection.error or rejection.message, duration))
            if rejection.strike:
                self.record_strike(request.ip)
            logger.warning(
                "Contact submission rejected at %s from IP %s: %s",
                name, request.ip, rejection.error or rejection.message,
            )
            return ContactVerdict(
                outcome=outcome,
                fingerprint=ctx.fingerprint,
                rejection=rejection,
                form_fill_ms=ctx.form_fill_ms,
                trace=trace,
            )

        logger.info("Contact submission accepted from IP %s", request.ip)
        return ContactVerdict(
            outcome="accept",
            fingerprint=ctx.fingerprint,
            submission=ctx.submission,
            form_fill_ms=ctx.form_fill_ms,
            trace=trace,
        )

    def record_strike(self, ip: str) -> None:
        self.store.consume(self.strike_rule, ip)

    # ── Stage 1: fingerprint ────────────────────────────────────────────
    def _fingerprint(self, ctx: _Context) -> Optional[Rejection]:
        req = ctx.request
        ctx.fingerprint = make_fingerprint(
            req.ip, req.user_agent, req.accept_language, str(ctx.body.get("formStartTime", ""))
        )
        ctx.detail = ctx.fingerprint[:16]
        return None

    # ── Stage 2: IP reputation ──────────────────────────────────────────
    def _reputation(self, ctx: _Context) -> Optional[Rejection]:
        ip = ctx.request.ip
        if ip in self.settings.blocked_ips:
            return Rejection(403, GENERIC_BLOCKED, error="IP is on the blocklist")
        state = self.store.peek(self.strike_rule, ip)
        if not state.allowed:
            return Rejection(403, GENERIC_BLOCKED, error="IP exceeded the suspicious activity threshold")
        ctx.detail = f"{self.store.count(self.strike_rule, ip)} strikes"
        return None

    # ── Stage 3: sanitization ───────────────────────────────────────────
    def _sanitize(self, ctx: _Context) -> Optional[Rejection]:
        changed = 0
        for key, value in list(ctx.body.items()):
            if isinstance(value, str):
                clean = sanitize_text(value)
                if clean != value.strip():
                    changed += 1
                ctx.body[key] = clean
        ctx.detail = f"{changed} fields altered"
        return None

    # ── Stage 4: honeypot ───────────────────────────────────────────────
    def _honeypot(self, ctx: _Context) -> Optional[Rejection]:
        filled = [f for f in HONEYPOT_FIELDS if ctx.body.get(f)]
        if filled:
            return Rejection(200, GENERIC_SUCCESS, soft=True, strike=True,
                             error=f"Honeypot field(s) filled: {', '.join(filled)}")
        return None

    # ── Stage 5: timing ─────────────────────────────────────────────────
    def _timing(self, ctx: _Context) -> Optional[Rejection]:
        start_ms = _parse_start_ms(ctx.body.get("formStartTime"))
        if start_ms is None:
            return Rejection(400, "Invalid form submission", error="formStartTime missing or malformed")

        elapsed_ms = int(self._now() * 1000) - start_ms
        ctx.form_fill_ms = elapsed_ms
        if elapsed_ms < self.settings.contact_min_fill_seconds * 1000:
            return Rejection(400, "Please take more time to fill out the form",
                             error=f"Form filled in {elapsed_ms}ms")
        if elapsed_ms > self.settings.contact_max_fill_seconds * 1000:
            return Rejection(400, "Form session expired. Please refresh and try again.",
                             error=f"Form open for {elapsed_ms}ms")
        ctx.detail = f"{elapsed_ms}ms"
        return None

    # ── Stage 6: rate limit ─────────────────────────────────────────────
    def _rate_limit(self, ctx: _Context) -> Optional[Rejection]:
        ip = ctx.request.ip
        email = _text(ctx.body, "email").lower() or ip
        phone = _text(ctx.body, "phone") or ip

        results = [
            self.store.consume(self.ip_rule, ip),
            self.store.consume(self.email_rule, email),
            self.store.consume(self.phone_rule, phone),
            self.store.consume(self.global_rule, "global"),
        ]
        refused = [r for r in results if not r.allowed]
        if not refused:
            ctx.detail = f"{results[0].remaining} remaining for IP"
            return None

        secs = max(1, round(max(r.retry_after for r in refused)))
        blocked_until = datetime.now(timezone.utc) + timedelta(seconds=secs)
        return Rejection(
            429,
            "Too many contact attempts. Please try again later.",
            error="Rate limit exceeded",
            headers={"Retry-After": str(secs)},
            extra={"retryAfter": secs, "blockedUntil": blocked_until.isoformat()},
        )

    # ── Stage 7: CAPTCHA ────────────────────────────────────────────────
    def _captcha(self, ctx: _Context) -> Optional[Rejection]:
        token = _text(ctx.body, "captchaToken")
        if not token:
            return Rejection(400, "CAPTCHA verification is required")

        if token.startswith(TOKEN_PREFIX):
            if not self.captcha.redeem(token):
                return Rejection(400, "CAPTCHA verification failed. Please try again.",
                                 strike=True, error="Unknown or reused alternative CAPTCHA token")
            ctx.detail = f"alternative ({token_variant(token)})"
            return None

        if not self.settings.recaptcha_secret_key:
            if self.settings.is_development:
                ctx.detail = "reCAPTCHA not configured; skipped in development"
                return None
            logger.error("reCAPTCHA secret key not configured")
            return Rejection(503, "CAPTCHA verification service unavailable")

        try:
            result = self._recaptcha(token, ctx.request.ip)
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("CAPTCHA verification error: %s", exc)
            if self.settings.is_development:
                ctx.detail = "reCAPTCHA unreachable; allowed in development"
                return None
            return Rejection(503, "CAPTCHA verification service error")

        if not result.get("success"):
            return Rejection(400, "CAPTCHA verification failed. Please try again.",
                             strike=True, error=f"reCAPTCHA errors: {result.get('error-codes')}")
        score = result.get("score")
        if score is not None and score < self.settings.recaptcha_min_score:
            return Rejection(400, "Security verification failed. Please try again.",
                             error=f"Low reCAPTCHA score {score}")
        ctx.detail = "reCAPTCHA verified"
        return None

    # ── Stage 8: content ────────────────────────────────────────────────
    def _content(self, ctx: _Context) -> Optional[Rejection]:
        b = ctx.body
        message = _text(b, "message")
        full_text = " ".join([_text(b, "name"), _text(b, "email"), _text(b, "subject"), message])

        score = spam_score(full_text)
        if score >= self.settings.spam_keyword_threshold:
            return Rejection(400, "Message content appears to be spam", strike=True,
                             error=f"Spam score {score}")
        if suspicious_pattern_count(full_text) >= 2:
            return Rejection(400, "Message content contains suspicious patterns")
        if len(_URL_RE.findall(message)) > MAX_LINKS:
            return Rejection(400, "Message contains too many links")
        if len(message) < MIN_MESSAGE_LENGTH:
            return Rejection(400, "Message is too short. Please provide more details.")
        if len(message) > MAX_MESSAGE_LENGTH:
            return Rejection(400, f"Message is too long. Please keep it under {MAX_MESSAGE_LENGTH} characters.")
        ctx.detail = f"spam score {score}"
        return None

    # ── Stage 9: schema ─────────────────────────────────────────────────
    def _schema(self, ctx: _Context) -> Optional[Rejection]:
        try:
            ctx.submission = ContactSubmission.model_validate(ctx.body)
        except ValidationError as exc:
            first = exc.errors()[0]
            loc = ".".join(str(p) for p in first.get("loc", ()))
            return Rejection(400, "Validation error", error=f"{loc}: {first.get('msg')}")
        return None
