"""
Unit tests for the contact anti-abuse pipeline: stage order, each
rejection, strike accounting and the CAPTCHA branches.

Run with: pytest tests/ -v
"""
from __future__ import annotations

import httpx
import pytest

from institute.captcha.service import CaptchaService
from institute.config import Settings
from institute.contact.pipeline import (
    GENERIC_BLOCKED,
    GENERIC_SUCCESS,
    ContactPipeline,
    ContactRequest,
    make_fingerprint,
    sanitize_text,
    spam_score,
    suspicious_pattern_count,
)
from institute.contact.store import KeyedWindowStore

NOW = 1_700_000_000.0
STAGES = ["fingerprint", "reputation", "sanitize", "honeypot", "timing",
          "rate_limit", "captcha", "content", "schema"]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class FakeClock:
    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _settings(**overrides) -> Settings:
    values = {"environment": "development", "recaptcha_secret_key": "", "blocked_ips": []}
    values.update(overrides)
    return Settings(**values)


def _pipeline(settings: Settings = None, recaptcha=None, clock: FakeClock = None) -> ContactPipeline:
    clock = clock or FakeClock()
    return ContactPipeline(
        settings=settings or _settings(),
        store=KeyedWindowStore(clock=clock),
        captcha=CaptchaService(clock=clock),
        recaptcha=recaptcha,
        wall_clock=lambda: NOW,
    )


def _body(n: int = 0, **overrides) -> dict:
    body = {
        "name": "Priya Sharma",
        "email": f"priya{n}@example.com",
        "phone": f"+91 98765 4321{n}",
        "subject": "Batch timings for physics",
        "message": "Could you share the weekend batch timings for the physics course?",
        "captchaToken": "dev-token",
        "formStartTime": int((NOW - 30) * 1000),
    }
    body.update(overrides)
    return body


def _req(body: dict, ip: str = "203.0.113.7") -> ContactRequest:
    return ContactRequest(ip=ip, user_agent="pytest-agent", accept_language="en-IN", body=body)


# ---------------------------------------------------------------------------
# Helpers under test
# ---------------------------------------------------------------------------

def test_sanitize_strips_scripts_and_handlers():
    dirty = '<script>alert(1)</script>Hello <b onclick="x()">there</b> javascript:void(0)'
    clean = sanitize_text(dirty)
    assert "<" not in clean
    assert "script" not in clean.lower()
    assert "javascript:" not in clean.lower()
    assert clean.startswith("Hello")


def test_sanitize_truncates_long_values():
    assert len(sanitize_text("a" * 6000)) == 5000


def test_fingerprint_is_stable_and_input_sensitive():
    a = make_fingerprint("1.2.3.4", "ua", "en", "123")
    assert a == make_fingerprint("1.2.3.4", "ua", "en", "123")
    assert a != make_fingerprint("1.2.3.5", "ua", "en", "123")
    assert len(a) == 64


def test_spam_score_counts_keywords():
    assert spam_score("Win the LOTTERY at our casino") == 2
    assert spam_score("Physics batch enquiry") == 0


def test_suspicious_patterns():
    assert suspicious_pattern_count("HELLOOOOOOOOOO WORLD") >= 2
    assert suspicious_pattern_count("A normal question about fees") == 0


# ---------------------------------------------------------------------------
# Accept path
# ---------------------------------------------------------------------------

def test_clean_submission_is_accepted_with_full_trace():
    verdict = _pipeline().run(_req(_body()))
    assert verdict.accepted
    assert [s.stage for s in verdict.trace] == STAGES
    assert all(s.outcome == "pass" for s in verdict.trace)
    assert verdict.submission.email == "priya0@example.com"
    assert verdict.form_fill_ms == 30_000
    assert len(verdict.fingerprint) == 64


def test_markup_is_sanitized_before_validation():
    body = _body(message="Please share fees <script>steal()</script>for the chemistry course.")
    verdict = _pipeline().run(_req(body))
    assert verdict.accepted
    assert "script" not in verdict.submission.message


# ---------------------------------------------------------------------------
# Reputation
# ---------------------------------------------------------------------------

def test_blocklisted_ip_gets_generic_403():
    pipeline = _pipeline(_settings(blocked_ips=["198.51.100.1"]))
    verdict = pipeline.run(_req(_body(), ip="198.51.100.1"))
    assert verdict.outcome == "reject"
    assert verdict.rejection.status_code == 403
    assert verdict.rejection.message == GENERIC_BLOCKED
    assert verdict.trace[-1].stage == "reputation"


def test_strikes_eventually_block_the_ip():
    pipeline = _pipeline(_settings(contact_strike_limit=2))
    for n in range(2):
        verdict = pipeline.run(_req(_body(n, website="http://spam.example")))
        assert verdict.outcome == "soft_reject"

    verdict = pipeline.run(_req(_body(5)))
    assert verdict.rejection.status_code == 403
    assert verdict.trace[-1].stage == "reputation"


# ---------------------------------------------------------------------------
# Honeypot
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("field", ["website", "url", "link"])
def test_honeypot_is_a_soft_reject(field):
    pipeline = _pipeline()
    verdict = pipeline.run(_req(_body(**{field: "filled by a bot"})))
    assert verdict.outcome == "soft_reject"
    assert not verdict.accepted
    assert verdict.rejection.message == GENERIC_SUCCESS
    assert verdict.submission is None
    assert pipeline.store.count(pipeline.strike_rule, "203.0.113.7") == 1


def test_empty_honeypot_fields_pass():
    verdict = _pipeline().run(_req(_body(website="", url="", link="")))
    assert verdict.accepted


# ---------------------------------------------------------------------------
# Timing
# ---------------------------------------------------------------------------

def test_too_fast_submission_rejected():
    verdict = _pipeline().run(_req(_body(formStartTime=int((NOW - 2) * 1000))))
    assert verdict.rejection.status_code == 400
    assert verdict.rejection.message == "Please take more time to fill out the form"


def test_expired_form_rejected():
    verdict = _pipeline().run(_req(_body(formStartTime=int((NOW - 3600) * 1000))))
    assert verdict.rejection.status_code == 400
    assert verdict.rejection.message == "Form session expired. Please refresh and try again."


@pytest.mark.parametrize("start", [None, "yesterday", True, float("nan"), float("inf"), float("-inf")])
def test_missing_or_malformed_start_time_rejected(start):
    body = _body()
    if start is None:
        body.pop("formStartTime")
    else:
        body["formStartTime"] = start
    verdict = _pipeline().run(_req(body))
    assert verdict.rejection.message == "Invalid form submission"
    assert verdict.trace[-1].stage == "timing"


def test_numeric_string_start_time_accepted():
    verdict = _pipeline().run(_req(_body(formStartTime=str(int((NOW - 30) * 1000)))))
    assert verdict.accepted


# ---------------------------------------------------------------------------
# Rate limit
# ---------------------------------------------------------------------------

def test_idle_rate_limit_keys_are_evicted():
    clock = FakeClock()
    store = KeyedWindowStore(clock=clock, sweep_every=20)
    pipeline = ContactPipeline(
        settings=_settings(),
        store=store,
        captcha=CaptchaService(clock=clock),
        wall_clock=lambda: NOW,
    )

    for n in range(200):
        pipeline.run(_req(_body(n), ip=f"198.51.100.{n % 250}"))
        clock.advance(3 * 3600)

    # ip, email and phone keys per submission plus one global key
    assert len(store) <= 20


def test_ip_limit_returns_429_with_retry_after():
    pipeline = _pipeline()
    for n in range(3):
        assert pipeline.run(_req(_body(n))).accepted

    verdict = pipeline.run(_req(_body(9)))
    rej = verdict.rejection
    assert rej.status_code == 429
    assert int(rej.headers["Retry-After"]) == 3600
    assert rej.extra["retryAfter"] == 3600
    assert "blockedUntil" in rej.extra


def test_email_limit_applies_across_ips():
    pipeline = _pipeline()
    body = _body()
    assert pipeline.run(_req(body, ip="10.0.0.1")).accepted
    assert pipeline.run(_req(dict(body, phone="+1 555 0001"), ip="10.0.0.2")).accepted
    verdict = pipeline.run(_req(dict(body, phone="+1 555 0002"), ip="10.0.0.3"))
    assert verdict.rejection.status_code == 429


def test_rate_limit_window_rolls_over():
    clock = FakeClock()
    pipeline = _pipeline(clock=clock)
    for n in range(3):
        assert pipeline.run(_req(_body(n))).accepted
    assert pipeline.run(_req(_body(3))).rejection.status_code == 429

    # Blocked for an hour once over the limit, then the window has also rolled
    clock.advance(3601)
    assert pipeline.run(_req(_body(4))).accepted


# ---------------------------------------------------------------------------
# CAPTCHA
# ---------------------------------------------------------------------------

def test_missing_captcha_token_rejected():
    body = _body()
    body.pop("captchaToken")
    verdict = _pipeline().run(_req(body))
    assert verdict.rejection.message == "CAPTCHA verification is required"
    assert verdict.trace[-1].stage == "captcha"


def test_alternative_token_redeemed_once():
    clock = FakeClock()
    pipeline = _pipeline(clock=clock)
    issued = pipeline.captcha.issue("math", "easy")
    token = pipeline.captcha.verify(issued.id, issued.challenge.answer).token

    assert pipeline.run(_req(_body(0, captchaToken=token))).accepted
    verdict = pipeline.run(_req(_body(1, captchaToken=token)))
    assert verdict.rejection.status_code == 400
    assert verdict.rejection.strike


def test_forged_alternative_token_rejected():
    verdict = _pipeline().run(_req(_body(captchaToken="alternative-captcha-math-deadbeef")))
    assert verdict.rejection.status_code == 400
    assert verdict.rejection.message == "CAPTCHA verification failed. Please try again."


def test_production_without_secret_is_unavailable():
    settings = _settings(environment="production", jwt_secret="x" * 48)
    verdict = _pipeline(settings).run(_req(_body()))
    assert verdict.rejection.status_code == 503


def test_recaptcha_success_and_low_score():
    settings = _settings(recaptcha_secret_key="secret")
    good = _pipeline(settings, recaptcha=lambda token, ip: {"success": True, "score": 0.9})
    assert good.run(_req(_body())).accepted

    low = _pipeline(settings, recaptcha=lambda token, ip: {"success": True, "score": 0.1})
    verdict = low.run(_req(_body()))
    assert verdict.rejection.message == "Security verification failed. Please try again."


def test_recaptcha_failure_counts_a_strike():
    settings = _settings(recaptcha_secret_key="secret")
    pipeline = _pipeline(settings, recaptcha=lambda token, ip: {"success": False, "error-codes": ["bad"]})
    verdict = pipeline.run(_req(_body()))
    assert verdict.rejection.status_code == 400
    assert pipeline.store.count(pipeline.strike_rule, "203.0.113.7") == 1


def test_recaptcha_outage_depends_on_environment():
    def unreachable(token, ip):
        raise httpx.ConnectError("connection refused")

    dev = _pipeline(_settings(recaptcha_secret_key="secret"), recaptcha=unreachable)
    assert dev.run(_req(_body())).accepted

    prod_settings = _settings(environment="production", jwt_secret="x" * 48, recaptcha_secret_key="secret")
    prod = _pipeline(prod_settings, recaptcha=unreachable)
    assert prod.run(_req(_body())).rejection.status_code == 503


# ---------------------------------------------------------------------------
# Content & schema
# ---------------------------------------------------------------------------

def test_spam_keywords_rejected():
    body = _body(message="Congratulations winner! Claim your lottery prize at our casino today.")
    verdict = _pipeline().run(_req(body))
    assert verdict.rejection.message == "Message content appears to be spam"
    assert verdict.rejection.strike


def test_too_many_links_rejected():
    body = _body(message="See https://a.example https://b.example https://c.example for details")
    verdict = _pipeline().run(_req(body))
    assert verdict.rejection.status_code == 400
    assert verdict.trace[-1].stage == "content"


def test_short_message_rejected():
    verdict = _pipeline().run(_req(_body(message="Hi")))
    assert verdict.rejection.message == "Message is too short. Please provide more details."


def test_schema_errors_name_the_field():
    verdict = _pipeline().run(_req(_body(email="not-an-email")))
    assert verdict.rejection.message == "Validation error"
    assert verdict.rejection.error.startswith("email")
    assert verdict.trace[-1].stage == "schema"


def test_first_failing_stage_wins():
    # Honeypot and bad timing both apply; honeypot runs first
    body = _body(website="x", formStartTime=int(NOW * 1000))
    verdict = _pipeline().run(_req(body))
    assert verdict.outcome == "soft_reject"
    assert verdict.trace[-1].stage == "honeypot"
