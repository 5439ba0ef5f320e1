"""
service.py - Server-side CAPTCHA challenge lifecycle
====================================================
Issues challenges, checks responses, regenerates on failure, and hands
out single-use pass tokens that the contact pipeline redeems:

    issue()   → pending challenge (kept for ttl seconds)
    verify()  → pass: token "alternative-captcha-<variant>-<hex>"
                fail: the challenge is discarded and a fresh one issued
    redeem()  → True exactly once per unexpired token
"""
from __future__ import annotations

import logging
import random
import secrets
import time
from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable, Dict, Optional, Tuple

from .challenges import VARIANTS, Challenge

logger = logging.getLogger("institute.captcha")

TOKEN_PREFIX = "alternative-captcha-"


class UnknownChallenge(LookupError):
    """The challenge id was never issued, already used, or expired."""


@dataclass
class IssuedChallenge:
    id: str
    challenge: Challenge
    difficulty: str
    issued_at: float
    expires_in: int


@dataclass
class VerifyResult:
    passed: bool
    token: Optional[str] = None
    next_challenge: Optional[IssuedChallenge] = None


class CaptchaService:
    def __init__(
        self,
        ttl_seconds: int = 300,
        clock: Callable[[], float] = time.monotonic,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._rng = rng or random.SystemRandom()
        self._lock = Lock()
        self._pending: Dict[str, IssuedChallenge] = {}
        self._tokens: Dict[str, float] = {}   # token -> expiry

    def issue(self, kind: str = "math", difficulty: str = "medium") -> IssuedChallenge:
        variant = VARIANTS.get(kind)
        if variant is None:
            raise ValueError(f"Unknown CAPTCHA type {kind!r}")
        challenge = variant.generate(self._rng, difficulty)
        issued = IssuedChallenge(
            id=secrets.token_hex(16),
            challenge=challenge,
            difficulty=difficulty,
            issued_at=self._clock(),
            expires_in=self._ttl,
        )
        with self._lock:
            self._expire_locked(issued.issued_at)
            self._pending[issued.id] = issued
        return issued

    def verify(self, challenge_id: str, response: Any) -> VerifyResult:
        now = self._clock()
        with self._lock:
            self._expire_locked(now)
            issued = self._pending.pop(challenge_id, None)
        if issued is None:
            raise UnknownChallenge(challenge_id)

        variant = VARIANTS[issued.challenge.kind]
        elapsed = now - issued.issued_at
        if variant.check(issued.challenge, response, elapsed):
            token = f"{TOKEN_PREFIX}{issued.challenge.kind}-{secrets.token_hex(16)}"
            with self._lock:
                self._tokens[token] = now + self._ttl
            logger.info("CAPTCHA passed (%s)", issued.challenge.kind)
            return VerifyResult(passed=True, token=token)

        logger.info("CAPTCHA failed (%s), regenerating", issued.challenge.kind)
        return VerifyResult(
            passed=False,
            next_challenge=self.issue(issued.challenge.kind, issued.difficulty),
        )

    def redeem(self, token: str) -> bool:
        now = self._clock()
        with self._lock:
            self._expire_locked(now)
            return self._tokens.pop(token, None) is not None

    def pending_count(self) -> Tuple[int, int]:
        with self._lock:
            return len(self._pending), len(self._tokens)

    def _expire_locked(self, now: float) -> None:
        for cid in [c for c, i in self._pending.items() if i.issued_at + self._ttl <= now]:
            del self._pending[cid]
        for tok in [t for t, exp in self._tokens.items() if exp <= now]:
            del self._tokens[tok]


def token_variant(token: str) -> Optional[str]:
    """Return the variant named in an alternative CAPTCHA token, if any."""
    if not token.startswith(TOKEN_PREFIX):
        return None
    rest = token[len(TOKEN_PREFIX):]
    return rest.split("-", 1)[0] or None
