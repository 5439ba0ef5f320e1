"""
challenges.py - The five alternative CAPTCHA variants
=====================================================
Each variant generates a challenge (a public payload the client renders
plus a private answer that never leaves the server) and checks a client
response against it.  Variants share no state; which one a form embeds
is a configuration choice.

    math    - solve "a op b"
    slider  - drag a slider to exactly 100, not instantly
    puzzle  - click 9 shuffled pieces in order 1..9
    text    - retype a 6-character code, case-insensitive
    timing  - click once a 5 second countdown reaches zero
"""
from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class Challenge:
    kind: str
    prompt: str
    payload: Dict[str, Any] = field(default_factory=dict)
    answer: Any = None


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


# ---------------------------------------------------------------------------
# Math
# ---------------------------------------------------------------------------

_MATH_LEVELS = {
    # difficulty: (max a, max b, operators)
    "easy": (10, 10, ("+", "-")),
    "medium": (20, 20, ("+", "-", "×")),
    "hard": (50, 12, ("+", "-", "×")),
}


def apply_operator(a: int, op: str, b: int) -> int:
    if op == "+":
        return a + b
    if op == "-":
        return a - b
    if op == "×":
        return a * b
    raise ValueError(f"Unknown operator {op!r}")


class MathChallenge:
    kind = "math"

    def generate(self, rng: random.Random, difficulty: str = "medium") -> Challenge:
        max_a, max_b, ops = _MATH_LEVELS.get(difficulty, _MATH_LEVELS["medium"])
        a = rng.randint(1, max_a)
        b = rng.randint(1, max_b)
        op = rng.choice(ops)
        return Challenge(
            kind=self.kind,
            prompt=f"What is {a} {op} {b}?",
            payload={"a": a, "b": b, "operator": op},
            answer=apply_operator(a, op, b),
        )

    def check(self, challenge: Challenge, response: Any, elapsed: float) -> bool:
        value = _as_int(response)
        return value is not None and value == challenge.answer


# ---------------------------------------------------------------------------
# Slider
# ---------------------------------------------------------------------------

SLIDER_TARGET = 100
SLIDER_MIN_SECONDS = 0.5


class SliderChallenge:
    kind = "slider"

    def generate(self, rng: random.Random, difficulty: str = "medium") -> Challenge:
        return Challenge(
            kind=self.kind,
            prompt="Slide to verify you're human",
            payload={"min": 0, "max": SLIDER_TARGET},
            answer=SLIDER_TARGET,
        )

    def check(self, challenge: Challenge, response: Any, elapsed: float) -> bool:
        return _as_int(response) == SLIDER_TARGET and elapsed > SLIDER_MIN_SECONDS


# ---------------------------------------------------------------------------
# Puzzle
# ---------------------------------------------------------------------------

PUZZLE_PIECES = 9


class PuzzleChallenge:
    kind = "puzzle"

    def generate(self, rng: random.Random, difficulty: str = "medium") -> Challenge:
        pieces = list(range(1, PUZZLE_PIECES + 1))
        rng.shuffle(pieces)
        return Challenge(
            kind=self.kind,
            prompt=f"Click the numbers in order from 1 to {PUZZLE_PIECES}",
            payload={"pieces": pieces},
            answer=list(range(1, PUZZLE_PIECES + 1)),
        )

    def check(self, challenge: Challenge, response: Any, elapsed: float) -> bool:
        if not isinstance(response, list) or len(response) != PUZZLE_PIECES:
            return False
        selected: List[Optional[int]] = [_as_int(v) for v in response]
        return selected == challenge.answer


# ---------------------------------------------------------------------------
# Text
# ---------------------------------------------------------------------------

# Excludes look-alike characters (I, O, 0, 1)
TEXT_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
TEXT_LENGTH = 6


class TextChallenge:
    kind = "text"

    def generate(self, rng: random.Random, difficulty: str = "medium") -> Challenge:
        text = "".join(rng.choice(TEXT_ALPHABET) for _ in range(TEXT_LENGTH))
        return Challenge(
            kind=self.kind,
            prompt="Enter the characters shown",
            payload={"text": text, "length": TEXT_LENGTH},
            answer=text,
        )

    def check(self, challenge: Challenge, response: Any, elapsed: float) -> bool:
        return isinstance(response, str) and response.strip().upper() == challenge.answer


# ---------------------------------------------------------------------------
# Timing
# ---------------------------------------------------------------------------

TIMING_COUNTDOWN_SECONDS = 5
TIMING_GRACE_SECONDS = 3


class TimingChallenge:
    kind = "timing"

    def generate(self, rng: random.Random, difficulty: str = "medium") -> Challenge:
        return Challenge(
            kind=self.kind,
            prompt="Click the button when the countdown reaches 0",
            payload={"countdown": TIMING_COUNTDOWN_SECONDS, "window": TIMING_GRACE_SECONDS},
            answer=TIMING_COUNTDOWN_SECONDS,
        )

    def check(self, challenge: Challenge, response: Any, elapsed: float) -> bool:
        return TIMING_COUNTDOWN_SECONDS <= elapsed <= TIMING_COUNTDOWN_SECONDS + TIMING_GRACE_SECONDS


VARIANTS = {
    v.kind: v
    for v in (MathChallenge(), SliderChallenge(), PuzzleChallenge(), TextChallenge(), TimingChallenge())
}
