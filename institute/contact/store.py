"""
store.py - Keyed rolling-window counters for the contact pipeline
=================================================================
Holds the only state shared between contact submissions: per-key hit
logs (IP, email, phone, global, strikes) with a rolling window and an
optional block period once a key goes over its limit.

The store is owned by a ContactPipeline instance and injected at
construction, so tests and separate app instances never share counters.
A lost update between two racing requests is tolerated.
"""
from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass, field
from threading import Lock
from typing import Callable, Deque, Dict, Optional, Tuple


@dataclass(frozen=True)
class LimitRule:
    """How many hits a key may take within a rolling window."""
    name: str
    points: int
    window_seconds: float
    block_seconds: float = 0.0


@dataclass
class LimitState:
    allowed: bool
    remaining: int
    retry_after: float = 0.0   # seconds until the key may hit again


@dataclass
class _Entry:
    hits: Deque[float] = field(default_factory=deque)
    blocked_until: float = 0.0


class KeyedWindowStore:
    """Map of (rule, key) -> rolling hit log, with expiry.

    Every ``sweep_every`` consumes, keys idle for longer than the longest
    window plus block period seen so far are evicted, so one-off emails
    and phones do not pile up.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic, sweep_every: int = 256) -> None:
        self._clock = clock
        self._lock = Lock()
        self._entries: Dict[Tuple[str, str], _Entry] = {}
        self._sweep_every = max(1, sweep_every)
        self._since_sweep = 0
        self._horizon = 0.0

    # ------------------------------------------------------------------

    @staticmethod
    def _trim(rule: LimitRule, entry: _Entry, now: float) -> _Entry:
        cutoff = now - rule.window_seconds
        while entry.hits and entry.hits[0] <= cutoff:
            entry.hits.popleft()
        return entry

    def _existing(self, rule: LimitRule, key: str, now: float) -> _Entry:
        entry = self._entries.get((rule.name, key))
        return self._trim(rule, entry, now) if entry is not None else _Entry()

    def _state(self, rule: LimitRule, entry: _Entry, now: float) -> LimitState:
        if entry.blocked_until > now:
            return LimitState(False, 0, entry.blocked_until - now)
        remaining = rule.points - len(entry.hits)
        if remaining <= 0:
            return LimitState(False, 0, entry.hits[0] + rule.window_seconds - now)
        return LimitState(True, remaining)

    def _sweep(self, now: float, max_age: Optional[float]) -> int:
        removed = 0
        for k in list(self._entries):
            entry = self._entries[k]
            stale = not entry.hits or (max_age is not None and entry.hits[-1] <= now - max_age)
            if stale and entry.blocked_until <= now:
                del self._entries[k]
                removed += 1
        return removed

    def consume(self, rule: LimitRule, key: str) -> LimitState:
        """Record one hit for *key*; refuse it when the key is over its limit."""
        now = self._clock()
        with self._lock:
            self._horizon = max(self._horizon, rule.window_seconds + rule.block_seconds)
            self._since_sweep += 1
            if self._since_sweep >= self._sweep_every:
                self._since_sweep = 0
                self._sweep(now, self._horizon)

            entry = self._trim(rule, self._entries.setdefault((rule.name, key), _Entry()), now)
            state = self._state(rule, entry, now)
            if not state.allowed:
                if rule.block_seconds and entry.blocked_until <= now:
                    entry.blocked_until = now + rule.block_seconds
                    state.retry_after = rule.block_seconds
                return state
            entry.hits.append(now)
            return LimitState(True, state.remaining - 1)

    def peek(self, rule: LimitRule, key: str) -> LimitState:
        """Report whether *key* is currently allowed, without recording a hit."""
        now = self._clock()
        with self._lock:
            return self._state(rule, self._existing(rule, key, now), now)

    def count(self, rule: LimitRule, key: str) -> int:
        now = self._clock()
        with self._lock:
            return len(self._existing(rule, key, now).hits)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def purge(self, max_window_seconds: Optional[float] = None) -> int:
        """Drop entries with no recent hits and no active block; returns how many."""
        now = self._clock()
        with self._lock:
            return self._sweep(now, max_window_seconds)

    def reset(self) -> None:
        with self._lock:
            self._entries.clear()
            self._since_sweep = 0
