"""
Tests for the keyed rolling-window counter store behind the contact
pipeline's rate limits and strike tracking.
"""
from __future__ import annotations

from institute.contact.store import KeyedWindowStore, LimitRule


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_consume_until_limit_then_block():
    clock = FakeClock()
    store = KeyedWindowStore(clock=clock)
    rule = LimitRule("ip", points=3, window_seconds=60, block_seconds=120)

    remaining = [store.consume(rule, "a").remaining for _ in range(3)]
    assert remaining == [2, 1, 0]

    clock.now = 1
    state = store.consume(rule, "a")
    assert not state.allowed
    assert state.retry_after == 120

    # Window has rolled but the block still holds
    clock.now = 70
    state = store.consume(rule, "a")
    assert not state.allowed
    assert state.retry_after == 51

    clock.now = 122
    assert store.consume(rule, "a").allowed


def test_without_block_retry_after_tracks_oldest_hit():
    clock = FakeClock()
    store = KeyedWindowStore(clock=clock)
    rule = LimitRule("global", points=2, window_seconds=10)

    store.consume(rule, "g")
    clock.now = 4
    store.consume(rule, "g")

    clock.now = 5
    state = store.consume(rule, "g")
    assert not state.allowed
    assert state.retry_after == 5

    clock.now = 10
    assert store.consume(rule, "g").allowed


def test_keys_and_rules_are_independent():
    store = KeyedWindowStore(clock=FakeClock())
    ip = LimitRule("ip", points=1, window_seconds=60)
    email = LimitRule("email", points=1, window_seconds=60)

    assert store.consume(ip, "x").allowed
    assert not store.consume(ip, "x").allowed
    assert store.consume(ip, "y").allowed
    assert store.consume(email, "x").allowed


def test_peek_does_not_record_a_hit():
    store = KeyedWindowStore(clock=FakeClock())
    rule = LimitRule("strike", points=2, window_seconds=60)

    assert store.peek(rule, "k").remaining == 2
    assert store.count(rule, "k") == 0
    store.consume(rule, "k")
    assert store.peek(rule, "k").remaining == 1
    assert store.count(rule, "k") == 1


def test_purge_drops_stale_entries():
    clock = FakeClock()
    store = KeyedWindowStore(clock=clock)
    rule = LimitRule("ip", points=5, window_seconds=60)
    store.consume(rule, "old")
    clock.now = 100
    store.consume(rule, "new")

    assert store.purge(max_window_seconds=60) == 1
    assert store.count(rule, "new") == 1


def test_reset_clears_everything():
    store = KeyedWindowStore(clock=FakeClock())
    rule = LimitRule("ip", points=1, window_seconds=60)
    store.consume(rule, "a")
    store.reset()
    assert store.consume(rule, "a").allowed


def test_consume_sweeps_idle_keys():
    clock = FakeClock()
    store = KeyedWindowStore(clock=clock, sweep_every=10)
    rule = LimitRule("email", points=2, window_seconds=60)

    for n in range(100):
        clock.now = n * 61
        store.consume(rule, f"user{n}@example.com")

    assert len(store) <= 10


def test_sweep_keeps_blocked_keys():
    clock = FakeClock()
    store = KeyedWindowStore(clock=clock, sweep_every=1)
    rule = LimitRule("ip", points=1, window_seconds=10, block_seconds=1000)
    store.consume(rule, "a")
    store.consume(rule, "a")

    clock.now = 500
    store.consume(rule, "b")
    assert not store.peek(rule, "a").allowed
    assert len(store) == 2


def test_peek_and_count_do_not_create_keys():
    store = KeyedWindowStore(clock=FakeClock())
    rule = LimitRule("strike", points=2, window_seconds=60)
    store.peek(rule, "ghost")
    store.count(rule, "ghost")
    assert len(store) == 0
