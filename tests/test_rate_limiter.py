"""Fixed-window rate limiter tests with a controllable clock."""
from __future__ import annotations

import asyncio

import pytest

from app.ratelimit.limiter import RateLimitDecision, RateLimiter, client_identity


class FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def limiter(clock) -> RateLimiter:
    return RateLimiter(max_requests=10, window_seconds=60.0, clock=clock)


# ---------------------------------------------------------------------------
# check
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_admits_up_to_limit_then_rejects(limiter, clock) -> None:
    decisions = [await limiter.check("10.0.0.1") for _ in range(10)]

    assert all(d.allowed for d in decisions)
    assert [d.remaining for d in decisions] == list(range(9, -1, -1))
    assert {d.reset_time for d in decisions} == {clock.now + 60.0}

    rejected = await limiter.check("10.0.0.1")
    assert rejected == RateLimitDecision(allowed=False, remaining=0, reset_time=clock.now + 60.0, limit=10)


@pytest.mark.asyncio
async def test_rejections_do_not_extend_the_window(limiter, clock) -> None:
    for _ in range(10):
        await limiter.check("a")
    clock.advance(30)
    first = await limiter.check("a")
    clock.advance(20)
    second = await limiter.check("a")

    assert not first.allowed and not second.allowed
    assert first.reset_time == second.reset_time == 1_060.0


@pytest.mark.asyncio
async def test_new_window_after_reset_time(limiter, clock) -> None:
    for _ in range(11):
        await limiter.check("a")

    clock.advance(60)   # reset_time <= now counts as expired
    decision = await limiter.check("a")

    assert decision.allowed is True
    assert decision.remaining == 9
    assert decision.reset_time == clock.now + 60.0


@pytest.mark.asyncio
async def test_identities_are_counted_separately(limiter) -> None:
    for _ in range(10):
        await limiter.check("a")

    assert (await limiter.check("a")).allowed is False
    assert (await limiter.check("b")).allowed is True
    assert len(limiter) == 2


@pytest.mark.asyncio
async def test_concurrent_checks_never_exceed_limit(limiter) -> None:
    decisions = await asyncio.gather(*(limiter.check("burst") for _ in range(25)))
    assert sum(d.allowed for d in decisions) == 10


def test_retry_after_rounds_up_and_never_negative() -> None:
    decision = RateLimitDecision(allowed=False, remaining=0, reset_time=100.0, limit=10)
    assert decision.retry_after(now=58.2) == 42
    assert decision.retry_after(now=100.0) == 0
    assert decision.retry_after(now=150.0) == 0


# ---------------------------------------------------------------------------
# sweep
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_sweep_removes_only_expired_entries(limiter, clock) -> None:
    await limiter.check("old")
    clock.advance(45)
    await limiter.check("fresh")
    clock.advance(15)

    removed = await limiter.sweep()

    assert removed == 1
    assert len(limiter) == 1
    assert (await limiter.check("fresh")).remaining == 8


@pytest.mark.asyncio
async def test_sweep_with_nothing_expired(limiter) -> None:
    await limiter.check("a")
    assert await limiter.sweep() == 0
    assert len(limiter) == 1


@pytest.mark.asyncio
async def test_background_sweeper_runs_and_stops(clock) -> None:
    limiter = RateLimiter(window_seconds=1.0, sweep_interval_seconds=0.01, clock=clock)
    await limiter.check("a")
    clock.advance(5)

    limiter.start_sweeper()
    for _ in range(50):
        if len(limiter) == 0:
            break
        await asyncio.sleep(0.01)
    await limiter.stop_sweeper()

    assert len(limiter) == 0
    assert limiter._sweeper is None


@pytest.mark.asyncio
async def test_stop_sweeper_without_start_is_noop(limiter) -> None:
    await limiter.stop_sweeper()


# ---------------------------------------------------------------------------
# client_identity
# ---------------------------------------------------------------------------

def test_identity_prefers_first_forwarded_for_entry() -> None:
    headers = {"x-forwarded-for": "203.0.113.7, 10.0.0.2", "x-real-ip": "10.0.0.9"}
    assert client_identity(headers) == "203.0.113.7"


def test_identity_falls_back_to_real_ip() -> None:
    assert client_identity({"x-real-ip": " 198.51.100.4 "}) == "198.51.100.4"


def test_identity_unknown_without_headers() -> None:
    assert client_identity({}) == "unknown"
    assert client_identity({"x-forwarded-for": " , "}) == "unknown"
