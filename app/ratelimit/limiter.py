"""In-memory fixed-window rate limiter keyed by client identity.

State lives in this process only: counters are lost on restart and are not
shared between workers.
"""
from __future__ import annotations

import asyncio
import logging
import math
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass

logger = logging.getLogger(__name__)

UNKNOWN_IDENTITY = "unknown"


@dataclass
class RateLimitEntry:
    count: int
    reset_time: float   # epoch seconds


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    reset_time: float
    limit: int

    def retry_after(self, now: float | None = None) -> int:
        now = time.time() if now is None else now
        return max(0, math.ceil(self.reset_time - now))


class RateLimiter:
    def __init__(
        self,
        max_requests: int = 10,
        window_seconds: float = 60.0,
        *,
        sweep_interval_seconds: float = 300.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._sweep_interval = sweep_interval_seconds
        self._clock = clock
        self._entries: dict[str, RateLimitEntry] = {}
        self._lock = asyncio.Lock()
        self._sweeper: asyncio.Task[None] | None = None

    def __len__(self) -> int:
        return len(self._entries)

    async def check(self, identity: str) -> RateLimitDecision:
        """Admit or reject one request from *identity*, recording the admission."""
        async with self._lock:
            now = self._clock()
            entry = self._entries.get(identity)

            if entry is None or entry.reset_time <= now:
                entry = RateLimitEntry(count=1, reset_time=now + self.window_seconds)
                self._entries[identity] = entry
                return RateLimitDecision(True, self.max_requests - 1, entry.reset_time, self.max_requests)

            if entry.count >= self.max_requests:
                return RateLimitDecision(False, 0, entry.reset_time, self.max_requests)

            entry.count += 1
            return RateLimitDecision(
                True, self.max_requests - entry.count, entry.reset_time, self.max_requests
            )

    async def sweep(self) -> int:
        """Drop entries whose window has expired; returns how many were removed."""
        async with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if entry.reset_time <= now]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug("rate_limit_sweep", extra={"removed": len(expired), "active": len(self._entries)})
        return len(expired)

    # ------------------------------------------------------------------ #
    #  Background housekeeping                                            #
    # ------------------------------------------------------------------ #

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            await self.sweep()

    def start_sweeper(self) -> None:
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_forever())

    async def stop_sweeper(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None


def client_identity(headers: Mapping[str, str]) -> str:
    """Client IP from proxy headers; ``"unknown"`` when none is present."""
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return UNKNOWN_IDENTITY
