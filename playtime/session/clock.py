"""Millisecond clocks."""

from __future__ import annotations

import time


class MonotonicClock:
    def now(self) -> int:
        return time.monotonic_ns() // 1_000_000


class ManualClock:
    """Clock that only moves when told to. Used by tests and tools."""

    def __init__(self, start_ms: int = 0):
        self._now = int(start_ms)

    def now(self) -> int:
        return self._now

    def advance(self, ms: int) -> int:
        self._now += int(ms)
        return self._now
