"""Per-connection presence quotas."""

from __future__ import annotations

import time
from typing import Any, Callable


def presence_cost(msg_type: str, data: dict[str, Any]) -> float:
    """A roster counts once per player it announces; join/leave count once."""
    if msg_type == "roster":
        players = data.get("players")
        if isinstance(players, list):
            return float(max(1, len(players)))
    return 1.0


class PresenceQuota:
    """Token bucket over presence events, refilled at `rate_per_sec` up to `burst`."""

    def __init__(self, rate_per_sec: float, burst: float, now: Callable[[], float] = time.perf_counter):
        self.rate = float(rate_per_sec)
        self.burst = float(burst)
        self.available = float(burst)
        self._now = now
        self._refilled_at = now()

    def _refill(self) -> None:
        t = self._now()
        if t > self._refilled_at:
            self.available = min(self.burst, self.available + (t - self._refilled_at) * self.rate)
        self._refilled_at = t

    def take(self, events: float = 1.0) -> bool:
        self._refill()
        # Rosters larger than the burst still pass once the bucket is full.
        needed = min(events, self.burst)
        if self.available < needed:
            return False
        self.available -= needed
        return True
