"""Active session start times, keyed by actor id."""

from __future__ import annotations

import logging

from playtime.session.durations import DEFAULT_FORMAT, Breakdown
from playtime.session.ports import SessionListener

logger = logging.getLogger(__name__)


class SessionRegistry:
    def __init__(self):
        self._starts: dict[str, int] = {}
        self._listeners: list[SessionListener] = []

    def add_listener(self, listener: SessionListener) -> None:
        self._listeners.append(listener)

    def start(self, actor_id: str, now: int) -> None:
        self._starts[actor_id] = int(now)
        logger.debug("session started for %s", actor_id)
        for listener in list(self._listeners):
            listener.session_started(actor_id)

    def discover(self, actor_id: str, now: int) -> bool:
        """Seed a session for an actor seen already present. Never overwrites."""
        if actor_id in self._starts:
            return False
        self._starts.setdefault(actor_id, int(now))
        logger.debug("session discovered for %s", actor_id)
        for listener in list(self._listeners):
            listener.session_started(actor_id)
        return True

    def end(self, actor_id: str, now: int) -> int:
        started = self._starts.pop(actor_id, None)
        elapsed = 0 if started is None else max(0, int(now) - started)
        logger.debug("session ended for %s | duration: %ss", actor_id, elapsed // 1000)
        for listener in list(self._listeners):
            listener.session_ended(actor_id)
        return elapsed

    def duration(self, actor_id: str, now: int) -> int:
        started = self._starts.get(actor_id)
        if started is None:
            return 0
        return max(0, int(now) - started)

    def has_active(self, actor_id: str) -> bool:
        return actor_id in self._starts

    def active_ids(self) -> list[str]:
        return list(self._starts)

    def clear(self) -> None:
        self._starts.clear()

    def __len__(self) -> int:
        return len(self._starts)

    # Derived units.

    def breakdown(self, actor_id: str, now: int) -> Breakdown:
        return Breakdown.of(self.duration(actor_id, now))

    def seconds(self, actor_id: str, now: int) -> int:
        return self.duration(actor_id, now) // 1000

    def minutes(self, actor_id: str, now: int) -> int:
        return self.seconds(actor_id, now) // 60

    def hours(self, actor_id: str, now: int) -> int:
        return self.minutes(actor_id, now) // 60

    def days(self, actor_id: str, now: int) -> int:
        return self.hours(actor_id, now) // 24

    def remaining_seconds(self, actor_id: str, now: int) -> int:
        return self.seconds(actor_id, now) % 60

    def remaining_minutes(self, actor_id: str, now: int) -> int:
        return self.minutes(actor_id, now) % 60

    def remaining_hours(self, actor_id: str, now: int) -> int:
        return self.hours(actor_id, now) % 24

    def formatted(self, actor_id: str, now: int, fmt: str = DEFAULT_FORMAT) -> str:
        return self.breakdown(actor_id, now).render(fmt)
