"""Duration-sorted view of active actors with a short-lived cache."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any

from playtime.session.ports import ActiveMembershipSource
from playtime.session.registry import SessionRegistry

logger = logging.getLogger(__name__)

DEFAULT_TTL_MS = 1000


@dataclass(frozen=True)
class Snapshot:
    actor_ids: tuple[str, ...]
    computed_at: int


def validate_ttl(ttl_ms: Any) -> int:
    try:
        ttl = int(ttl_ms)
    except (TypeError, ValueError):
        ttl = 0
    if ttl <= 0:
        logger.warning("Invalid leaderboard cache TTL (%r ms). Using default %sms.", ttl_ms, DEFAULT_TTL_MS)
        return DEFAULT_TTL_MS
    return ttl


class LeaderboardCache:
    def __init__(self, registry: SessionRegistry, members: ActiveMembershipSource, ttl_ms: int = DEFAULT_TTL_MS):
        self.registry = registry
        self.members = members
        self.ttl_ms = validate_ttl(ttl_ms)

        self._snapshot: Snapshot | None = None
        self._generation = 0
        self._swap_lock = threading.Lock()

        registry.add_listener(self)

    def set_ttl(self, ttl_ms: Any) -> None:
        self.ttl_ms = validate_ttl(ttl_ms)
        self.invalidate()

    # Registry listener.

    def session_started(self, actor_id: str) -> None:
        self.invalidate()

    def session_ended(self, actor_id: str) -> None:
        self.invalidate()

    def invalidate(self) -> None:
        with self._swap_lock:
            self._snapshot = None
            self._generation += 1
        logger.debug("leaderboard cache invalidated")

    def get_sorted_active_actors(self, now: int) -> tuple[str, ...]:
        snap = self._snapshot
        if snap is not None and 0 <= now - snap.computed_at < self.ttl_ms:
            return snap.actor_ids

        generation = self._generation
        active = list(self.members.list_active())
        # sorted() is stable; enumeration order breaks ties.
        ordered = tuple(sorted(active, key=lambda a: self.registry.duration(a, now), reverse=True))

        with self._swap_lock:
            # An invalidation during the rebuild means membership moved under us.
            if generation == self._generation:
                self._snapshot = Snapshot(actor_ids=ordered, computed_at=now)
        logger.debug("leaderboard cache rebuilt (%s players)", len(ordered))
        return ordered

    def rank(self, actor_id: str, now: int) -> int:
        if not self.registry.has_active(actor_id):
            return 0
        ordered = self.get_sorted_active_actors(now)
        try:
            return ordered.index(actor_id) + 1
        except ValueError:
            return 0

    def _at(self, position: int, now: int) -> str | None:
        if position < 1:
            return None
        ordered = self.get_sorted_active_actors(now)
        if position > len(ordered):
            return None
        return ordered[position - 1]

    def name_at(self, position: int, now: int) -> str:
        actor_id = self._at(position, now)
        if actor_id is None:
            return ""
        return self.members.name_of(actor_id)

    def duration_at(self, position: int, now: int) -> int:
        actor_id = self._at(position, now)
        if actor_id is None:
            return 0
        return self.registry.duration(actor_id, now)

    def top(self, limit: int, now: int) -> list[dict[str, Any]]:
        out = []
        for i, actor_id in enumerate(self.get_sorted_active_actors(now)[: max(0, int(limit))]):
            out.append(
                {
                    "rank": i + 1,
                    "playerId": actor_id,
                    "name": self.members.name_of(actor_id),
                    "durationMs": self.registry.duration(actor_id, now),
                }
            )
        return out
