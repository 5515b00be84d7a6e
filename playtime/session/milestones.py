"""Session milestones: one-time rewards for staying online long enough."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable

from playtime.session.durations import format_threshold
from playtime.session.ports import ActiveMembershipSource, CommandRunner, Notifier
from playtime.session.registry import SessionRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Milestone:
    milestoneId: str
    thresholdSec: int
    message: str = ""
    commands: tuple[str, ...] = ()

    def render_message(self, player_name: str) -> str:
        return self.message.replace("{player}", player_name).replace("{time}", format_threshold(self.thresholdSec))

    def render_commands(self, player_name: str, player_id: str) -> list[str]:
        return [c.replace("{player}", player_name).replace("{uuid}", player_id) for c in self.commands]

    def public_info(self) -> dict[str, Any]:
        return {
            "milestoneId": self.milestoneId,
            "thresholdSec": self.thresholdSec,
            "time": format_threshold(self.thresholdSec),
            "message": self.message,
            "commands": list(self.commands),
        }


def parse_milestones(raw: Any) -> list[Milestone]:
    """Build a sorted milestone list from config data.

    Accepts either a mapping of id -> entry or a list of entries carrying an
    "id". Invalid entries are dropped with a warning.
    """
    if raw is None:
        return []
    if isinstance(raw, dict):
        items = [(str(k), v) for k, v in raw.items()]
    elif isinstance(raw, list):
        items = [(str(e.get("id", "")) if isinstance(e, dict) else "", e) for e in raw]
    else:
        logger.warning("Milestone list must be a mapping or a list, got %s. Ignoring.", type(raw).__name__)
        return []

    out: dict[str, Milestone] = {}
    for key, entry in items:
        if not key:
            logger.warning("Milestone entry without id. Skipping.")
            continue
        if not isinstance(entry, dict):
            logger.warning("Milestone '%s' is not an object. Skipping.", key)
            continue
        if key in out:
            logger.warning("Duplicate milestone '%s'. Skipping.", key)
            continue
        try:
            time_sec = int(entry.get("time", 0))
        except (TypeError, ValueError):
            logger.warning("Failed to load milestone '%s': time is not a number", key)
            continue
        if time_sec <= 0:
            logger.warning("Milestone '%s' has invalid time (%ss). Skipping.", key, time_sec)
            continue
        message = entry.get("message") or ""
        if not isinstance(message, str):
            message = str(message)
        commands = entry.get("commands") or []
        if not isinstance(commands, list):
            logger.warning("Milestone '%s' commands must be a list. Ignoring commands.", key)
            commands = []
        out[key] = Milestone(
            milestoneId=key,
            thresholdSec=time_sec,
            message=message,
            commands=tuple(str(c) for c in commands if isinstance(c, str) and c.strip()),
        )
        logger.debug("Loaded milestone: %s at %ss", key, time_sec)

    return sorted(out.values(), key=lambda m: m.thresholdSec)


@dataclass(frozen=True)
class Grant:
    playerId: str
    milestone: Milestone
    elapsedSec: int


RewardCallback = Callable[[str, Milestone], None]


class MilestoneTracker:
    def __init__(
        self,
        registry: SessionRegistry,
        members: ActiveMembershipSource,
        reward: RewardCallback | None = None,
        milestones: Iterable[Milestone] = (),
    ):
        self.registry = registry
        self.members = members
        self.reward = reward
        self._milestones: tuple[Milestone, ...] = ()
        self._achieved: dict[str, set[str]] = {}
        self.load(milestones)

        registry.add_listener(self)

    @property
    def milestones(self) -> tuple[Milestone, ...]:
        return self._milestones

    def load(self, milestones: Iterable[Milestone]) -> None:
        self._milestones = tuple(sorted(milestones, key=lambda m: m.thresholdSec))
        ids = {m.milestoneId for m in self._milestones}
        # Achieved sets only ever name milestones that are currently defined.
        for achieved in list(self._achieved.values()):
            achieved &= ids

    # Registry listener.

    def session_started(self, actor_id: str) -> None:
        self.on_join(actor_id)

    def session_ended(self, actor_id: str) -> None:
        self.on_leave(actor_id)

    def on_join(self, actor_id: str) -> None:
        self._achieved[actor_id] = set()

    def on_leave(self, actor_id: str) -> None:
        self._achieved.pop(actor_id, None)

    def achieved(self, actor_id: str) -> frozenset[str]:
        return frozenset(self._achieved.get(actor_id, ()))

    def clear(self) -> None:
        self._achieved.clear()

    def scan(self, now: int) -> list[Grant]:
        milestones = self._milestones
        if not milestones:
            return []
        grants: list[Grant] = []
        for actor_id in list(self.members.list_active()):
            if not self.registry.has_active(actor_id):
                continue
            grants.extend(self._scan_actor(actor_id, now, milestones))
        return grants

    def _scan_actor(self, actor_id: str, now: int, milestones: tuple[Milestone, ...]) -> list[Grant]:
        elapsed = self.registry.seconds(actor_id, now)
        # Actors seeded at startup never saw a join.
        achieved = self._achieved.setdefault(actor_id, set())
        out = []
        for m in milestones:
            if m.thresholdSec > elapsed:
                break
            if m.milestoneId in achieved:
                continue
            achieved.add(m.milestoneId)
            out.append(Grant(playerId=actor_id, milestone=m, elapsedSec=elapsed))
            logger.debug("Player %s achieved milestone: %s", actor_id, m.milestoneId)
            if self.reward is not None:
                try:
                    self.reward(actor_id, m)
                except Exception:
                    logger.exception("reward for milestone %s failed for %s", m.milestoneId, actor_id)
        return out


class Rewarder:
    """Formats a granted milestone and hands its effects to the host."""

    def __init__(
        self,
        members: ActiveMembershipSource,
        notifier: Notifier,
        runner: CommandRunner,
        dispatch: Callable[[Callable[[], None]], Any] | None = None,
    ):
        self.members = members
        self.notifier = notifier
        self.runner = runner
        self.dispatch = dispatch

    def __call__(self, actor_id: str, milestone: Milestone) -> None:
        name = self.members.name_of(actor_id) or actor_id
        if milestone.message:
            self._hand_off(lambda: self.notifier.send(actor_id, milestone.render_message(name)))
        for command in milestone.render_commands(name, actor_id):
            self._hand_off(lambda c=command: self.runner.run(c))

    def _hand_off(self, fn: Callable[[], None]) -> None:
        if self.dispatch is None:
            fn()
        else:
            self.dispatch(fn)
