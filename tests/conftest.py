from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Callable

import pytest

from playtime.session.clock import ManualClock
from playtime.session.leaderboard import LeaderboardCache
from playtime.session.registry import SessionRegistry
from playtime.storage.memory import MemoryRoster


@pytest.fixture()
def clock() -> ManualClock:
    return ManualClock(start_ms=1_000_000)


@pytest.fixture()
def roster() -> MemoryRoster:
    return MemoryRoster()


@pytest.fixture()
def registry() -> SessionRegistry:
    return SessionRegistry()


@pytest.fixture()
def cache(registry: SessionRegistry, roster: MemoryRoster) -> LeaderboardCache:
    return LeaderboardCache(registry, roster, ttl_ms=1000)


@pytest.fixture()
def write_config(tmp_path: Path) -> Callable[[Any], Path]:
    """Write a config file into tmp_path and return its path."""

    def _write(data: Any) -> Path:
        path = tmp_path / "playtime.json"
        if isinstance(data, str):
            path.write_text(data, encoding="utf-8")
        else:
            path.write_text(json.dumps(data), encoding="utf-8")
        return path

    return _write


def milestone_config(enabled: bool = True, interval: int = 3600, **entries: int) -> dict[str, Any]:
    return {
        "milestones": {
            "enabled": enabled,
            "checkInterval": interval,
            "list": {
                mid: {"time": secs, "message": "{player} reached {time}", "commands": ["reward {player} {uuid}"]}
                for mid, secs in entries.items()
            },
        }
    }
