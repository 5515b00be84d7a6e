"""Host link message schemas + validation.

Wire format:
  {"type": "join", "data": {"playerId": "...", "name": "..."}}
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any


class ProtocolError(Exception):
    pass


def dumps(msg_type: str, data: dict[str, Any]) -> str:
    return json.dumps({"type": msg_type, "data": data}, separators=(",", ":"))


def loads(text: str) -> tuple[str, dict[str, Any]]:
    try:
        obj = json.loads(text)
    except ValueError as e:
        raise ProtocolError(f"invalid json: {e}")

    if not isinstance(obj, dict):
        raise ProtocolError("message must be object")
    t = obj.get("type")
    if not isinstance(t, str):
        raise ProtocolError("missing type")
    data = obj.get("data")
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ProtocolError("data must be object")
    return t, data


def _num(v: Any, *, default: float = 0.0) -> float:
    try:
        return float(v)
    except (TypeError, ValueError):
        return default


def _player_id(data: dict[str, Any], where: str) -> str:
    pid = data.get("playerId")
    if not isinstance(pid, str) or not pid.strip():
        raise ProtocolError(f"{where}.playerId required")
    return pid.strip()[:64]


def _name(data: dict[str, Any], fallback: str) -> str:
    name = data.get("name")
    if not isinstance(name, str) or not name.strip():
        return fallback
    return name.strip()[:32]


@dataclass
class Hello:
    hostVersion: str

    @classmethod
    def parse(cls, data: dict[str, Any]) -> "Hello":
        v = data.get("hostVersion")
        if not isinstance(v, str) or not v:
            raise ProtocolError("hello.hostVersion required")
        return cls(hostVersion=v)


@dataclass
class Join:
    playerId: str
    name: str

    @classmethod
    def parse(cls, data: dict[str, Any]) -> "Join":
        pid = _player_id(data, "join")
        return cls(playerId=pid, name=_name(data, pid))


@dataclass
class Leave:
    playerId: str

    @classmethod
    def parse(cls, data: dict[str, Any]) -> "Leave":
        return cls(playerId=_player_id(data, "leave"))


@dataclass
class Roster:
    players: list[Join]

    @classmethod
    def parse(cls, data: dict[str, Any]) -> "Roster":
        raw = data.get("players")
        if not isinstance(raw, list):
            raise ProtocolError("roster.players must be a list")
        players = []
        for entry in raw:
            if isinstance(entry, dict):
                players.append(Join.parse(entry))
        return cls(players=players)


@dataclass
class Ping:
    t: float

    @classmethod
    def parse(cls, data: dict[str, Any]) -> "Ping":
        return cls(t=_num(data.get("t"), default=0.0))


VALID_C2S = {"hello", "join", "leave", "roster", "ping"}
PRESENCE = {"join", "leave", "roster"}
