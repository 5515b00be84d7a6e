"""Collaborator interfaces consumed by the session core."""

from __future__ import annotations

from typing import Protocol, Sequence


class Clock(Protocol):
    def now(self) -> int: ...


class ActiveMembershipSource(Protocol):
    def list_active(self) -> Sequence[str]: ...

    def name_of(self, actor_id: str) -> str: ...


class Notifier(Protocol):
    def send(self, actor_id: str, text: str) -> None: ...


class CommandRunner(Protocol):
    def run(self, command: str) -> None: ...


class SessionListener(Protocol):
    def session_started(self, actor_id: str) -> None: ...

    def session_ended(self, actor_id: str) -> None: ...
