"""In-memory roster of connected players."""

from __future__ import annotations


class MemoryRoster:
    """Ordered id -> display name map. Iteration order is join order."""

    def __init__(self):
        self._names: dict[str, str] = {}

    def add(self, player_id: str, name: str) -> None:
        # Re-joins move to the back, like a fresh connection would.
        self._names.pop(player_id, None)
        self._names[player_id] = name

    def remove(self, player_id: str) -> bool:
        return self._names.pop(player_id, None) is not None

    def contains(self, player_id: str) -> bool:
        return player_id in self._names

    def list_active(self) -> list[str]:
        return list(self._names)

    def name_of(self, player_id: str) -> str:
        return self._names.get(player_id, "")

    def clear(self) -> None:
        self._names.clear()

    def __len__(self) -> int:
        return len(self._names)
