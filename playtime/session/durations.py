"""Derived time units and composite formatting."""

from __future__ import annotations

from dataclasses import dataclass

DEFAULT_FORMAT = "{days}d {hours}h {minutes}m {seconds}s"


@dataclass(frozen=True)
class Breakdown:
    total_ms: int
    total_seconds: int
    total_minutes: int
    total_hours: int
    days: int
    hours: int  # 0-23
    minutes: int  # 0-59
    seconds: int  # 0-59

    @classmethod
    def of(cls, ms: int) -> "Breakdown":
        ms = max(0, int(ms))
        secs = ms // 1000
        mins = secs // 60
        hrs = mins // 60
        return cls(
            total_ms=ms,
            total_seconds=secs,
            total_minutes=mins,
            total_hours=hrs,
            days=hrs // 24,
            hours=hrs % 24,
            minutes=mins % 60,
            seconds=secs % 60,
        )

    def render(self, fmt: str = DEFAULT_FORMAT) -> str:
        return (
            fmt.replace("{days}", str(self.days))
            .replace("{hours}", str(self.hours))
            .replace("{minutes}", str(self.minutes))
            .replace("{seconds}", str(self.seconds))
        )


def format_threshold(seconds: int) -> str:
    """Short human form used in milestone messages: "1h 30m", "5m 0s", "45s"."""
    seconds = max(0, int(seconds))
    hours = seconds // 3600
    minutes = (seconds % 3600) // 60
    secs = seconds % 60
    if hours > 0:
        return f"{hours}h {minutes}m"
    if minutes > 0:
        return f"{minutes}m {secs}s"
    return f"{secs}s"
