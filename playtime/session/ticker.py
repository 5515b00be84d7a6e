"""Cancellable fixed-interval task."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

logger = logging.getLogger(__name__)


class Ticker:
    def __init__(self, interval_sec: float, fn: Callable[[], object], name: str = "ticker"):
        if interval_sec <= 0:
            raise ValueError("interval must be positive")
        self.interval_sec = float(interval_sec)
        self.fn = fn
        self.name = name
        self.ticks = 0

        self._running = False
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        if self._task is not None:
            return
        self._running = True
        self._task = asyncio.get_running_loop().create_task(self._loop(), name=self.name)
        logger.debug("%s started (interval: %ss)", self.name, self.interval_sec)

    def cancel(self) -> None:
        """Stop scheduling further runs. A run already in progress finishes."""
        self._running = False
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def stop(self) -> None:
        task = self._task
        self.cancel()
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _loop(self) -> None:
        # First run after one full interval, like a timer with equal delay and period.
        while self._running:
            await asyncio.sleep(self.interval_sec)
            if not self._running:
                break
            self.ticks += 1
            try:
                self.fn()
            except Exception:
                logger.exception("%s run failed", self.name)
