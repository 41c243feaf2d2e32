"""Periodic background jobs.

``PeriodicTask`` runs a sync or async callable every *interval* seconds on
the running event loop. A failing run is logged and the loop carries on.
Sync callables run in a worker thread so store I/O never blocks the loop.

Created: 2026-03-02
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)


class PeriodicTask:
    def __init__(
        self,
        name: str,
        func: Callable[[], Any],
        interval: float,
        *,
        run_immediately: bool = False,
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.name = name
        self.func = func
        self.interval = interval
        self.run_immediately = run_immediately
        self.runs = 0
        self._task: asyncio.Task | None = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._running = True
        self._task = asyncio.create_task(self._loop(), name=f"periodic:{self.name}")
        logger.debug("Started periodic task %s (every %ss)", self.name, self.interval)

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.debug("Stopped periodic task %s", self.name)

    async def run_once(self) -> Any:
        if inspect.iscoroutinefunction(self.func):
            result = await self.func()
        else:
            result = await asyncio.to_thread(self.func)
        self.runs += 1
        return result

    async def _loop(self) -> None:
        if not self.run_immediately:
            await asyncio.sleep(self.interval)
        while self._running:
            try:
                await self.run_once()
            except Exception:
                logger.exception("Periodic task %s failed", self.name)
            await asyncio.sleep(self.interval)
