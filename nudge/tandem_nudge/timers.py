"""Periodic asyncio tasks driving the pipeline."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class PeriodicTask:
    """Awaits *callback* every *interval* seconds until stopped.

    A failing tick is logged and the loop carries on with the next one.
    """

    def __init__(
        self,
        name: str,
        interval: float,
        callback: Callable[[], Awaitable[object]],
    ) -> None:
        self.name = name
        self.interval = interval
        self._callback = callback
        self._task: asyncio.Task[None] | None = None
        self._running = False
        self.ticks = 0

    @property
    def is_running(self) -> bool:
        return self._running

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.interval)
            except asyncio.CancelledError:
                break
            try:
                await self._callback()
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("Periodic task '%s' failed", self.name)
            self.ticks += 1

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.debug("Periodic task '%s' started (every %.1fs)", self.name, self.interval)

    async def stop(self) -> None:
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.debug("Periodic task '%s' stopped", self.name)
