"""Periodic asyncio task with cooperative shutdown, shared by the workers."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class PeriodicTask:
    def __init__(
        self,
        name: str,
        interval_seconds: float,
        cycle: Callable[[], Awaitable[object]],
    ):
        self.name = name
        self.interval = interval_seconds
        self.cycle = cycle
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._loop(), name=self.name)
        logger.info("%s started (interval=%ss)", self.name, self.interval)

    async def stop(self) -> None:
        if self._stop_event:
            self._stop_event.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info("%s stopped", self.name)

    async def _loop(self) -> None:
        """Run a cycle, then sleep until the interval passes or stop is signalled."""
        assert self._stop_event is not None
        while not self._stop_event.is_set():
            try:
                await self.cycle()
            except Exception:
                logger.exception("Unhandled error in %s cycle", self.name)
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
                break
            except asyncio.TimeoutError:
                pass  # next cycle
