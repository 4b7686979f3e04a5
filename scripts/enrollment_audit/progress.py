"""Periodic progress messages for long-running operations."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Optional

logger = logging.getLogger("enrollment_audit.progress")


class ProgressReporter:
    """Log render(elapsed_seconds) every interval while the context is open.

    Usage:
        async with ProgressReporter(lambda s: f"{acc.count('ok')} done", 5.0):
            await long_operation()

    The background task is cancelled when the block exits. Rendering reads
    shared counters without locking, so a message may be slightly stale.
    """

    def __init__(
        self,
        render: Callable[[float], str],
        interval: float = 5.0,
        log: Optional[logging.Logger] = None,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._render = render
        self._interval = interval
        self._log = log or logger
        self._task: Optional[asyncio.Task] = None
        self._started = 0.0
        self.ticks = 0

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self._started

    async def __aenter__(self) -> "ProgressReporter":
        self._started = time.monotonic()
        self._task = asyncio.create_task(self._run())
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            self.ticks += 1
            try:
                self._log.info(self._render(self.elapsed))
            except Exception as exc:
                self._log.debug("Progress render failed: %s", exc)
