"""Periodic housekeeping for the running pipeline.

Two jobs run on fixed intervals next to the consumer: the block sweep, which
bounds limiter and spam memory, and the trigger refresh, which picks up rule
changes written to the store by another process (the CLI).
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
import logging
from typing import Optional

from core.rate_limiter import RateLimiter
from core.service import ControlService
from core.spam import SpamDetector

LOGGER = logging.getLogger(__name__)


class _PeriodicJob:
    """Run tick() every interval until stop() is called."""

    name = "periodic job"

    def __init__(self, interval: timedelta) -> None:
        self._interval = interval.total_seconds()
        self._stop_event = asyncio.Event()

    def tick(self) -> object:
        raise NotImplementedError

    async def run_forever(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                pass
            if self._stop_event.is_set():
                break
            try:
                self.tick()
            except Exception:
                LOGGER.exception("%s failed", self.name)

    def stop(self) -> None:
        """Signal the loop to stop."""

        self._stop_event.set()


class BlockSweeper(_PeriodicJob):
    """Removes expired blocks, idle activity windows and idle spam history.

    Lazy expiry on lookup keeps decisions correct; this sweep bounds memory
    for senders that are never looked up again.
    """

    name = "Block sweep"

    def __init__(
        self,
        rate_limiter: RateLimiter,
        spam_detector: Optional[SpamDetector] = None,
        interval: timedelta = timedelta(minutes=10),
    ) -> None:
        super().__init__(interval)
        self._limiter = rate_limiter
        self._spam = spam_detector

    def sweep_once(self) -> int:
        removed = self._limiter.sweep_expired_blocks()
        self._limiter.prune_idle_activity()
        if self._spam is not None:
            self._spam.prune()
        return removed

    def tick(self) -> int:
        return self.sweep_once()


class TriggerRefresher(_PeriodicJob):
    """Reloads the trigger engine when the stored rules change."""

    name = "Trigger refresh"

    def __init__(self, service: ControlService, interval: timedelta = timedelta(seconds=5)) -> None:
        super().__init__(interval)
        self._service = service

    def tick(self) -> bool:
        return self._service.refresh_triggers()
