"""Category-agnostic spam escalation (core domain)."""

from __future__ import annotations

from collections import deque
from datetime import datetime
import logging
import threading
from typing import Deque, Optional

from core.config import SpamConfig
from core.models import SpamVerdict
from core.rate_limiter import Clock, utc_now

LOGGER = logging.getLogger(__name__)


class SpamDetector:
    """Flag senders whose message count in a trailing window exceeds a threshold.

    Every admitted message counts, whatever its category. The current message
    is part of the count, so with the default threshold of 5 the sixth message
    inside five minutes is the first one flagged.
    """

    def __init__(self, config: Optional[SpamConfig] = None, clock: Clock = utc_now) -> None:
        self._config = config or SpamConfig()
        self._clock = clock
        self._lock = threading.Lock()
        self._history: dict[str, Deque[datetime]] = {}

    @property
    def threshold(self) -> int:
        return self._config.threshold

    def observe(self, sender_id: str) -> SpamVerdict:
        """Count one message for the sender and return the burst verdict."""

        with self._lock:
            now = self._clock()
            history = self._history.setdefault(sender_id, deque())
            history.append(now)
            self._purge(history, now)
            count = len(history)
        flagged = count > self._config.threshold
        if flagged:
            LOGGER.info("Spam detected from %s: %s messages in %s", sender_id, count, self._config.window)
        return SpamVerdict(flagged=flagged, count=count, threshold=self._config.threshold)

    def recent_count(self, sender_id: str) -> int:
        with self._lock:
            history = self._history.get(sender_id)
            if not history:
                return 0
            self._purge(history, self._clock())
            return len(history)

    def _purge(self, history: Deque[datetime], now: datetime) -> None:
        cutoff = now - self._config.window
        while history and history[0] <= cutoff:
            history.popleft()

    def prune(self) -> int:
        """Drop senders with no messages left in the window."""

        with self._lock:
            now = self._clock()
            idle = []
            for sender, history in self._history.items():
                self._purge(history, now)
                if not history:
                    idle.append(sender)
            for sender in idle:
                del self._history[sender]
        return len(idle)

    def clear_sender(self, sender_id: str) -> None:
        with self._lock:
            self._history.pop(sender_id, None)
