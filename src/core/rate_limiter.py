"""Per-sender rate limiting and block escalation (core domain).

Each sender has one activity log per category (message, media, command).
Admission counts the entries that fall inside the trailing minute, hour and
day; any window at or over its limit becomes a violation, and the most severe
violation decides how long the sender is blocked. Blocks expire lazily on
lookup and via a periodic sweep that uses the same expiry predicate.

State is memory-only and resets on restart.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
import math
import threading
from typing import Callable, Deque, Iterable, Optional

from core.config import CATEGORIES, RETENTION, SEVERITIES, WINDOW_SPANS, WINDOWS, RateLimitConfig, WindowLimits
from core.models import BlockedSender, BlockRecord, Decision, SenderStats, Violation

LOGGER = logging.getLogger(__name__)

Clock = Callable[[], datetime]

# Longer windows win severity ties.
_WINDOW_RANK = {window: rank for rank, window in enumerate(WINDOWS)}
_SEVERITY_RANK = {severity: rank for rank, severity in enumerate(SEVERITIES)}

_CATEGORY_NOUNS = {"message": "messages", "media": "media messages", "command": "commands"}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def severity_for(violation: Violation) -> str:
    """Map a violation to a severity by its count/limit ratio."""

    ratio = violation.ratio
    if ratio >= 2.0:
        return "severe"
    if ratio >= 1.5:
        return "hard"
    if ratio >= 1.0:
        return "soft"
    return "warning"


def pick_violation(violations: Iterable[Violation]) -> Violation:
    """Return the violation that determines the outcome.

    Highest severity wins; ties prefer the longer window (day > hour > minute).
    """

    return max(
        violations,
        key=lambda v: (_SEVERITY_RANK[severity_for(v)], _WINDOW_RANK[v.window]),
    )


@dataclass
class ActivityWindow:
    """Timestamps of one sender's actions in one category, oldest first."""

    timestamps: Deque[datetime] = field(default_factory=deque)
    last_warning: Optional[datetime] = None
    warning_count: int = 0

    def purge(self, now: datetime) -> None:
        cutoff = now - RETENTION
        while self.timestamps and self.timestamps[0] < cutoff:
            self.timestamps.popleft()

    def count_since(self, since: datetime) -> int:
        # Timestamps are appended in order, so scan from the newest end.
        count = 0
        for stamp in reversed(self.timestamps):
            if stamp <= since:
                break
            count += 1
        return count


@dataclass
class RateLimitState:
    """All mutable per-sender state owned by the rate limiter."""

    activity: dict[tuple[str, str], ActivityWindow] = field(default_factory=dict)
    blocks: dict[str, BlockRecord] = field(default_factory=dict)


class RateLimiter:
    """Admission control with sliding windows and severity-based blocks.

    A single lock guards every read-modify-write so two in-flight messages
    from the same sender never both pass a check only one should pass.
    """

    def __init__(
        self,
        config: Optional[RateLimitConfig] = None,
        state: Optional[RateLimitState] = None,
        clock: Clock = utc_now,
    ) -> None:
        self._config = config or RateLimitConfig()
        self._limits = dict(self._config.limits)
        self._state = state or RateLimitState()
        self._clock = clock
        self._lock = threading.RLock()

    @property
    def state(self) -> RateLimitState:
        return self._state

    def limits_for(self, category: str) -> WindowLimits:
        _check_category(category)
        return self._limits[category]

    def can_proceed(self, sender_id: str, category: str) -> Decision:
        """Evaluate admission for one attempt without recording it."""

        _check_category(category)
        with self._lock:
            return self._evaluate(sender_id, category, self._clock())

    def record(self, sender_id: str, category: str) -> None:
        """Record that an admitted action happened now."""

        _check_category(category)
        with self._lock:
            now = self._clock()
            window = self._window(sender_id, category)
            window.purge(now)
            window.timestamps.append(now)

    def admit(self, sender_id: str, category: str) -> Decision:
        """Check and, when allowed, record the attempt in one atomic step."""

        _check_category(category)
        with self._lock:
            now = self._clock()
            decision = self._evaluate(sender_id, category, now)
            if decision.allowed:
                self._window(sender_id, category).timestamps.append(now)
            return decision

    def _window(self, sender_id: str, category: str) -> ActivityWindow:
        key = (sender_id, category)
        window = self._state.activity.get(key)
        if window is None:
            window = ActivityWindow()
            self._state.activity[key] = window
        return window

    def _active_block(self, sender_id: str, now: datetime) -> Optional[BlockRecord]:
        record = self._state.blocks.get(sender_id)
        if record is None:
            return None
        if not record.is_active(now):
            del self._state.blocks[sender_id]
            return None
        return record

    def _evaluate(self, sender_id: str, category: str, now: datetime) -> Decision:
        record = self._active_block(sender_id, now)
        if record is not None:
            return Decision.blocked(record, now)

        window = self._window(sender_id, category)
        window.purge(now)
        limits = self._limits[category]

        counts = {name: window.count_since(now - WINDOW_SPANS[name]) for name in WINDOWS}
        violations = tuple(
            Violation(window=name, count=counts[name], limit=limits.for_window(name))
            for name in WINDOWS
            if counts[name] >= limits.for_window(name)
        )
        if violations:
            return self._block(sender_id, category, violations, now)

        warning = self._maybe_warn(window, category, counts["minute"] + 1, limits.per_minute, now)
        return Decision.allow(warning)

    def _block(
        self,
        sender_id: str,
        category: str,
        violations: tuple[Violation, ...],
        now: datetime,
    ) -> Decision:
        worst = pick_violation(violations)
        severity = severity_for(worst)
        record = BlockRecord(
            blocked_at=now,
            duration=self._config.block_durations[severity],
            reason=f"Rate limit exceeded: {worst.count}/{worst.limit} per {worst.window}",
            violations=violations,
            category=category,
            severity=severity,
        )
        self._state.blocks[sender_id] = record
        LOGGER.warning(
            "Blocked %s for %s (%s, %s)",
            sender_id,
            record.duration,
            severity,
            record.reason,
        )
        return Decision.blocked(record, now)

    def _maybe_warn(
        self,
        window: ActivityWindow,
        category: str,
        pending_count: int,
        per_minute: int,
        now: datetime,
    ) -> Optional[str]:
        threshold = max(1, math.floor(per_minute * self._config.warning_thresholds[category]))
        if pending_count < threshold:
            return None
        if window.last_warning is not None and now - window.last_warning < self._config.warning_cooldown:
            return None
        window.last_warning = now
        window.warning_count += 1
        noun = _CATEGORY_NOUNS[category]
        return (
            f"⚠️ Warning: You're sending {noun} quickly ({pending_count}/{per_minute} per minute). "
            "Please slow down to avoid being temporarily blocked."
        )

    def is_blocked(self, sender_id: str) -> bool:
        with self._lock:
            return self._active_block(sender_id, self._clock()) is not None

    def get_block(self, sender_id: str) -> Optional[BlockRecord]:
        with self._lock:
            return self._active_block(sender_id, self._clock())

    def sweep_expired_blocks(self) -> int:
        """Delete every expired block record and return how many were removed."""

        with self._lock:
            now = self._clock()
            expired = [sender for sender, record in self._state.blocks.items() if not record.is_active(now)]
            for sender in expired:
                del self._state.blocks[sender]
        if expired:
            LOGGER.info("Block sweep removed %s expired records", len(expired))
        return len(expired)

    def prune_idle_activity(self) -> int:
        """Drop activity windows with nothing left to count.

        A window is idle once every timestamp is past retention and its last
        warning is outside the cooldown. Returns how many windows were removed.
        """

        with self._lock:
            now = self._clock()
            idle = []
            for key, window in self._state.activity.items():
                window.purge(now)
                if window.timestamps:
                    continue
                if window.last_warning is not None and now - window.last_warning < self._config.warning_cooldown:
                    continue
                idle.append(key)
            for key in idle:
                del self._state.activity[key]
        if idle:
            LOGGER.info("Pruned %s idle activity windows", len(idle))
        return len(idle)

    def blocked_senders(self) -> list[BlockedSender]:
        """Enumerate senders whose block has not expired yet."""

        with self._lock:
            now = self._clock()
            return [
                BlockedSender(
                    sender_id=sender,
                    reason=record.reason,
                    severity=record.severity,
                    blocked_at=record.blocked_at,
                    remaining=record.remaining(now),
                )
                for sender, record in self._state.blocks.items()
                if record.is_active(now)
            ]

    def sender_stats(self, sender_id: str, category: str = "message") -> Optional[SenderStats]:
        _check_category(category)
        with self._lock:
            window = self._state.activity.get((sender_id, category))
            if window is None:
                return None
            now = self._clock()
            window.purge(now)
            counts = {name: window.count_since(now - WINDOW_SPANS[name]) for name in WINDOWS}
            return SenderStats(
                sender_id=sender_id,
                category=category,
                per_minute=counts["minute"],
                per_hour=counts["hour"],
                per_day=counts["day"],
                total=len(window.timestamps),
                last_warning=window.last_warning,
                warning_count=window.warning_count,
                is_blocked=self._active_block(sender_id, now) is not None,
            )

    def global_stats(self) -> dict[str, int]:
        with self._lock:
            now = self._clock()
            hour_ago = now - WINDOW_SPANS["hour"]
            senders = {sender for sender, _ in self._state.activity}
            active = {
                sender
                for (sender, _), window in self._state.activity.items()
                if window.count_since(hour_ago) > 0
            }
            blocked = sum(1 for record in self._state.blocks.values() if record.is_active(now))
        return {
            "total_senders": len(senders),
            "active_senders": len(active),
            "blocked_senders": blocked,
        }

    def update_limits(self, category: str, limits: WindowLimits) -> None:
        _check_category(category)
        with self._lock:
            self._limits[category] = limits
        LOGGER.info("Updated %s limits to %s", category, limits)

    def clear_sender(self, sender_id: str) -> None:
        """Administrative reset: forget all activity and any block for a sender."""

        with self._lock:
            for category in CATEGORIES:
                self._state.activity.pop((sender_id, category), None)
            self._state.blocks.pop(sender_id, None)


def _check_category(category: str) -> None:
    if category not in CATEGORIES:
        raise ValueError(f"Unsupported category: {category}")
