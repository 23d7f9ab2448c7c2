"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any integration-specific types.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

CONTENT_KINDS = ("text", "image", "video", "audio", "document", "sticker")
MEDIA_KINDS = frozenset(CONTENT_KINDS[1:])
MATCH_KINDS = ("exact", "contains", "regex")


@dataclass(frozen=True)
class MediaRef:
    """Location and mime type of a media payload."""

    url: Optional[str]
    mime_type: Optional[str]


@dataclass(frozen=True)
class NormalizedMessage:
    """Canonical inbound message used by the core processing pipeline."""

    id: str
    conversation_id: str
    sender_id: str
    content_kind: str
    text: str
    media_ref: Optional[MediaRef]
    timestamp: datetime
    is_group: bool
    reply_to_id: Optional[str] = None
    is_forwarded: bool = False

    @property
    def is_media(self) -> bool:
        return self.content_kind in MEDIA_KINDS


@dataclass(frozen=True)
class TriggerRule:
    """Keyword to auto-response mapping with a match strategy."""

    keyword: str
    response: str
    match_kind: str = "exact"
    case_sensitive: bool = False
    active: bool = True


@dataclass(frozen=True)
class Violation:
    """A single window that reached its configured limit."""

    window: str
    count: int
    limit: int

    @property
    def ratio(self) -> float:
        return self.count / self.limit if self.limit else float("inf")


@dataclass(frozen=True)
class BlockRecord:
    """Temporary admission denial for a sender."""

    blocked_at: datetime
    duration: timedelta
    reason: str
    violations: tuple[Violation, ...]
    category: str
    severity: str

    @property
    def expires_at(self) -> datetime:
        return self.blocked_at + self.duration

    def is_active(self, now: datetime) -> bool:
        # The single expiry predicate shared by lazy lookups and the sweep.
        return now < self.expires_at

    def remaining(self, now: datetime) -> timedelta:
        return max(timedelta(0), self.expires_at - now)


@dataclass(frozen=True)
class Decision:
    """Admission outcome for one action attempt."""

    allowed: bool
    warning: Optional[str] = None
    reason: Optional[str] = None
    severity: Optional[str] = None
    remaining: timedelta = timedelta(0)
    violations: tuple[Violation, ...] = ()

    @classmethod
    def allow(cls, warning: Optional[str] = None) -> "Decision":
        return cls(allowed=True, warning=warning)

    @classmethod
    def blocked(cls, record: BlockRecord, now: datetime) -> "Decision":
        return cls(
            allowed=False,
            reason=record.reason,
            severity=record.severity,
            remaining=record.remaining(now),
            violations=record.violations,
        )


@dataclass(frozen=True)
class SpamVerdict:
    """Result of the category-agnostic burst check."""

    flagged: bool
    count: int
    threshold: int


@dataclass(frozen=True)
class SenderStats:
    """Read-only view of one sender's activity in one category."""

    sender_id: str
    category: str
    per_minute: int
    per_hour: int
    per_day: int
    total: int
    last_warning: Optional[datetime]
    warning_count: int
    is_blocked: bool


@dataclass(frozen=True)
class BlockedSender:
    """Entry of the currently-blocked enumeration."""

    sender_id: str
    reason: str
    severity: str
    blocked_at: datetime
    remaining: timedelta


GROUP_ACTIONS = ("add", "remove")


@dataclass(frozen=True)
class GroupUpdate:
    """Membership change in a group conversation."""

    conversation_id: str
    action: str
    participants: tuple[str, ...]
    member_count: Optional[int] = None
