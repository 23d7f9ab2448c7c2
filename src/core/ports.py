"""Ports (interfaces) used by the core pipeline.

Ports define the minimal contracts for storage and transport adapters so
that the core can be reused with different backends.
"""

from __future__ import annotations

from typing import Any, Optional, Protocol, Sequence

from core.models import NormalizedMessage, TriggerRule


class StoragePort(Protocol):
    """Storage operations required by the core pipeline.

    Message inserts must be insert-or-ignore on the message id so redelivered
    events never duplicate stored messages.
    """

    def save_message(self, message: NormalizedMessage) -> bool:
        ...

    def upsert_user(self, sender_id: str) -> None:
        ...

    def touch_user_activity(self, sender_id: str) -> None:
        ...

    def get_active_triggers(self) -> list[TriggerRule]:
        ...

    def list_triggers(self) -> list[TriggerRule]:
        ...

    def add_trigger(self, rule: TriggerRule) -> None:
        ...

    def remove_trigger(self, keyword: str) -> None:
        ...

    def trigger_revision(self) -> int:
        """Monotonic counter that changes whenever stored triggers change."""
        ...

    def record_group_member(self, conversation_id: str, member_id: str, active: bool) -> None:
        ...

    def update_group_member_count(self, conversation_id: str, member_count: int) -> None:
        ...

    def append_log(self, level: str, message: str, context: Optional[dict[str, Any]] = None) -> None:
        ...

    def save_collected_data_point(
        self,
        kind: str,
        value: str,
        source_id: str,
        message_id: Optional[str],
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        ...

    def save_spam_event(
        self,
        source_id: str,
        message_id: Optional[str],
        reason: str,
        severity: str,
        action: Optional[str],
    ) -> None:
        ...

    def get_stats(self) -> dict[str, Any]:
        ...


class TransportPort(Protocol):
    """Outbound operations required by the core pipeline."""

    async def send(self, conversation_id: str, content: str, mentions: Sequence[str] = ()) -> None:
        ...

    def is_connected(self) -> bool:
        ...
