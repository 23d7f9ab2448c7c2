"""Group membership handling (core domain).

For each participant of a membership event:
- add: welcome reply mentioning the member, member row activated, audit log
- remove: member row deactivated, audit log
Then the group's member count is updated when the transport reported one.
Like the message pipeline, each step is isolated and nothing is raised.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from core.config import GroupConfig
from core.models import GroupUpdate
from core.normalizer import normalize_group_update
from core.ports import StoragePort, TransportPort
from core.processor import mention_handle

LOGGER = logging.getLogger(__name__)


def format_welcome(member_id: str) -> str:
    return f"👋 Welcome to the group, @{mention_handle(member_id)}!"


class GroupMembershipHandler:
    """Welcomes new members and keeps group membership in the store."""

    def __init__(
        self,
        storage: StoragePort,
        transport: TransportPort,
        config: Optional[GroupConfig] = None,
    ) -> None:
        self._storage = storage
        self._transport = transport
        self._config = config or GroupConfig()

    async def handle(self, raw_event: Any) -> Optional[GroupUpdate]:
        try:
            update = normalize_group_update(raw_event)
        except Exception:
            LOGGER.exception("Failed to normalize group event")
            return None
        if update is None:
            return None

        for member_id in update.participants:
            if update.action == "add":
                await self._member_joined(update.conversation_id, member_id)
            else:
                self._member_left(update.conversation_id, member_id)

        if update.member_count is not None:
            try:
                self._storage.update_group_member_count(update.conversation_id, update.member_count)
            except Exception:
                LOGGER.exception("Failed to update member count for %s", update.conversation_id)
        return update

    async def _member_joined(self, conversation_id: str, member_id: str) -> None:
        if self._config.welcome_enabled:
            try:
                await self._transport.send(conversation_id, format_welcome(member_id), mentions=[member_id])
            except Exception:
                LOGGER.exception("Failed to welcome %s in %s", member_id, conversation_id)
        self._record(conversation_id, member_id, active=True)
        self._log("New member joined group", conversation_id, member_id)

    def _member_left(self, conversation_id: str, member_id: str) -> None:
        self._record(conversation_id, member_id, active=False)
        self._log("Member left group", conversation_id, member_id)

    def _record(self, conversation_id: str, member_id: str, active: bool) -> None:
        try:
            self._storage.record_group_member(conversation_id, member_id, active)
        except Exception:
            LOGGER.exception("Failed to record membership of %s in %s", member_id, conversation_id)

    def _log(self, text: str, conversation_id: str, member_id: str) -> None:
        LOGGER.info("%s: %s in %s", text, member_id, conversation_id)
        try:
            self._storage.append_log("info", text, {"group": conversation_id, "member": member_id})
        except Exception:
            LOGGER.exception("Failed to append log entry: %s", text)
