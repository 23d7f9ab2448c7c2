"""Control surface used by the CLI (and any future HTTP layer).

Trigger mutations go to the store first and then reload the engine from
the store, so the in-memory snapshot is always a full copy of what is
persisted and the next match() sees the change immediately. Other processes
sharing the store (the running bot) notice the change through the store's
trigger revision and reload on their next refresh_triggers().
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Optional

from core.errors import DuplicateKeyword
from core.models import MATCH_KINDS, BlockedSender, SenderStats, TriggerRule
from core.ports import StoragePort, TransportPort
from core.rate_limiter import RateLimiter
from core.rules_engine import TriggerEngine
from core.spam import SpamDetector

LOGGER = logging.getLogger(__name__)


class ControlService:
    """Administrative operations over the running pipeline's components."""

    def __init__(
        self,
        storage: StoragePort,
        trigger_engine: TriggerEngine,
        rate_limiter: RateLimiter,
        spam_detector: SpamDetector,
        transport: Optional[TransportPort] = None,
        bot_info: Optional[dict[str, Any]] = None,
    ) -> None:
        self._storage = storage
        self._triggers = trigger_engine
        self._limiter = rate_limiter
        self._spam = spam_detector
        self._transport = transport
        self._bot_info = dict(bot_info or {})
        self.running = False
        self._trigger_revision: Optional[int] = None

    def reload_triggers(self) -> int:
        # Read the revision first so a write landing mid-reload is seen next refresh.
        self._trigger_revision = self._storage.trigger_revision()
        self._triggers.load(self._storage.get_active_triggers())
        return len(self._triggers)

    def refresh_triggers(self) -> bool:
        """Reload the engine if the stored rules changed since the last load."""

        if self._storage.trigger_revision() == self._trigger_revision:
            return False
        LOGGER.info("Stored triggers changed; reloading")
        self.reload_triggers()
        return True

    def add_trigger_rule(
        self,
        keyword: str,
        response: str,
        match_kind: str = "exact",
        case_sensitive: bool = False,
    ) -> TriggerRule:
        """Persist a new trigger; raises DuplicateKeyword when the keyword exists."""

        if match_kind not in MATCH_KINDS:
            raise ValueError(f"Unsupported match_kind: {match_kind}")
        rule = TriggerRule(
            keyword=keyword,
            response=response,
            match_kind=match_kind,
            case_sensitive=case_sensitive,
        )
        self._storage.add_trigger(rule)
        self.reload_triggers()
        LOGGER.info("Trigger added: %r -> %r", keyword, response)
        return rule

    def remove_trigger_rule(self, keyword: str) -> None:
        """Delete a trigger; raises NotFound when the keyword is unknown."""

        self._storage.remove_trigger(keyword)
        self.reload_triggers()
        LOGGER.info("Trigger removed: %r", keyword)

    def list_trigger_rules(self) -> list[TriggerRule]:
        return self._storage.list_triggers()

    def seed_triggers(self, rules: Iterable[TriggerRule]) -> int:
        """Insert configured triggers whose keyword is not stored yet."""

        added = 0
        for rule in rules:
            try:
                self._storage.add_trigger(rule)
            except DuplicateKeyword:
                continue
            added += 1
        if added:
            LOGGER.info("Seeded %s triggers from config", added)
        self.reload_triggers()
        return added

    async def send_message(self, conversation_id: str, text: str) -> bool:
        """Send a message through the transport; failures are logged, not raised."""

        if self._transport is None:
            raise RuntimeError("Transport not initialized")
        try:
            await self._transport.send(conversation_id, text)
        except Exception:
            LOGGER.exception("Failed to send message to %s", conversation_id)
            return False
        LOGGER.info("Message sent to %s", conversation_id)
        return True

    def get_status(self) -> dict[str, Any]:
        connected = None
        if self._transport is not None:
            try:
                connected = bool(self._transport.is_connected())
            except Exception:
                LOGGER.exception("Failed to read transport status")
                connected = False
        return {
            "running": self.running,
            "connected": connected,
            "active_triggers": len(self._triggers),
            "config": self._bot_info,
        }

    def get_stats(self) -> dict[str, Any]:
        stats = dict(self._storage.get_stats())
        stats["rate_limits"] = self._limiter.global_stats()
        stats["status"] = self.get_status()
        return stats

    def sender_rate_stats(self, sender_id: str, category: str = "message") -> Optional[SenderStats]:
        return self._limiter.sender_stats(sender_id, category)

    def blocked_senders(self) -> list[BlockedSender]:
        return self._limiter.blocked_senders()

    def clear_sender_data(self, sender_id: str) -> None:
        """Administrative reset of a sender's rate-limit and spam state."""

        self._limiter.clear_sender(sender_id)
        self._spam.clear_sender(sender_id)
        LOGGER.info("Cleared rate-limit data for %s", sender_id)
