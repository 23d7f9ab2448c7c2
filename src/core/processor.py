"""Core message processing pipeline.

This module is integration-agnostic. It only relies on ports for storage and
transport, enabling other chat networks or stores without changes here.

The pipeline enforces a strict order per event:
1) Normalize the raw event (self-originated events are skipped)
2) Atomic rate-limit admission (check + record) for message/media/command
3) Rate warning reply, if the admission carried one
4) Trigger matching and response dispatch, in rule order
5) Persist the message
6) Update sender activity metadata
7) Data point collection
8) Spam escalation check
9) Audit log entry

Every stage after admission is isolated: a failure is logged and the
remaining stages still run.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from typing import Any, Mapping, Optional

from core.channel import EventChannel
from core.collector import extract_data_points
from core.config import DataCollectionConfig
from core.models import Decision, NormalizedMessage, SpamVerdict, TriggerRule
from core.normalizer import normalize
from core.ports import StoragePort, TransportPort
from core.rate_limiter import RateLimiter
from core.rules_engine import TriggerEngine
from core.spam import SpamDetector

LOGGER = logging.getLogger(__name__)

SPAM_REASON = "High message frequency"
SPAM_SEVERITY = "medium"
SPAM_ACTION = "flagged"


def mention_handle(sender_id: str) -> str:
    """Return the user-facing handle for a sender id (drops any @domain part)."""

    return sender_id.split("@", 1)[0]


def format_spam_warning(sender_id: str) -> str:
    return f"⚠️ @{mention_handle(sender_id)}, please slow down your messages to avoid being flagged as spam."


@dataclass(frozen=True)
class ProcessingOutcome:
    """What happened to one admitted or rejected message."""

    message: NormalizedMessage
    category: str
    decision: Decision
    fired: tuple[TriggerRule, ...] = ()
    responses_sent: int = 0
    spam: Optional[SpamVerdict] = None
    failed_stages: tuple[str, ...] = ()


class MessageProcessor:
    """Orchestrates admission, triggers, persistence and spam escalation."""

    def __init__(
        self,
        trigger_engine: TriggerEngine,
        rate_limiter: RateLimiter,
        spam_detector: SpamDetector,
        storage: StoragePort,
        transport: TransportPort,
        data_collection: Optional[DataCollectionConfig] = None,
        command_prefix: Optional[str] = None,
    ) -> None:
        self._triggers = trigger_engine
        self._limiter = rate_limiter
        self._spam = spam_detector
        self._storage = storage
        self._transport = transport
        self._collection = data_collection or DataCollectionConfig()
        self._command_prefix = command_prefix

    def category_for(self, message: NormalizedMessage) -> str:
        if message.is_media:
            return "media"
        if self._command_prefix and message.text.startswith(self._command_prefix):
            return "command"
        return "message"

    async def handle(self, raw_event: Any) -> Optional[ProcessingOutcome]:
        """Process one raw event through the pipeline. Never raises."""

        try:
            message = normalize(raw_event)
        except Exception:
            LOGGER.exception("Failed to normalize raw event")
            return None
        if message is None:
            return None

        category = self.category_for(message)
        try:
            decision = self._limiter.admit(message.sender_id, category)
        except Exception:
            LOGGER.exception("Admission check failed for %s", message.id)
            self._append_log("error", "Admission check failed", {"message_id": message.id})
            return None

        if not decision.allowed:
            LOGGER.info("Rejected %s from %s: %s", message.id, message.sender_id, decision.reason)
            self._append_log(
                "warn",
                "Message rejected by rate limiter",
                {
                    "message_id": message.id,
                    "sender": message.sender_id,
                    "reason": decision.reason,
                    "severity": decision.severity,
                    "remaining_seconds": int(decision.remaining.total_seconds()),
                },
            )
            return ProcessingOutcome(message=message, category=category, decision=decision)

        failures: list[str] = []

        if decision.warning:
            try:
                await self._transport.send(message.conversation_id, decision.warning)
            except Exception as exc:
                self._report_failure("rate_warning", message, exc, failures)

        fired, sent = await self._dispatch_triggers(message, failures)

        try:
            self._storage.save_message(message)
        except Exception as exc:
            self._report_failure("persist", message, exc, failures)

        try:
            self._storage.upsert_user(message.sender_id)
            self._storage.touch_user_activity(message.sender_id)
        except Exception as exc:
            self._report_failure("user_activity", message, exc, failures)

        try:
            self._collect_data(message)
        except Exception as exc:
            self._report_failure("data_collection", message, exc, failures)

        spam: Optional[SpamVerdict] = None
        try:
            spam = await self._check_spam(message)
        except Exception as exc:
            self._report_failure("spam_check", message, exc, failures)

        self._append_log(
            "info",
            "Message processed",
            {
                "message_id": message.id,
                "sender": message.sender_id,
                "is_group": message.is_group,
                "type": message.content_kind,
            },
        )

        return ProcessingOutcome(
            message=message,
            category=category,
            decision=decision,
            fired=tuple(fired),
            responses_sent=sent,
            spam=spam,
            failed_stages=tuple(failures),
        )

    async def _dispatch_triggers(
        self, message: NormalizedMessage, failures: list[str]
    ) -> tuple[list[TriggerRule], int]:
        try:
            fired = self._triggers.match(message)
        except Exception as exc:
            self._report_failure("trigger_match", message, exc, failures)
            return [], 0

        sent = 0
        for rule in fired:
            # A failed response is logged and not retried; later rules still go out.
            try:
                await self._transport.send(message.conversation_id, rule.response)
            except Exception as exc:
                self._report_failure("trigger_dispatch", message, exc, failures)
                continue
            sent += 1
            LOGGER.info("Trigger %r fired for %s", rule.keyword, message.conversation_id)
            self._append_log(
                "info",
                "Trigger response sent",
                {"trigger": rule.keyword, "response": rule.response, "to": message.conversation_id},
            )
        return fired, sent

    def _collect_data(self, message: NormalizedMessage) -> None:
        if not self._collection.enabled:
            return
        for point in extract_data_points(message, self._collection):
            self._storage.save_collected_data_point(
                point.kind,
                point.value,
                message.sender_id,
                message.id,
                point.context,
            )

    async def _check_spam(self, message: NormalizedMessage) -> SpamVerdict:
        verdict = self._spam.observe(message.sender_id)
        if not verdict.flagged:
            return verdict

        self._storage.save_spam_event(
            message.sender_id,
            message.id,
            SPAM_REASON,
            SPAM_SEVERITY,
            SPAM_ACTION,
        )
        if message.is_group:
            await self._transport.send(
                message.conversation_id,
                format_spam_warning(message.sender_id),
                mentions=[message.sender_id],
            )
        return verdict

    def _report_failure(
        self,
        stage: str,
        message: NormalizedMessage,
        exc: Exception,
        failures: list[str],
    ) -> None:
        failures.append(stage)
        LOGGER.error("Stage %s failed for message %s", stage, message.id, exc_info=exc)
        self._append_log(
            "error",
            f"Stage {stage} failed",
            {"message_id": message.id, "error": str(exc)},
        )

    def _append_log(self, level: str, text: str, context: Mapping[str, Any]) -> None:
        # The audit log is best effort; a broken store must not break the pipeline.
        try:
            self._storage.append_log(level, text, dict(context))
        except Exception:
            LOGGER.exception("Failed to append %s log entry: %s", level, text)

    async def run(self, channel: EventChannel, max_in_flight: int = 8) -> None:
        """Consume the channel until it is closed.

        Up to max_in_flight events are processed concurrently, but events of
        the same conversation are handled one at a time in arrival order.
        """

        slots = asyncio.Semaphore(max_in_flight)
        ordering = _ConversationLocks()
        pending: set[asyncio.Task] = set()

        async for raw_event in channel:
            await slots.acquire()
            key = _conversation_key(raw_event)
            lock = ordering.claim(key)
            task = asyncio.create_task(self._handle_in_order(raw_event, key, lock, ordering, slots))
            pending.add(task)
            task.add_done_callback(pending.discard)

        if pending:
            await asyncio.gather(*pending)

    async def _handle_in_order(
        self,
        raw_event: Any,
        key: str,
        lock: asyncio.Lock,
        ordering: "_ConversationLocks",
        slots: asyncio.Semaphore,
    ) -> None:
        try:
            async with lock:
                await self.handle(raw_event)
        except Exception:
            LOGGER.exception("Unexpected error while processing event")
        finally:
            ordering.release(key)
            slots.release()


class _ConversationLocks:
    """Reference-counted asyncio locks keyed by conversation.

    asyncio.Lock wakes waiters in FIFO order and tasks start in creation
    order, so claiming in arrival order preserves per-conversation order.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._claims: dict[str, int] = {}

    def claim(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._claims[key] = self._claims.get(key, 0) + 1
        return lock

    def release(self, key: str) -> None:
        remaining = self._claims.get(key, 0) - 1
        if remaining > 0:
            self._claims[key] = remaining
            return
        self._claims.pop(key, None)
        self._locks.pop(key, None)


def _conversation_key(raw_event: Any) -> str:
    if isinstance(raw_event, Mapping):
        return str(raw_event.get("conversation_id") or "")
    return ""
