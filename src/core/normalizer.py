"""Raw event normalization (core domain).

Transport adapters hand the core a plain mapping per inbound event:

    {
        "id": "...",                 # unique message id
        "conversation_id": "...",    # chat the message was posted in
        "sender_id": "...",          # author; falls back to conversation_id
        "from_me": False,            # echo of our own message
        "is_group": True,
        "timestamp": datetime | epoch seconds,
        "reply_to_id": "..." | None,
        "is_forwarded": False,
        "content": {
            "text": "...",
            "extended_text": {"text": ..., "reply_to_id": ..., "is_forwarded": ...},
            "image" | "video" | "audio" | "document" | "sticker": {
                "url": ..., "mime_type": ..., "caption": ...,
            },
        },
    }

Normalization never raises on malformed input: anything missing becomes an
empty value so a single odd event cannot stall the stream.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from core.models import GROUP_ACTIONS, GroupUpdate, MediaRef, NormalizedMessage

LOGGER = logging.getLogger(__name__)

# First payload present wins.
_TEXT_PAYLOADS = ("text", "extended_text")
_MEDIA_PAYLOADS = ("image", "video", "audio", "document", "sticker")


def _as_str(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def _as_optional_str(value: Any) -> Optional[str]:
    text = _as_str(value)
    return text or None


def _as_mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            pass
    elif isinstance(value, str) and value:
        try:
            return _parse_timestamp(datetime.fromisoformat(value))
        except ValueError:
            pass
    return datetime.now(timezone.utc)


def _detect_content(content: Mapping[str, Any]) -> tuple[str, str, Optional[MediaRef], Mapping[str, Any]]:
    """Return (content_kind, text, media_ref, extended_text_payload)."""

    for key in _TEXT_PAYLOADS:
        if key not in content or content[key] is None:
            continue
        payload = content[key]
        if key == "extended_text":
            extended = _as_mapping(payload)
            return "text", _as_str(extended.get("text")), None, extended
        return "text", _as_str(payload), None, {}

    for key in _MEDIA_PAYLOADS:
        if key not in content or content[key] is None:
            continue
        payload = _as_mapping(content[key])
        media_ref = MediaRef(
            url=_as_optional_str(payload.get("url")),
            mime_type=_as_optional_str(payload.get("mime_type")),
        )
        return key, _as_str(payload.get("caption")), media_ref, {}

    return "text", "", None, {}


def normalize(raw_event: Any) -> Optional[NormalizedMessage]:
    """Convert a raw inbound event into a NormalizedMessage.

    Returns None for self-originated events (our own sent messages).
    """

    event = _as_mapping(raw_event)
    if not event:
        LOGGER.debug("Normalizing empty or non-mapping raw event: %r", type(raw_event).__name__)

    if event.get("from_me"):
        return None

    content_kind, text, media_ref, extended = _detect_content(_as_mapping(event.get("content")))

    conversation_id = _as_str(event.get("conversation_id"))
    sender_id = _as_str(event.get("sender_id")) or conversation_id
    reply_to_id = _as_optional_str(event.get("reply_to_id")) or _as_optional_str(extended.get("reply_to_id"))
    is_forwarded = bool(event.get("is_forwarded") or extended.get("is_forwarded"))

    return NormalizedMessage(
        id=_as_str(event.get("id")),
        conversation_id=conversation_id,
        sender_id=sender_id,
        content_kind=content_kind,
        text=text,
        media_ref=media_ref,
        timestamp=_parse_timestamp(event.get("timestamp")),
        is_group=bool(event.get("is_group", False)),
        reply_to_id=reply_to_id,
        is_forwarded=is_forwarded,
    )


def normalize_group_update(raw_event: Any) -> Optional[GroupUpdate]:
    """Convert a raw membership event into a GroupUpdate.

    Layout: {"conversation_id", "action": "add" | "remove",
    "participants": [...], "member_count": int | None}. Unknown actions and
    events without participants return None.
    """

    event = _as_mapping(raw_event)
    action = _as_str(event.get("action"))
    if action not in GROUP_ACTIONS:
        return None

    raw_participants = event.get("participants")
    if not isinstance(raw_participants, (list, tuple)):
        return None
    participants = tuple(_as_str(p) for p in raw_participants if _as_str(p))
    if not participants:
        return None

    member_count = event.get("member_count")
    if isinstance(member_count, bool) or not isinstance(member_count, int) or member_count < 0:
        member_count = None

    return GroupUpdate(
        conversation_id=_as_str(event.get("conversation_id")),
        action=action,
        participants=participants,
        member_count=member_count,
    )
