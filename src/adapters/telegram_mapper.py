"""Telegram-to-core event mapping adapter.

This keeps Telethon-specific details out of the core pipeline: the mapper
produces the plain raw-event mapping that core.normalizer understands.
"""

from __future__ import annotations

from typing import Any, Optional

from telethon.tl.custom import Message
from telethon.tl.types import PeerChannel, PeerChat


def scoped_message_id(chat_id: Any, message_id: Any) -> Optional[str]:
    """Telegram message ids are only unique per chat, so namespace them."""

    if message_id is None:
        return None
    return f"{chat_id}:{message_id}"


def build_permalink(message: Message) -> Optional[str]:
    """Return a t.me link to the message when the chat type allows one."""

    chat = getattr(message, "chat", None)
    username = getattr(chat, "username", None)
    # Prefer public usernames for permalinks when available.
    if isinstance(username, str) and username:
        return f"https://t.me/{username}/{message.id}"

    peer_id = getattr(message, "peer_id", None)
    # Private groups/supergroups/channels can use the /c/ links.
    if isinstance(peer_id, PeerChannel):
        return f"https://t.me/c/{peer_id.channel_id}/{message.id}"
    if isinstance(peer_id, PeerChat):
        return f"https://t.me/c/{peer_id.chat_id}/{message.id}"
    # PeerUser has no chat/channel id; no permalink is possible.
    return None


def _mime_type(message: Message, default: Optional[str] = None) -> Optional[str]:
    file = getattr(message, "file", None)
    return getattr(file, "mime_type", None) or default


def _media_payload(message: Message, caption: str, default_mime: Optional[str] = None) -> dict[str, Any]:
    return {
        "url": build_permalink(message),
        "mime_type": _mime_type(message, default_mime),
        "caption": caption or None,
    }


def _content_from_message(message: Message) -> dict[str, Any]:
    text = getattr(message, "raw_text", None) or ""

    # Stickers, videos and voice notes are documents too; check them first.
    if getattr(message, "sticker", None):
        return {"sticker": _media_payload(message, "")}
    if getattr(message, "photo", None):
        return {"image": _media_payload(message, text, "image/jpeg")}
    if getattr(message, "video", None) or getattr(message, "gif", None):
        return {"video": _media_payload(message, text)}
    if getattr(message, "voice", None) or getattr(message, "audio", None):
        return {"audio": _media_payload(message, text)}
    if getattr(message, "document", None):
        return {"document": _media_payload(message, text)}

    reply_to_msg_id = getattr(message, "reply_to_msg_id", None)
    is_forwarded = getattr(message, "fwd_from", None) is not None
    if getattr(message, "entities", None) or reply_to_msg_id or is_forwarded:
        return {
            "extended_text": {
                "text": text,
                "reply_to_id": scoped_message_id(message.chat_id, reply_to_msg_id),
                "is_forwarded": is_forwarded,
            }
        }
    return {"text": text}


def to_raw_event(message: Message) -> dict[str, Any]:
    """Build the core raw-event mapping from a Telethon Message."""

    sender_id = getattr(message, "sender_id", None)
    return {
        "id": scoped_message_id(message.chat_id, message.id),
        "conversation_id": str(message.chat_id),
        "sender_id": str(sender_id) if sender_id is not None else None,
        "from_me": bool(getattr(message, "out", False)),
        "is_group": bool(getattr(message, "is_group", False)),
        "timestamp": getattr(message, "date", None),
        "reply_to_id": scoped_message_id(message.chat_id, getattr(message, "reply_to_msg_id", None)),
        "is_forwarded": getattr(message, "fwd_from", None) is not None,
        "content": _content_from_message(message),
    }


def chat_action_to_raw_event(event: Any, member_count: Optional[int] = None) -> Optional[dict[str, Any]]:
    """Build the core membership mapping from a Telethon ChatAction event.

    Joins and additions map to "add", leaves and kicks to "remove"; other
    chat actions (title changes, pins) return None.
    """

    if getattr(event, "user_joined", False) or getattr(event, "user_added", False):
        action = "add"
    elif getattr(event, "user_left", False) or getattr(event, "user_kicked", False):
        action = "remove"
    else:
        return None

    user_ids = getattr(event, "user_ids", None) or []
    return {
        "conversation_id": str(event.chat_id),
        "action": action,
        "participants": [str(user_id) for user_id in user_ids],
        "member_count": member_count,
    }
