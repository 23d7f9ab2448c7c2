"""Telegram account transport.

Sends replies from the logged-in account through the Telethon client.
"""

from __future__ import annotations

import logging
from typing import Sequence

from telethon import TelegramClient, errors

from adapters.response_formatting import render_mentions
from core.errors import TransientIOError

LOGGER = logging.getLogger(__name__)


def _resolve_peer(conversation_id: str):
    # Conversation ids are chat ids from the mapper; usernames pass through.
    try:
        return int(conversation_id)
    except ValueError:
        return conversation_id


class TelegramTransport:
    """Transport adapter that replies as the user account."""

    def __init__(self, client: TelegramClient) -> None:
        self._client = client

    def is_connected(self) -> bool:
        return self._client.is_connected()

    async def send(self, conversation_id: str, content: str, mentions: Sequence[str] = ()) -> None:
        """Send content to the conversation; mentions become Markdown user links."""

        parse_mode = None
        if mentions:
            content = render_mentions(content, mentions, mode="markdown")
            parse_mode = "md"
        try:
            await self._client.send_message(_resolve_peer(conversation_id), content, parse_mode=parse_mode)
        except (ConnectionError, errors.RPCError) as exc:
            raise TransientIOError(f"Failed to send to {conversation_id}: {exc}") from exc
        LOGGER.debug("Message sent to %s", conversation_id)
