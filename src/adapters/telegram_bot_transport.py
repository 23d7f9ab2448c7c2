"""Telegram Bot API transport.

Uses the Bot API for delivery so replies can come from a bot that sits in
the watched conversations instead of the user account.
"""

from __future__ import annotations

import asyncio
import json
from typing import Sequence
import urllib.error
import urllib.request

from adapters.response_formatting import render_mentions
from core.errors import TransientIOError


class TelegramBotTransport:
    """Transport adapter that sends messages via the Telegram Bot API."""

    def __init__(self, bot_token: str, timeout: float = 10.0) -> None:
        self._bot_token = bot_token
        self._timeout = timeout
        self._last_ok = True

    def _endpoint(self) -> str:
        # The Bot API endpoint is deterministic and derived from the token.
        return f"https://api.telegram.org/bot{self._bot_token}/sendMessage"

    def is_connected(self) -> bool:
        # The Bot API is stateless; report whether the last call succeeded.
        return self._last_ok

    def _post(self, payload: dict) -> None:
        data = json.dumps(payload).encode("utf-8")
        request = urllib.request.Request(self._endpoint(), data=data, method="POST")
        request.add_header("Content-Type", "application/json")
        try:
            with urllib.request.urlopen(request, timeout=self._timeout):
                pass
        except urllib.error.HTTPError as e:
            body = e.read().decode("utf-8", errors="replace")
            raise TransientIOError(f"Bot API error {e.code}: {body}") from e
        except (urllib.error.URLError, OSError) as e:
            raise TransientIOError(f"Bot API unreachable: {e}") from e

    async def send(self, conversation_id: str, content: str, mentions: Sequence[str] = ()) -> None:
        """Send content via the Bot API, rendering mentions as HTML links."""

        payload = {
            "chat_id": conversation_id,
            "text": render_mentions(content, mentions, mode="html"),
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }
        # urllib blocks; run it off the event loop so admission bookkeeping never waits on it.
        try:
            await asyncio.to_thread(self._post, payload)
        except TransientIOError:
            self._last_ok = False
            raise
        self._last_ok = True
