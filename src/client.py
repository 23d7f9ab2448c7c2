"""Telegram client factory for chatwarden.

One user-account session serves both the `run` and `send` commands: it feeds
NewMessage and ChatAction events into the pipeline, and it delivers replies
when reply.method is "account". Login prompts and session files are handled
by Telethon on the first `run`.
"""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv
from telethon import TelegramClient

from core.errors import ConfigurationError


def build_client() -> TelegramClient:
    """Create a Telethon client from API_ID, API_HASH and SESSION_NAME."""

    load_dotenv()

    api_id = os.getenv("API_ID")
    api_hash = os.getenv("API_HASH")
    session_name = os.getenv("SESSION_NAME", "chatwarden")

    if not api_id or not api_hash:
        raise ConfigurationError("Missing API_ID or API_HASH in environment")
    try:
        numeric_id = int(api_id)
    except ValueError as exc:
        raise ConfigurationError(f"API_ID must be numeric, got {api_id!r}") from exc

    logging.getLogger(__name__).info("Initializing Telegram client for session %s", session_name)

    return TelegramClient(session_name, numeric_id, api_hash)
