"""Shared outbound formatting helpers.

Keeping mention rendering here prevents drift between transports and keeps
replies consistent regardless of delivery channel.
"""

from __future__ import annotations

import html
from typing import Sequence

from core.processor import mention_handle


def escape_md(value: str) -> str:
    for ch in r"*[`_":
        value = value.replace(ch, f"\\{ch}")
    return value


def _user_link(sender_id: str) -> str:
    return f"tg://user?id={mention_handle(sender_id)}"


def _render_markdown(content: str, mentions: Sequence[str]) -> str:
    rendered = escape_md(content)
    for sender_id in mentions:
        handle = mention_handle(sender_id)
        token = escape_md(f"@{handle}")
        rendered = rendered.replace(token, f"[@{escape_md(handle)}]({_user_link(sender_id)})")
    return rendered


def _render_html(content: str, mentions: Sequence[str]) -> str:
    rendered = html.escape(content)
    for sender_id in mentions:
        handle = html.escape(mention_handle(sender_id))
        link = html.escape(_user_link(sender_id))
        rendered = rendered.replace(f"@{handle}", f"<a href=\"{link}\">@{handle}</a>")
    return rendered


def render_mentions(content: str, mentions: Sequence[str], mode: str) -> str:
    """Turn plain @handle tokens for the given senders into user links.

    Only numeric Telegram user ids can be linked; other handles stay as text.
    """

    linkable = [sender for sender in mentions if mention_handle(sender).isdigit()]
    if mode == "markdown":
        return _render_markdown(content, linkable)
    if mode == "html":
        return _render_html(content, linkable)
    raise ValueError(f"Unsupported format: {mode}")
