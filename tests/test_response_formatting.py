from __future__ import annotations

import pytest

from adapters.response_formatting import escape_md, render_mentions
from core.processor import format_spam_warning


def test_markdown_mentions_link_numeric_ids() -> None:
    content = format_spam_warning("123")

    rendered = render_mentions(content, ["123"], mode="markdown")

    assert "[@123](tg://user?id=123)" in rendered


def test_html_mentions_escape_content() -> None:
    rendered = render_mentions("<b> @123", ["123"], mode="html")

    assert rendered == '&lt;b&gt; <a href="tg://user?id=123">@123</a>'


def test_non_numeric_handles_stay_plain() -> None:
    assert render_mentions("hi @bob", ["bob"], mode="html") == "hi @bob"


def test_escape_md() -> None:
    assert escape_md("a_b*c") == "a\\_b\\*c"


def test_unknown_mode_raises() -> None:
    with pytest.raises(ValueError):
        render_mentions("x", [], mode="plain")
