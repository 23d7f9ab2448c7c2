from __future__ import annotations

from datetime import datetime, timezone

from core.models import MediaRef
from core.normalizer import normalize, normalize_group_update


def test_plain_text_event() -> None:
    message = normalize({
        "id": "1",
        "conversation_id": "chat",
        "sender_id": "alice",
        "is_group": True,
        "timestamp": 1704067200,
        "content": {"text": "hello"},
    })

    assert message is not None
    assert message.content_kind == "text"
    assert message.text == "hello"
    assert message.sender_id == "alice"
    assert message.is_group
    assert message.timestamp == datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert not message.is_media


def test_own_messages_are_dropped() -> None:
    assert normalize({"id": "1", "from_me": True, "content": {"text": "hi"}}) is None


def test_extended_text_carries_reply_and_forward_flags() -> None:
    message = normalize({
        "id": "2",
        "conversation_id": "chat",
        "content": {"extended_text": {"text": "quoted", "reply_to_id": "1", "is_forwarded": True}},
    })

    assert message.text == "quoted"
    assert message.reply_to_id == "1"
    assert message.is_forwarded


def test_media_caption_becomes_text() -> None:
    message = normalize({
        "id": "3",
        "conversation_id": "chat",
        "content": {"image": {"url": "https://x/1.jpg", "mime_type": "image/jpeg", "caption": "look"}},
    })

    assert message.content_kind == "image"
    assert message.text == "look"
    assert message.media_ref == MediaRef(url="https://x/1.jpg", mime_type="image/jpeg")
    assert message.is_media


def test_text_wins_over_media_and_media_order_is_fixed() -> None:
    both = normalize({"id": "4", "content": {"text": "t", "video": {}}})
    media = normalize({"id": "5", "content": {"sticker": {}, "audio": {}}})

    assert both.content_kind == "text"
    assert media.content_kind == "audio"


def test_sender_falls_back_to_conversation() -> None:
    message = normalize({"id": "6", "conversation_id": "dm-42", "content": {"text": "x"}})

    assert message.sender_id == "dm-42"


def test_malformed_event_does_not_raise() -> None:
    message = normalize({"id": None, "content": "garbage", "timestamp": "not a date"})

    assert message is not None
    assert message.content_kind == "text"
    assert message.text == ""
    assert message.id == ""
    assert message.timestamp.tzinfo is not None


def test_naive_and_iso_timestamps_are_utc() -> None:
    naive = normalize({"id": "7", "timestamp": datetime(2024, 1, 1, 8, 0)})
    iso = normalize({"id": "8", "timestamp": "2024-01-01T08:00:00+00:00"})

    assert naive.timestamp == iso.timestamp == datetime(2024, 1, 1, 8, 0, tzinfo=timezone.utc)


def test_group_update_keeps_valid_participants() -> None:
    update = normalize_group_update({
        "conversation_id": -100,
        "action": "add",
        "participants": ["1", "", None, 2],
        "member_count": 7,
    })

    assert update is not None
    assert update.conversation_id == "-100"
    assert update.participants == ("1", "2")
    assert update.member_count == 7


def test_group_update_rejects_unknown_actions_and_bad_counts() -> None:
    assert normalize_group_update({"action": "title", "participants": ["1"]}) is None
    assert normalize_group_update({"action": "add", "participants": "1"}) is None

    update = normalize_group_update({"action": "remove", "participants": ["1"], "member_count": True})
    assert update.member_count is None
    assert normalize_group_update({"action": "remove", "participants": ["1"], "member_count": -1}).member_count is None
