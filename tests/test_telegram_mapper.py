from __future__ import annotations

from datetime import datetime, timezone

from telethon.tl.types import PeerChannel, PeerUser

from adapters.telegram_mapper import build_permalink, chat_action_to_raw_event, scoped_message_id, to_raw_event
from core.normalizer import normalize


class DummyChat:
    def __init__(self, username: "str | None" = None) -> None:
        self.username = username


class DummyFile:
    def __init__(self, mime_type: "str | None") -> None:
        self.mime_type = mime_type


class DummyMessage:
    def __init__(
        self,
        *,
        chat_id: int = -100123,
        message_id: int = 10,
        text: str = "",
        sender_id: "int | None" = 42,
        chat: "DummyChat | None" = None,
        peer_id=None,
        is_group: bool = True,
        out: bool = False,
        **attrs,
    ) -> None:
        self.chat_id = chat_id
        self.id = message_id
        self.raw_text = text
        self.sender_id = sender_id
        self.chat = chat
        self.peer_id = peer_id
        self.is_group = is_group
        self.out = out
        self.date = datetime(2024, 1, 1, tzinfo=timezone.utc)
        self.reply_to_msg_id = None
        self.fwd_from = None
        self.entities = None
        for name, value in attrs.items():
            setattr(self, name, value)


def test_text_message_maps_to_plain_text_event() -> None:
    event = to_raw_event(DummyMessage(text="help"))

    assert event["id"] == "-100123:10"
    assert event["conversation_id"] == "-100123"
    assert event["sender_id"] == "42"
    assert event["content"] == {"text": "help"}
    assert not event["from_me"]

    message = normalize(event)
    assert message.text == "help"
    assert message.is_group


def test_reply_becomes_extended_text_with_scoped_id() -> None:
    event = to_raw_event(DummyMessage(text="yes", reply_to_msg_id=7))

    assert event["content"]["extended_text"]["reply_to_id"] == "-100123:7"
    assert normalize(event).reply_to_id == "-100123:7"


def test_photo_uses_caption_and_permalink() -> None:
    message = DummyMessage(
        text="look",
        chat=DummyChat(username="mygroup"),
        photo=object(),
        file=DummyFile(None),
    )

    event = to_raw_event(message)

    assert event["content"]["image"] == {
        "url": "https://t.me/mygroup/10",
        "mime_type": "image/jpeg",
        "caption": "look",
    }
    normalized = normalize(event)
    assert normalized.content_kind == "image"
    assert normalized.text == "look"


def test_sticker_wins_over_document() -> None:
    message = DummyMessage(sticker=object(), document=object(), file=DummyFile("image/webp"))

    assert list(to_raw_event(message)["content"]) == ["sticker"]


def test_outgoing_messages_are_marked() -> None:
    assert normalize(to_raw_event(DummyMessage(text="mine", out=True))) is None


def test_permalink_variants() -> None:
    assert build_permalink(DummyMessage(peer_id=PeerChannel(channel_id=555))) == "https://t.me/c/555/10"
    assert build_permalink(DummyMessage(peer_id=PeerUser(user_id=1))) is None


def test_scoped_message_id() -> None:
    assert scoped_message_id(1, 2) == "1:2"
    assert scoped_message_id(1, None) is None


class DummyChatAction:
    def __init__(self, chat_id: int = -100123, user_ids=(), **flags) -> None:
        self.chat_id = chat_id
        self.user_ids = list(user_ids)
        for name in ("user_joined", "user_added", "user_left", "user_kicked"):
            setattr(self, name, flags.get(name, False))


def test_added_members_map_to_add_event() -> None:
    raw = chat_action_to_raw_event(DummyChatAction(user_ids=[7, 8], user_added=True), member_count=40)

    assert raw == {
        "conversation_id": "-100123",
        "action": "add",
        "participants": ["7", "8"],
        "member_count": 40,
    }


def test_leaves_and_kicks_map_to_remove_event() -> None:
    left = chat_action_to_raw_event(DummyChatAction(user_ids=[7], user_left=True))
    kicked = chat_action_to_raw_event(DummyChatAction(user_ids=[8], user_kicked=True))

    assert left["action"] == kicked["action"] == "remove"
    assert left["member_count"] is None


def test_other_chat_actions_are_ignored() -> None:
    assert chat_action_to_raw_event(DummyChatAction()) is None
