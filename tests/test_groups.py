from __future__ import annotations

import asyncio
from typing import Optional, Sequence

from core.config import GroupConfig
from core.groups import GroupMembershipHandler, format_welcome


class FakeStorage:
    def __init__(self, fail_record: bool = False) -> None:
        self.members: dict[tuple[str, str], bool] = {}
        self.counts: dict[str, int] = {}
        self.logs: list[tuple[str, str, Optional[dict]]] = []
        self._fail_record = fail_record

    def record_group_member(self, conversation_id: str, member_id: str, active: bool) -> None:
        if self._fail_record:
            raise OSError("database is locked")
        self.members[(conversation_id, member_id)] = active

    def update_group_member_count(self, conversation_id: str, member_count: int) -> None:
        self.counts[conversation_id] = member_count

    def append_log(self, level: str, message: str, context: Optional[dict] = None) -> None:
        self.logs.append((level, message, context))


class FakeTransport:
    def __init__(self, fail: bool = False) -> None:
        self.sent: list[tuple[str, str, tuple[str, ...]]] = []
        self._fail = fail

    async def send(self, conversation_id: str, content: str, mentions: Sequence[str] = ()) -> None:
        if self._fail:
            raise ConnectionError("send failed")
        self.sent.append((conversation_id, content, tuple(mentions)))

    def is_connected(self) -> bool:
        return not self._fail


def _event(action: str, participants, member_count=None) -> dict:
    return {
        "conversation_id": "-100",
        "action": action,
        "participants": participants,
        "member_count": member_count,
    }


def test_new_members_are_welcomed_and_recorded() -> None:
    storage = FakeStorage()
    transport = FakeTransport()
    handler = GroupMembershipHandler(storage, transport)

    update = asyncio.run(handler.handle(_event("add", ["123@s.net", "456"], member_count=12)))

    assert update.participants == ("123@s.net", "456")
    assert transport.sent == [
        ("-100", "👋 Welcome to the group, @123!", ("123@s.net",)),
        ("-100", "👋 Welcome to the group, @456!", ("456",)),
    ]
    assert storage.members == {("-100", "123@s.net"): True, ("-100", "456"): True}
    assert storage.counts == {"-100": 12}
    assert storage.logs[0] == ("info", "New member joined group", {"group": "-100", "member": "123@s.net"})


def test_leaving_member_is_deactivated_without_reply() -> None:
    storage = FakeStorage()
    transport = FakeTransport()
    handler = GroupMembershipHandler(storage, transport)

    asyncio.run(handler.handle(_event("remove", ["456"])))

    assert transport.sent == []
    assert storage.members == {("-100", "456"): False}
    assert storage.counts == {}
    assert [text for _, text, _ in storage.logs] == ["Member left group"]


def test_welcome_can_be_disabled() -> None:
    storage = FakeStorage()
    transport = FakeTransport()
    handler = GroupMembershipHandler(storage, transport, GroupConfig(welcome_enabled=False))

    asyncio.run(handler.handle(_event("add", ["456"])))

    assert transport.sent == []
    assert storage.members == {("-100", "456"): True}


def test_failures_do_not_stop_other_members() -> None:
    storage = FakeStorage(fail_record=True)
    handler = GroupMembershipHandler(storage, FakeTransport(fail=True))

    update = asyncio.run(handler.handle(_event("add", ["1", "2"], member_count=3)))

    assert update is not None
    assert [context["member"] for _, _, context in storage.logs] == ["1", "2"]
    assert storage.counts == {"-100": 3}


def test_unusable_events_are_ignored() -> None:
    storage = FakeStorage()
    handler = GroupMembershipHandler(storage, FakeTransport())

    assert asyncio.run(handler.handle(_event("promote", ["1"]))) is None
    assert asyncio.run(handler.handle(_event("add", []))) is None
    assert asyncio.run(handler.handle(None)) is None
    assert storage.logs == []


def test_format_welcome_uses_bare_handle() -> None:
    assert format_welcome("789@s.net") == "👋 Welcome to the group, @789!"
