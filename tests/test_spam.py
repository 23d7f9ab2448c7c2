from __future__ import annotations

from datetime import datetime, timedelta, timezone

from core.config import SpamConfig
from core.spam import SpamDetector


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def test_sixth_message_in_window_is_flagged() -> None:
    clock = FakeClock()
    detector = SpamDetector(clock=clock)

    verdicts = []
    for _ in range(6):
        verdicts.append(detector.observe("alice"))
        clock.advance(seconds=10)

    assert [v.flagged for v in verdicts] == [False] * 5 + [True]
    assert verdicts[-1].count == 6
    assert verdicts[-1].threshold == 5


def test_messages_outside_window_are_forgotten() -> None:
    clock = FakeClock()
    detector = SpamDetector(SpamConfig(threshold=2, window=timedelta(minutes=1)), clock=clock)

    detector.observe("bob")
    detector.observe("bob")
    clock.advance(minutes=1)

    verdict = detector.observe("bob")
    assert not verdict.flagged
    assert verdict.count == 1


def test_senders_are_counted_separately() -> None:
    detector = SpamDetector(SpamConfig(threshold=1), clock=FakeClock())

    detector.observe("a")
    assert not detector.observe("b").flagged
    assert detector.observe("a").flagged


def test_prune_and_clear() -> None:
    clock = FakeClock()
    detector = SpamDetector(clock=clock)
    detector.observe("idle")
    clock.advance(minutes=4)
    detector.observe("busy")
    clock.advance(minutes=2)

    assert detector.prune() == 1
    assert detector.recent_count("busy") == 1

    detector.clear_sender("busy")
    assert detector.recent_count("busy") == 0
