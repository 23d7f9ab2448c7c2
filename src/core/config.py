"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional

CATEGORIES = ("message", "media", "command")
WINDOWS = ("minute", "hour", "day")
SEVERITIES = ("warning", "soft", "hard", "severe")

WINDOW_SPANS = {
    "minute": timedelta(minutes=1),
    "hour": timedelta(hours=1),
    "day": timedelta(days=1),
}

# Activity older than the longest window is never needed again.
RETENTION = WINDOW_SPANS["day"]


@dataclass(frozen=True)
class WindowLimits:
    """Maximum actions allowed per minute, hour and day."""

    per_minute: int
    per_hour: int
    per_day: int

    def for_window(self, window: str) -> int:
        if window == "minute":
            return self.per_minute
        if window == "hour":
            return self.per_hour
        if window == "day":
            return self.per_day
        raise ValueError(f"Unsupported window: {window}")


def _default_limits() -> dict[str, WindowLimits]:
    return {
        "message": WindowLimits(per_minute=20, per_hour=100, per_day=500),
        "media": WindowLimits(per_minute=5, per_hour=30, per_day=100),
        "command": WindowLimits(per_minute=10, per_hour=50, per_day=200),
    }


def _default_thresholds() -> dict[str, float]:
    return {"message": 0.8, "media": 0.7, "command": 0.9}


def _default_block_durations() -> dict[str, timedelta]:
    return {
        "warning": timedelta(0),
        "soft": timedelta(minutes=5),
        "hard": timedelta(minutes=30),
        "severe": timedelta(hours=2),
    }


@dataclass(frozen=True)
class RateLimitConfig:
    """Per-category limits, warning thresholds and block durations."""

    limits: dict[str, WindowLimits] = field(default_factory=_default_limits)
    warning_thresholds: dict[str, float] = field(default_factory=_default_thresholds)
    block_durations: dict[str, timedelta] = field(default_factory=_default_block_durations)
    warning_cooldown: timedelta = timedelta(minutes=5)


@dataclass(frozen=True)
class SpamConfig:
    """Category-agnostic burst detection settings."""

    threshold: int = 5
    window: timedelta = timedelta(minutes=5)


@dataclass(frozen=True)
class DataCollectionConfig:
    """Which data points the pipeline extracts from message content."""

    collect_phone_numbers: bool = False
    collect_urls: bool = False
    collect_media: bool = False

    @property
    def enabled(self) -> bool:
        return self.collect_phone_numbers or self.collect_urls or self.collect_media


@dataclass(frozen=True)
class PipelineConfig:
    """Channel sizing, concurrency and housekeeping for the running pipeline."""

    queue_size: int = 1000
    max_in_flight: int = 8
    sweep_interval: timedelta = timedelta(minutes=10)
    # How often the running bot checks the store for trigger changes.
    trigger_refresh_interval: timedelta = timedelta(seconds=5)
    # Texts starting with this prefix are admitted as commands. None disables it.
    command_prefix: Optional[str] = None


@dataclass(frozen=True)
class GroupConfig:
    """Reactions to members joining or leaving group conversations."""

    welcome_enabled: bool = True
