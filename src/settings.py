"""Static configuration for chatwarden.

All user-editable settings (limits, moderation, triggers, replies, logging)
live in a single JSON file for quick edits without touching Python. Secrets
stay in the environment (.env).
"""

from __future__ import annotations

from datetime import timedelta
import json
import os
from typing import Any

from dotenv import load_dotenv

from core.config import (
    CATEGORIES,
    SEVERITIES,
    DataCollectionConfig,
    GroupConfig,
    PipelineConfig,
    RateLimitConfig,
    SpamConfig,
    WindowLimits,
)
from core.errors import ConfigurationError
from core.models import TriggerRule
from core.rules_engine import build_rules

load_dotenv()

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

# The config file path can be overridden for multiple deployments.
CONFIG_PATH = os.getenv("CHATWARDEN_CONFIG", os.path.join(PROJECT_ROOT, "config.json"))


def _load_json_config(path: str) -> dict:
    """Load the JSON config; a missing file means all defaults."""

    if not os.path.exists(path):
        return {}

    with open(path, "r", encoding="utf-8") as handle:
        try:
            data = json.load(handle)
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"Invalid JSON in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config root must be an object: {path}")
    return data


def _positive_int(value: Any, name: str) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}") from exc
    if number <= 0:
        raise ConfigurationError(f"{name} must be positive, got {number}")
    return number


def _number(value: Any, name: str) -> float:
    if isinstance(value, bool):
        raise ConfigurationError(f"{name} must be a number, got {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{name} must be a number, got {value!r}") from exc


def _non_negative(value: Any, name: str) -> float:
    number = _number(value, name)
    if number < 0:
        raise ConfigurationError(f"{name} must not be negative, got {number}")
    return number


def parse_rate_limit_config(raw: dict) -> RateLimitConfig:
    """Build RateLimitConfig from the rate_limits section, filling defaults."""

    defaults = RateLimitConfig()
    limits = dict(defaults.limits)
    for category, entry in (raw.get("limits") or {}).items():
        if category not in CATEGORIES:
            raise ConfigurationError(f"Unknown rate limit category: {category}")
        base = limits[category]
        limits[category] = WindowLimits(
            per_minute=_positive_int(entry.get("per_minute", base.per_minute), f"{category}.per_minute"),
            per_hour=_positive_int(entry.get("per_hour", base.per_hour), f"{category}.per_hour"),
            per_day=_positive_int(entry.get("per_day", base.per_day), f"{category}.per_day"),
        )

    thresholds = dict(defaults.warning_thresholds)
    for category, value in (raw.get("warning_thresholds") or {}).items():
        if category not in CATEGORIES:
            raise ConfigurationError(f"Unknown warning threshold category: {category}")
        ratio = _number(value, f"warning_thresholds.{category}")
        if not 0 < ratio <= 1:
            raise ConfigurationError(f"warning_thresholds.{category} must be in (0, 1], got {ratio}")
        thresholds[category] = ratio

    durations = dict(defaults.block_durations)
    for severity, seconds in (raw.get("block_durations_seconds") or {}).items():
        if severity not in SEVERITIES:
            raise ConfigurationError(f"Unknown block severity: {severity}")
        durations[severity] = timedelta(seconds=_non_negative(seconds, f"block_durations_seconds.{severity}"))

    cooldown = raw.get("warning_cooldown_seconds")
    return RateLimitConfig(
        limits=limits,
        warning_thresholds=thresholds,
        block_durations=durations,
        warning_cooldown=(
            defaults.warning_cooldown
            if cooldown is None
            else timedelta(seconds=_non_negative(cooldown, "warning_cooldown_seconds"))
        ),
    )


def parse_spam_config(raw: dict) -> SpamConfig:
    defaults = SpamConfig()
    threshold = raw.get("spam_threshold", defaults.threshold)
    window_seconds = raw.get("spam_window_seconds", defaults.window.total_seconds())
    return SpamConfig(
        threshold=_positive_int(threshold, "spam_threshold"),
        window=timedelta(seconds=_positive_int(window_seconds, "spam_window_seconds")),
    )


def parse_data_collection(raw: dict) -> DataCollectionConfig:
    return DataCollectionConfig(
        collect_phone_numbers=bool(raw.get("collect_phone_numbers", False)),
        collect_urls=bool(raw.get("collect_urls", False)),
        collect_media=bool(raw.get("collect_media", False)),
    )


def parse_pipeline_config(raw: dict) -> PipelineConfig:
    defaults = PipelineConfig()
    sweep_seconds = raw.get("sweep_interval_seconds", defaults.sweep_interval.total_seconds())
    refresh_seconds = raw.get("trigger_refresh_seconds", defaults.trigger_refresh_interval.total_seconds())
    return PipelineConfig(
        queue_size=_positive_int(raw.get("queue_size", defaults.queue_size), "queue_size"),
        max_in_flight=_positive_int(raw.get("max_in_flight", defaults.max_in_flight), "max_in_flight"),
        sweep_interval=timedelta(seconds=_positive_int(sweep_seconds, "sweep_interval_seconds")),
        trigger_refresh_interval=timedelta(seconds=_positive_int(refresh_seconds, "trigger_refresh_seconds")),
        command_prefix=raw.get("command_prefix") or None,
    )


def parse_group_config(raw: dict) -> GroupConfig:
    return GroupConfig(welcome_enabled=bool(raw.get("welcome_enabled", True)))


def parse_triggers(raw_triggers: list) -> list[TriggerRule]:
    try:
        return build_rules(raw_triggers)
    except (KeyError, ValueError) as exc:
        raise ConfigurationError(f"Invalid trigger config: {exc}") from exc


_CONFIG = _load_json_config(CONFIG_PATH)

# Expose the raw config for modules that need structured access.
CONFIG = _CONFIG

_bot = _CONFIG.get("bot", {})
BOT_NAME = _bot.get("name", "chatwarden")
BOT_VERSION = _bot.get("version", "1.0.0")

# Where to store the SQLite database; DB_PATH in .env wins over config.json.
_db_path = os.getenv("DB_PATH") or _CONFIG.get("database", {}).get("path", "chatwarden.db")
DB_PATH = _db_path if os.path.isabs(_db_path) else os.path.join(PROJECT_ROOT, _db_path)

RATE_LIMITS = parse_rate_limit_config(_CONFIG.get("rate_limits", {}))
_moderation = dict(_CONFIG.get("moderation", {}))
if os.getenv("SPAM_THRESHOLD"):
    _moderation["spam_threshold"] = os.getenv("SPAM_THRESHOLD")
SPAM = parse_spam_config(_moderation)
DATA_COLLECTION = parse_data_collection(_CONFIG.get("data_collection", {}))
PIPELINE = parse_pipeline_config(_CONFIG.get("pipeline", {}))
GROUPS = parse_group_config(_CONFIG.get("groups", {}))

# Triggers in config.json seed the store; the store stays the source of truth.
TRIGGERS = parse_triggers(_CONFIG.get("triggers", []))

# Reply method switches transports without changing core logic.
_reply = _CONFIG.get("reply", {})
REPLY_METHOD = _reply.get("method", "account")

# Logging configuration (optional).
LOGGING = _CONFIG.get("logging", {})
