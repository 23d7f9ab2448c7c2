from __future__ import annotations

from datetime import timedelta

import pytest

from core.config import WindowLimits
from core.errors import ConfigurationError
from settings import (
    parse_group_config,
    parse_pipeline_config,
    parse_rate_limit_config,
    parse_spam_config,
    parse_triggers,
)


def test_rate_limits_merge_over_defaults() -> None:
    config = parse_rate_limit_config({
        "limits": {"message": {"per_minute": 30}},
        "warning_thresholds": {"media": 0.5},
        "block_durations_seconds": {"soft": 60},
        "warning_cooldown_seconds": 10,
    })

    assert config.limits["message"] == WindowLimits(per_minute=30, per_hour=100, per_day=500)
    assert config.limits["command"].per_minute == 10
    assert config.warning_thresholds == {"message": 0.8, "media": 0.5, "command": 0.9}
    assert config.block_durations["soft"] == timedelta(seconds=60)
    assert config.block_durations["severe"] == timedelta(hours=2)
    assert config.warning_cooldown == timedelta(seconds=10)


def test_rate_limits_reject_bad_values() -> None:
    with pytest.raises(ConfigurationError):
        parse_rate_limit_config({"limits": {"voice": {"per_minute": 1}}})
    with pytest.raises(ConfigurationError):
        parse_rate_limit_config({"limits": {"message": {"per_minute": 0}}})
    with pytest.raises(ConfigurationError):
        parse_rate_limit_config({"warning_thresholds": {"message": 1.5}})


def test_spam_and_pipeline_defaults() -> None:
    spam = parse_spam_config({})
    pipeline = parse_pipeline_config({"command_prefix": "/"})

    assert spam.threshold == 5
    assert spam.window == timedelta(minutes=5)
    assert pipeline.queue_size == 1000
    assert pipeline.command_prefix == "/"
    assert parse_pipeline_config({}).command_prefix is None


def test_spam_threshold_accepts_env_style_strings() -> None:
    assert parse_spam_config({"spam_threshold": "8"}).threshold == 8
    with pytest.raises(ConfigurationError):
        parse_spam_config({"spam_threshold": "many"})


def test_triggers_are_validated() -> None:
    rules = parse_triggers([{"keyword": "help", "response": "Hi", "match_kind": "contains"}])
    assert rules[0].match_kind == "contains"

    with pytest.raises(ConfigurationError):
        parse_triggers([{"keyword": "help"}])
    with pytest.raises(ConfigurationError):
        parse_triggers([{"keyword": "help", "response": "Hi", "match_kind": "glob"}])


def test_malformed_numbers_raise_configuration_error() -> None:
    with pytest.raises(ConfigurationError):
        parse_rate_limit_config({"warning_thresholds": {"message": "high"}})
    with pytest.raises(ConfigurationError):
        parse_rate_limit_config({"warning_thresholds": {"message": None}})
    with pytest.raises(ConfigurationError):
        parse_rate_limit_config({"block_durations_seconds": {"soft": "long"}})
    with pytest.raises(ConfigurationError):
        parse_rate_limit_config({"block_durations_seconds": {"soft": -5}})
    with pytest.raises(ConfigurationError):
        parse_rate_limit_config({"warning_cooldown_seconds": [60]})
    with pytest.raises(ConfigurationError):
        parse_rate_limit_config({"warning_cooldown_seconds": True})


def test_trigger_refresh_and_group_sections() -> None:
    assert parse_pipeline_config({}).trigger_refresh_interval == timedelta(seconds=5)
    assert parse_pipeline_config({"trigger_refresh_seconds": 30}).trigger_refresh_interval == timedelta(seconds=30)
    with pytest.raises(ConfigurationError):
        parse_pipeline_config({"trigger_refresh_seconds": 0})

    assert parse_group_config({}).welcome_enabled
    assert not parse_group_config({"welcome_enabled": False}).welcome_enabled
