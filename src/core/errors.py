"""Error taxonomy shared by the core and adapters."""

from __future__ import annotations


class ChatWardenError(Exception):
    """Base class for all chatwarden errors."""


class TransientIOError(ChatWardenError):
    """A persistence or send call failed; the pipeline logs it and moves on."""


class ConfigurationError(ChatWardenError):
    """Invalid configuration: a malformed config section or trigger entry."""


class TriggerError(ChatWardenError):
    """Trigger CRUD failure surfaced to the caller."""

    def __init__(self, keyword: str, message: str) -> None:
        super().__init__(message)
        self.keyword = keyword


class DuplicateKeyword(TriggerError):
    def __init__(self, keyword: str) -> None:
        super().__init__(keyword, f"Trigger already exists: {keyword!r}")


class NotFound(TriggerError):
    def __init__(self, keyword: str) -> None:
        super().__init__(keyword, f"Trigger not found: {keyword!r}")
