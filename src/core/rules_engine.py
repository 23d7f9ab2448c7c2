"""Trigger compilation and matching logic (core domain)."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import re
import threading
from typing import Iterable, List, Optional

from core.errors import DuplicateKeyword, NotFound
from core.models import MATCH_KINDS, NormalizedMessage, TriggerRule

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class _CompiledRule:
    """Rule plus its precomputed matching form."""

    rule: TriggerRule
    needle: str
    pattern: Optional[re.Pattern]
    error: Optional[str]


def _compile(rule: TriggerRule) -> _CompiledRule:
    needle = rule.keyword if rule.case_sensitive else rule.keyword.casefold()
    if rule.match_kind != "regex":
        return _CompiledRule(rule=rule, needle=needle, pattern=None, error=None)
    flags = 0 if rule.case_sensitive else re.IGNORECASE
    try:
        pattern = re.compile(rule.keyword, flags)
    except re.error as exc:
        LOGGER.warning("Trigger %r has an invalid regex and will never match: %s", rule.keyword, exc)
        return _CompiledRule(rule=rule, needle=needle, pattern=None, error=str(exc))
    return _CompiledRule(rule=rule, needle=needle, pattern=pattern, error=None)


def build_rules(rules_config: Iterable[dict]) -> List[TriggerRule]:
    """Normalize trigger configs into TriggerRule values.

    Missing optional fields fall back to an active, case-insensitive exact
    match so config files can stay terse.
    """

    rules: List[TriggerRule] = []
    for entry in rules_config:
        match_kind = entry.get("match_kind", "exact")
        if match_kind not in MATCH_KINDS:
            raise ValueError(f"Unsupported match_kind: {match_kind}")
        rules.append(
            TriggerRule(
                keyword=entry["keyword"],
                response=entry["response"],
                match_kind=match_kind,
                case_sensitive=bool(entry.get("case_sensitive", False)),
                active=bool(entry.get("active", True)),
            )
        )
    return rules


def _matches(compiled: _CompiledRule, text: str, folded: str) -> bool:
    kind = compiled.rule.match_kind
    haystack = text if compiled.rule.case_sensitive else folded
    if kind == "exact":
        return haystack == compiled.needle
    if kind == "contains":
        return compiled.needle in haystack
    if compiled.pattern is None:
        return False
    return compiled.pattern.search(text) is not None


class TriggerEngine:
    """Ordered, copy-on-write collection of active trigger rules.

    Readers grab the current snapshot tuple without locking; writers build a
    new tuple under a lock and swap it in, so a reload never blocks matching.
    """

    def __init__(self, rules: Iterable[TriggerRule] = ()) -> None:
        self._write_lock = threading.Lock()
        self._snapshot: tuple[_CompiledRule, ...] = ()
        self.load(rules)

    def load(self, rules: Iterable[TriggerRule]) -> None:
        """Atomically replace the snapshot with the active rules given."""

        compiled = tuple(_compile(rule) for rule in rules if rule.active)
        with self._write_lock:
            self._snapshot = compiled
        LOGGER.info("%s triggers are loaded", len(compiled))

    def rules(self) -> tuple[TriggerRule, ...]:
        return tuple(item.rule for item in self._snapshot)

    def __len__(self) -> int:
        return len(self._snapshot)

    def add(
        self,
        keyword: str,
        response: str,
        match_kind: str = "exact",
        case_sensitive: bool = False,
    ) -> TriggerRule:
        """Append a new active rule; raises DuplicateKeyword if taken."""

        if match_kind not in MATCH_KINDS:
            raise ValueError(f"Unsupported match_kind: {match_kind}")
        rule = TriggerRule(
            keyword=keyword,
            response=response,
            match_kind=match_kind,
            case_sensitive=case_sensitive,
        )
        with self._write_lock:
            if any(item.rule.keyword == keyword for item in self._snapshot):
                raise DuplicateKeyword(keyword)
            self._snapshot = self._snapshot + (_compile(rule),)
        return rule

    def remove(self, keyword: str) -> TriggerRule:
        """Drop the rule with this keyword; raises NotFound if absent."""

        with self._write_lock:
            remaining = tuple(item for item in self._snapshot if item.rule.keyword != keyword)
            if len(remaining) == len(self._snapshot):
                raise NotFound(keyword)
            removed = next(item.rule for item in self._snapshot if item.rule.keyword == keyword)
            self._snapshot = remaining
        return removed

    def match(self, message: NormalizedMessage) -> List[TriggerRule]:
        """Return every rule that fires for the message, in snapshot order."""

        return match_rules(message.text, self._snapshot)


def match_rules(text: str, compiled_rules: Iterable[_CompiledRule]) -> List[TriggerRule]:
    """Evaluate compiled rules against text.

    Matching logic:
    - Empty text never matches.
    - exact / contains compare case-folded text unless the rule is case sensitive.
    - regex uses search() on the original text; invalid patterns are skipped.
    """

    if not text:
        return []

    folded = text.casefold()
    fired: List[TriggerRule] = []
    for compiled in compiled_rules:
        if _matches(compiled, text, folded):
            fired.append(compiled.rule)
    return fired
