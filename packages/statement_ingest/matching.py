"""Document and rule-set matchers.

A document matcher tests one descriptor against one pattern. There are exactly
two kinds, each a frozen dataclass carrying its own precomputed state:

- ``ContainsMatcher``: the pattern is fold-normalized once (diacritics removed,
  upper-cased); a descriptor matches when its folded form contains it.
- ``RegexMatcher``: the pattern has its diacritics removed and is compiled once
  with ``re.IGNORECASE``; it is searched in the folded descriptor. Invalid
  expressions fail at construction (``InvalidPattern``), never at match time.

Both reject blank patterns (``EmptyPattern``) and never match a blank
descriptor.

``RuleSet`` keeps rules ordered by ``(priority desc, insertion sequence asc)``
so the first-added rule wins a priority tie. It is not synchronized; the
classification service builds a fresh set and swaps it in on reload instead of
mutating a shared one.
"""

from __future__ import annotations

import bisect
import itertools
import re
from collections.abc import Iterator
from dataclasses import dataclass
from typing import ClassVar

from .errors import EmptyPattern, InvalidPattern, PatternError, RuleConstructionError
from .models import MatcherKind
from .normalizers import fold_descriptor, strip_diacritics

_WHITESPACE_RE = re.compile(r"\s+")


@dataclass(frozen=True, slots=True)
class MatchResult:
    matched: bool
    reason: str

    def __bool__(self) -> bool:
        return self.matched


_EMPTY_DESCRIPTOR = MatchResult(False, "empty descriptor")


def _require_pattern(pattern: str) -> str:
    if pattern is None or not pattern.strip():
        raise EmptyPattern("pattern must be non-empty")
    return pattern


@dataclass(frozen=True, slots=True)
class ContainsMatcher:
    kind: ClassVar[MatcherKind] = MatcherKind.CONTAINS

    pattern: str
    folded: str

    @classmethod
    def from_pattern(cls, pattern: str) -> ContainsMatcher:
        _require_pattern(pattern)
        # Runs collapse like stored descriptors; edge spaces stay and act as word boundaries.
        return cls(pattern=pattern, folded=fold_descriptor(_WHITESPACE_RE.sub(" ", pattern)))

    def match(self, descriptor: str) -> MatchResult:
        if not descriptor or not descriptor.strip():
            return _EMPTY_DESCRIPTOR
        if self.folded in fold_descriptor(descriptor):
            return MatchResult(True, f'contains "{self.pattern}"')
        return MatchResult(False, f'does not contain "{self.pattern}"')


@dataclass(frozen=True, slots=True)
class RegexMatcher:
    kind: ClassVar[MatcherKind] = MatcherKind.REGEX

    pattern: str
    compiled: re.Pattern[str]

    @classmethod
    def from_pattern(cls, pattern: str) -> RegexMatcher:
        _require_pattern(pattern)
        try:
            compiled = re.compile(strip_diacritics(pattern), re.IGNORECASE)
        except re.error as exc:
            raise InvalidPattern(f"invalid regex pattern {pattern!r}: {exc}") from exc
        return cls(pattern=pattern, compiled=compiled)

    def match(self, descriptor: str) -> MatchResult:
        if not descriptor or not descriptor.strip():
            return _EMPTY_DESCRIPTOR
        if self.compiled.search(fold_descriptor(descriptor)) is not None:
            return MatchResult(True, f"matches /{self.pattern}/")
        return MatchResult(False, f"does not match /{self.pattern}/")


type DocumentMatcher = ContainsMatcher | RegexMatcher


def build_matcher(pattern: str, kind: MatcherKind | str) -> DocumentMatcher:
    """Construct the matcher for ``kind``; raises ``PatternError`` subclasses."""

    match MatcherKind(kind):
        case MatcherKind.CONTAINS:
            return ContainsMatcher.from_pattern(pattern)
        case MatcherKind.REGEX:
            return RegexMatcher.from_pattern(pattern)


# ---------------------------------------------------------------------------
# Rule set
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class RuleEntry:
    rule_id: int
    name: str
    matcher: DocumentMatcher
    priority: int
    seq: int


@dataclass(frozen=True, slots=True)
class RuleMatch:
    rule_id: int
    rule_name: str
    priority: int
    reason: str


def _order_key(entry: RuleEntry) -> tuple[int, int]:
    return (-entry.priority, entry.seq)


class RuleSet:
    """Priority-ordered collection of named matchers."""

    def __init__(self) -> None:
        self._entries: list[RuleEntry] = []
        self._seq: Iterator[int] = itertools.count()

    def add_rule(
        self,
        rule_id: int,
        name: str,
        pattern: str,
        kind: MatcherKind | str,
        priority: int = 0,
    ) -> RuleEntry:
        """Build the rule's matcher and insert it in priority order.

        Raises ``RuleConstructionError`` naming the rule when the pattern is
        rejected; the set is unchanged in that case.
        """

        try:
            matcher = build_matcher(pattern, kind)
        except PatternError as exc:
            raise RuleConstructionError(name, exc) from exc
        entry = RuleEntry(
            rule_id=rule_id,
            name=name,
            matcher=matcher,
            priority=priority,
            seq=next(self._seq),
        )
        bisect.insort(self._entries, entry, key=_order_key)
        return entry

    def find_best_match(self, descriptor: str) -> RuleMatch | None:
        for entry in self._entries:
            result = entry.matcher.match(descriptor)
            if result.matched:
                return RuleMatch(entry.rule_id, entry.name, entry.priority, result.reason)
        return None

    def find_all_matches(self, descriptor: str) -> list[RuleMatch]:
        out: list[RuleMatch] = []
        for entry in self._entries:
            result = entry.matcher.match(descriptor)
            if result.matched:
                out.append(RuleMatch(entry.rule_id, entry.name, entry.priority, result.reason))
        return out

    def has_match(self, descriptor: str) -> bool:
        return any(e.matcher.match(descriptor).matched for e in self._entries)

    def rules(self) -> list[tuple[int, str, int]]:
        """``(rule_id, name, priority)`` in evaluation order."""

        return [(e.rule_id, e.name, e.priority) for e in self._entries]

    def clear(self) -> None:
        self._entries = []

    def __len__(self) -> int:
        return len(self._entries)


__all__ = [
    "MatchResult",
    "ContainsMatcher",
    "RegexMatcher",
    "DocumentMatcher",
    "build_matcher",
    "RuleEntry",
    "RuleMatch",
    "RuleSet",
]
