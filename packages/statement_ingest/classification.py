"""Rule-based classification with an explicit, swappable rule cache.

``ClassificationService`` loads every enabled rule from a ``RuleSource`` into a
``RuleSet`` and classifies descriptors against it.

Lifecycle
---------
- ``initialize()`` loads the cache once (later calls are no-ops).
- ``reload()`` builds a fresh cache from the current rules and swaps it in.
  Callers invoke it after rule mutations; there is no automatic invalidation.
- ``teardown()`` drops the cache. The next ``classify`` initializes again.

Concurrency
-----------
The cache is an immutable snapshot (rule set plus the rule records it was
built from). Readers take one reference to it per call, so a concurrent
``reload()`` never changes the rules in the middle of a classification.
Writers are serialized with a lock.

A rule whose pattern cannot be compiled is logged and skipped at load time;
the remaining rules still load.
"""

from __future__ import annotations

import threading
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Protocol

from .errors import RuleConstructionError
from .logging_setup import get_logger
from .matching import RuleMatch, RuleSet
from .models import ClassificationResult, ClassificationSource, RuleRecord
from .pmap import p_map

_logger = get_logger("statement_ingest.classification")


class RuleSource(Protocol):
    def find_enabled_rules(self) -> Sequence[RuleRecord]: ...


class HasDescriptor(Protocol):
    @property
    def descriptor(self) -> str: ...


type Classifiable = HasDescriptor | str


@dataclass(frozen=True, slots=True)
class _RuleCache:
    rule_set: RuleSet
    rules_by_id: Mapping[int, RuleRecord]


@dataclass(frozen=True, slots=True)
class RuleStats:
    total_rules: int
    rules: list[tuple[int, str, int]]


def _descriptor_of(item: Classifiable) -> str:
    return item if isinstance(item, str) else item.descriptor


class ClassificationService:
    """Classify transactions against the enabled rules of ``source``."""

    def __init__(self, source: RuleSource, *, workers: int = 1) -> None:
        if workers < 1:
            raise ValueError("workers must be a positive integer")
        self._source = source
        self._workers = workers
        self._cache: _RuleCache | None = None
        self._write_lock = threading.Lock()
        self._skipped: tuple[str, ...] = ()

    # -- lifecycle ---------------------------------------------------------

    def initialize(self) -> None:
        with self._write_lock:
            if self._cache is None:
                self._cache = self._load()

    def reload(self) -> None:
        with self._write_lock:
            self._cache = self._load()

    def teardown(self) -> None:
        with self._write_lock:
            self._cache = None
            self._skipped = ()

    def is_initialized(self) -> bool:
        return self._cache is not None

    @property
    def skipped_rules(self) -> tuple[str, ...]:
        """Names of rules left out of the current cache because they failed to build."""

        return self._skipped

    def _load(self) -> _RuleCache:
        rule_set = RuleSet()
        rules_by_id: dict[int, RuleRecord] = {}
        skipped: list[str] = []
        for rule in self._source.find_enabled_rules():
            try:
                rule_set.add_rule(rule.id, rule.name, rule.pattern, rule.kind, rule.priority)
            except RuleConstructionError as exc:
                _logger.warning("Skipping rule id=%s name=%r: %s", rule.id, rule.name, exc.cause)
                skipped.append(rule.name)
                continue
            rules_by_id[rule.id] = rule
        self._skipped = tuple(skipped)
        _logger.info("Loaded %d classification rule(s) (%d skipped)", len(rule_set), len(skipped))
        return _RuleCache(rule_set=rule_set, rules_by_id=rules_by_id)

    def _snapshot(self) -> _RuleCache:
        cache = self._cache
        if cache is None:
            self.initialize()
            cache = self._cache
            assert cache is not None  # set by initialize()
        return cache

    # -- classification ----------------------------------------------------

    @staticmethod
    def _result_for(cache: _RuleCache, match: RuleMatch) -> ClassificationResult:
        rule = cache.rules_by_id[match.rule_id]
        return ClassificationResult(
            source=ClassificationSource.RULE,
            rationale=match.reason,
            category=rule.category,
            rule_id=rule.id,
            rule_name=rule.name,
            rule_version=rule.version,
        )

    def classify(self, item: Classifiable) -> ClassificationResult:
        """Classify one transaction (or bare descriptor) by the best-priority rule."""

        cache = self._snapshot()
        match = cache.rule_set.find_best_match(_descriptor_of(item))
        if match is None:
            return ClassificationResult.unclassified()
        return self._result_for(cache, match)

    def classify_batch(
        self,
        items: Sequence[Classifiable],
        *,
        workers: int | None = None,
    ) -> list[ClassificationResult]:
        """Classify each item independently; output order mirrors input order."""

        cache = self._snapshot()

        def _one(item: Classifiable) -> ClassificationResult:
            match = cache.rule_set.find_best_match(_descriptor_of(item))
            if match is None:
                return ClassificationResult.unclassified()
            return self._result_for(cache, match)

        return p_map(items, _one, concurrency=workers or self._workers)

    # -- diagnostics -------------------------------------------------------

    def explain(self, item: Classifiable) -> list[ClassificationResult]:
        """Every rule that matches, in evaluation order. The first one wins."""

        cache = self._snapshot()
        return [
            self._result_for(cache, m)
            for m in cache.rule_set.find_all_matches(_descriptor_of(item))
        ]

    def stats(self) -> RuleStats:
        cache = self._cache
        if cache is None:
            return RuleStats(total_rules=0, rules=[])
        return RuleStats(total_rules=len(cache.rule_set), rules=cache.rule_set.rules())


__all__ = ["ClassificationService", "RuleSource", "RuleStats", "Classifiable"]
