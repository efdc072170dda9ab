from __future__ import annotations

import logging
import threading
from datetime import date
from decimal import Decimal

import pytest

from statement_ingest.classification import ClassificationService
from statement_ingest.models import (
    NO_RULE_MATCHED,
    ClassificationResult,
    ClassificationSource,
    MatcherKind,
    RuleRecord,
    TransactionRow,
)
from statement_ingest.normalizers import fold_descriptor, normalize_descriptor


class _Rules:
    """In-memory rule source that counts loads."""

    def __init__(self, rules: list[RuleRecord]) -> None:
        self.rules = rules
        self.loads = 0

    def find_enabled_rules(self) -> list[RuleRecord]:
        self.loads += 1
        return [r for r in self.rules if r.enabled]


def _rule(
    rule_id, name, pattern, category, *, kind=MatcherKind.CONTAINS, priority=0, version=1
):
    return RuleRecord(
        id=rule_id,
        name=name,
        pattern=pattern,
        kind=kind,
        category=category,
        priority=priority,
        enabled=True,
        version=version,
    )


def _row(descriptor: str) -> TransactionRow:
    d = normalize_descriptor(descriptor)
    return TransactionRow(
        date=date(2025, 1, 3),
        raw_descriptor=descriptor,
        descriptor=d,
        descriptor_folded=fold_descriptor(d),
        amount=Decimal("-10.00"),
    )


PADARIA = _rule(1, "padaria", "PADARIA", "Alimentação", priority=10, version=3)


def test_rule_hit_carries_rule_identity_version_and_reason():
    svc = ClassificationService(_Rules([PADARIA]))
    res = svc.classify(_row("Pagamento Padaria José"))
    assert res.matched
    assert res.source is ClassificationSource.RULE
    assert res.category == "Alimentação"
    assert (res.rule_id, res.rule_name, res.rule_version) == (1, "padaria", 3)
    assert "PADARIA" in res.rationale


def test_miss_is_unclassified_with_fixed_rationale():
    svc = ClassificationService(_Rules([PADARIA]))
    res = svc.classify(_row("Transferência Banco Central"))
    assert not res.matched
    assert res.source is ClassificationSource.NONE
    assert res.rationale == NO_RULE_MATCHED
    assert res.rule_id is None and res.category is None


def test_plain_descriptor_strings_are_accepted():
    svc = ClassificationService(_Rules([PADARIA]))
    assert svc.classify("padaria do zé").matched


def test_bad_rule_is_skipped_and_logged(caplog):
    source = _Rules(
        [
            _rule(1, "broken", "(", "X", kind=MatcherKind.REGEX, priority=100),
            PADARIA,
        ]
    )
    svc = ClassificationService(source)
    with caplog.at_level(logging.WARNING, logger="statement_ingest"):
        svc.initialize()
    assert svc.skipped_rules == ("broken",)
    assert any("broken" in rec.getMessage() for rec in caplog.records)
    assert svc.stats().total_rules == 1
    assert svc.classify("PADARIA").rule_name == "padaria"


def test_lifecycle_initialize_reload_teardown():
    source = _Rules([PADARIA])
    svc = ClassificationService(source)
    assert not svc.is_initialized()
    assert svc.stats().total_rules == 0

    svc.initialize()
    svc.initialize()
    assert svc.is_initialized()
    assert source.loads == 1

    # Mutations are invisible until reload().
    source.rules = [PADARIA, _rule(2, "mercado", "MERCADO", "Mercado", priority=5)]
    assert not svc.classify("MERCADO CENTRAL").matched
    svc.reload()
    assert source.loads == 2
    assert svc.classify("MERCADO CENTRAL").category == "Mercado"

    svc.teardown()
    assert not svc.is_initialized()
    # classify() initializes lazily after teardown.
    assert svc.classify("MERCADO CENTRAL").matched
    assert source.loads == 3


def test_stats_lists_rules_in_evaluation_order():
    svc = ClassificationService(
        _Rules([_rule(1, "a", "A", "x", priority=1), _rule(2, "b", "B", "y", priority=9)])
    )
    svc.initialize()
    stats = svc.stats()
    assert stats.total_rules == 2
    assert stats.rules == [(2, "b", 9), (1, "a", 1)]


def test_explain_lists_every_matching_rule():
    svc = ClassificationService(
        _Rules(
            [
                PADARIA,
                _rule(
                    2, "pagamento", "^PAGAMENTO", "Pagamentos", kind=MatcherKind.REGEX, priority=20
                ),
            ]
        )
    )
    results = svc.explain("Pagamento Padaria José")
    assert [r.rule_name for r in results] == ["pagamento", "padaria"]
    assert svc.explain("nada") == []


@pytest.mark.parametrize("workers", [1, 4])
def test_classify_batch_preserves_order(workers):
    svc = ClassificationService(_Rules([PADARIA]), workers=workers)
    descriptors = ["Padaria Um", "Transferência", "PADARIA DOIS", "Mercado"] * 10
    results = svc.classify_batch([_row(d) for d in descriptors])
    assert len(results) == len(descriptors)
    assert [r.matched for r in results] == ["PADARIA" in fold_descriptor(d) for d in descriptors]


def test_reload_during_classification_uses_a_consistent_snapshot():
    source = _Rules([PADARIA])
    svc = ClassificationService(source, workers=4)
    svc.initialize()

    errors: list[BaseException] = []

    def _reloader() -> None:
        try:
            for i in range(20):
                source.rules = [
                    _rule(1, "padaria", "PADARIA", "Alimentação", priority=10, version=i + 1)
                ]
                svc.reload()
        except BaseException as exc:  # noqa: BLE001
            errors.append(exc)

    t = threading.Thread(target=_reloader)
    t.start()
    for _ in range(20):
        for res in svc.classify_batch(["PADARIA"] * 20):
            assert res.matched and res.rule_id == 1
    t.join()
    assert not errors


def test_result_invariants():
    with pytest.raises(ValueError):
        ClassificationResult(source=ClassificationSource.RULE, rationale="x")
    with pytest.raises(ValueError):
        ClassificationResult(source=ClassificationSource.OVERRIDE, rationale="x", rule_id=1)
    unc = ClassificationResult.unclassified()
    assert unc.source is ClassificationSource.NONE and not unc.matched
