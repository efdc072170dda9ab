from __future__ import annotations

from decimal import Decimal

import pytest
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError

from db.client import session_scope
from db.models.ledger import ClassificationRule, ImportBatch, Transaction
from statement_ingest.classification import ClassificationService
from statement_ingest.config import IngestSettings
from statement_ingest.errors import BatchConflict, ImportRejected, PersistenceFailure
from statement_ingest.fingerprints import file_fingerprint, row_fingerprint
from statement_ingest.importer import ImportPipeline
from statement_ingest.models import (
    BatchStatus,
    ClassificationSource,
    FileEncoding,
    ImportState,
    ReportingPeriod,
)
from statement_ingest.parser import parse_statement
from statement_ingest.persistence import SqlAlchemyLedgerStore
from tests.helpers.db import seed_account, seed_rule, statement_csv

JAN = ReportingPeriod(month=1, year=2025)

ROWS = (
    ("03/01/2025", "Pagamento Padaria José", "(12,50)"),
    ("04/01/2025", "Transferência Banco Central", "1.000,00"),
    ("05/01/2025", "Mercado Central", "(230,10)"),
    ("06/01/2025", "Padaria Pão Quente", "(8,00)"),
    ("07/01/2025", "PIX Recebido Maria", "150,00"),
)


def _pipeline(url: str, **settings) -> ImportPipeline:
    store = SqlAlchemyLedgerStore(database_url=url)
    return ImportPipeline(
        store, ClassificationService(store), settings=IngestSettings(**settings)
    )


def _tx_count(url: str) -> int:
    with session_scope(database_url=url) as s:
        return s.scalar(select(func.count()).select_from(Transaction))


def _batch_count(url: str) -> int:
    with session_scope(database_url=url) as s:
        return s.scalar(select(func.count()).select_from(ImportBatch))


def test_import_persists_rows_and_classifies(db_url):
    account = seed_account(db_url)
    seed_rule(db_url, "padaria", "PADARIA", "Alimentação", priority=10)
    pipeline = _pipeline(db_url)

    report = pipeline.import_statement(statement_csv(*ROWS), account, JAN, uploaded_by="ana")

    assert report.state is ImportState.COMPLETED
    assert not report.reused
    assert (report.inserted, report.skipped_duplicates, report.classified) == (5, 0, 2)
    batch = report.batch
    assert batch.status is BatchStatus.COMPLETED
    assert batch.row_count == 5
    assert batch.period == JAN
    assert batch.uploaded_by == "ana"
    assert batch.encoding is FileEncoding.UTF8
    assert batch.file_fingerprint == file_fingerprint(statement_csv(*ROWS))

    txs = pipeline.store.list_transactions(batch.id)
    assert [t.descriptor for t in txs] == [
        "PAGAMENTO PADARIA JOSÉ",
        "TRANSFERÊNCIA BANCO CENTRAL",
        "MERCADO CENTRAL",
        "PADARIA PÃO QUENTE",
        "PIX RECEBIDO MARIA",
    ]
    assert txs[0].amount == Decimal("-12.50")
    assert txs[0].category == "Alimentação"
    assert txs[0].classification_source is ClassificationSource.RULE
    assert txs[0].rule_version == 1
    assert "PADARIA" in txs[0].rationale
    assert txs[1].classification_source is ClassificationSource.NONE
    assert txs[1].category is None
    assert txs[1].rationale == "no rule matched"

    summary = pipeline.store.batch_summary(batch.id)
    assert summary.total == 5
    assert summary.by_source == {ClassificationSource.RULE: 2, ClassificationSource.NONE: 3}
    assert summary.unclassified == 3


def test_reimport_of_identical_file_returns_same_batch(db_url):
    account = seed_account(db_url)
    pipeline = _pipeline(db_url)
    data = statement_csv(*ROWS)

    first = pipeline.import_statement(data, account, JAN)
    second = pipeline.import_statement(data, account, JAN)

    assert second.reused
    assert second.state is ImportState.EXISTING_BATCH_RETURNED
    assert second.batch.id == first.batch.id
    assert second.batch.row_count == 5
    assert second.inserted == 0
    assert _tx_count(db_url) == 5
    assert _batch_count(db_url) == 1


def test_same_file_in_another_period_or_account_is_a_new_batch(db_url):
    account = seed_account(db_url)
    other = seed_account(db_url, "Poupança")
    pipeline = _pipeline(db_url)
    data = statement_csv(*ROWS)

    a = pipeline.import_statement(data, account, JAN)
    b = pipeline.import_statement(data, account, ReportingPeriod(month=2, year=2025))
    c = pipeline.import_statement(data, other, JAN)

    assert len({a.batch.id, b.batch.id, c.batch.id}) == 3
    assert _tx_count(db_url) == 15


def test_repeated_rows_within_a_file_are_skipped(db_url):
    account = seed_account(db_url)
    pipeline = _pipeline(db_url)

    report = pipeline.import_statement(statement_csv(*ROWS, ROWS[0], ROWS[2]), account, JAN)

    assert (report.inserted, report.skipped_duplicates) == (5, 2)
    assert report.batch.row_count == 5
    assert _tx_count(db_url) == 5


def test_failed_batch_is_resumed_and_only_missing_rows_inserted(db_url):
    account = seed_account(db_url)
    store = SqlAlchemyLedgerStore(database_url=db_url)
    data = statement_csv(*ROWS)

    # Simulate an earlier attempt that committed two rows before failing.
    parsed = parse_statement(data.decode("utf-8"))
    batch = store.create_batch(
        account_id=account, fingerprint=file_fingerprint(data), period=JAN, row_count=5
    )
    store.insert_rows(batch.id, account, [(row_fingerprint(ok.row), ok.row) for ok in parsed[:2]])
    store.mark_batch_status(batch.id, BatchStatus.FAILED, "connection reset")

    pipeline = ImportPipeline(store, ClassificationService(store))
    report = pipeline.import_statement(data, account, JAN)

    assert report.batch.id == batch.id
    assert report.state is ImportState.COMPLETED
    assert (report.inserted, report.skipped_duplicates) == (3, 2)
    assert report.batch.status is BatchStatus.COMPLETED
    assert report.batch.row_count == 5
    assert report.batch.error_message is None
    assert _tx_count(db_url) == 5


def test_stale_failed_batch_completed_elsewhere_is_returned_untouched(db_url, monkeypatch):
    account = seed_account(db_url)
    store = SqlAlchemyLedgerStore(database_url=db_url)
    data = statement_csv(*ROWS)
    batch = store.create_batch(
        account_id=account, fingerprint=file_fingerprint(data), period=JAN, row_count=5
    )
    store.mark_batch_status(batch.id, BatchStatus.FAILED, "connection reset")
    stale = store.get_batch(batch.id)

    pipeline = ImportPipeline(store, ClassificationService(store))
    assert pipeline.import_statement(data, account, JAN).batch.status is BatchStatus.COMPLETED

    # A second upload read the batch while it was still FAILED.
    monkeypatch.setattr(store, "find_batch_by_fingerprint", lambda *a, **k: stale)
    monkeypatch.setattr(store, "find_row_fingerprints_in_batch", lambda batch_id: set())
    report = pipeline.import_statement(data, account, JAN)

    assert report.state is ImportState.EXISTING_BATCH_RETURNED
    assert report.reused
    assert report.batch.status is BatchStatus.COMPLETED
    assert store.get_batch(batch.id).status is BatchStatus.COMPLETED
    assert _tx_count(db_url) == 5


def test_completed_batch_status_cannot_be_changed(db_url):
    account = seed_account(db_url)
    pipeline = _pipeline(db_url)
    batch = pipeline.import_statement(statement_csv(*ROWS), account, JAN).batch
    store = pipeline.store

    assert not store.mark_batch_status(batch.id, BatchStatus.FAILED, "late failure")
    assert not store.claim_failed_batch(batch.id)
    current = store.get_batch(batch.id)
    assert current.status is BatchStatus.COMPLETED
    assert current.error_message is None


def test_rejected_file_stores_nothing(db_url):
    account = seed_account(db_url)
    pipeline = _pipeline(db_url)
    bad = statement_csv(ROWS[0], ("31/02/2025", "Loja", "1,00"), ("01/02/2025", "Loja", "x"))

    with pytest.raises(ImportRejected) as ei:
        pipeline.import_statement(bad, account, JAN)

    assert [(e.line_no, e.column) for e in ei.value.errors] == [(3, "date"), (4, "amount")]
    assert _batch_count(db_url) == 0
    assert _tx_count(db_url) == 0


def test_sub_cent_amount_rejects_the_file_instead_of_collapsing_rows(db_url):
    account = seed_account(db_url)
    pipeline = _pipeline(db_url)
    data = statement_csv(
        ("03/01/2025", "Tarifa", "1,01"), ("03/01/2025", "Tarifa", "1,005")
    )

    with pytest.raises(ImportRejected) as ei:
        pipeline.import_statement(data, account, JAN)

    assert [(e.line_no, e.column) for e in ei.value.errors] == [(3, "amount")]
    assert _tx_count(db_url) == 0


def test_rule_referenced_by_a_transaction_cannot_be_deleted(db_url):
    account = seed_account(db_url)
    rule = seed_rule(db_url, "padaria", "PADARIA", "Alimentação")
    _pipeline(db_url).import_statement(statement_csv(*ROWS), account, JAN)

    with pytest.raises(IntegrityError), session_scope(database_url=db_url) as s:
        s.execute(delete(ClassificationRule).where(ClassificationRule.id == rule.id))

    with session_scope(database_url=db_url) as s:
        assert s.get(ClassificationRule, rule.id) is not None


def test_insert_failure_marks_batch_failed_then_resume_completes(db_url, monkeypatch):
    account = seed_account(db_url)
    pipeline = _pipeline(db_url)
    data = statement_csv(*ROWS)
    store = pipeline.store

    original = store.insert_rows

    def _boom(*args, **kwargs):
        raise PersistenceFailure("disk full")

    monkeypatch.setattr(store, "insert_rows", _boom)
    with pytest.raises(PersistenceFailure) as ei:
        pipeline.import_statement(data, account, JAN)

    batch_id = ei.value.batch_id
    assert batch_id is not None
    failed = store.get_batch(batch_id)
    assert failed.status is BatchStatus.FAILED
    assert failed.error_message == "disk full"
    assert _tx_count(db_url) == 0

    monkeypatch.setattr(store, "insert_rows", original)
    report = pipeline.import_statement(data, account, JAN)
    assert report.batch.id == batch_id
    assert report.batch.status is BatchStatus.COMPLETED
    assert report.inserted == 5
    assert _batch_count(db_url) == 1


def test_classifier_error_marks_batch_failed_and_propagates(db_url, monkeypatch):
    account = seed_account(db_url)
    pipeline = _pipeline(db_url)

    def _explode(*args, **kwargs):
        raise RuntimeError("classifier crashed")

    monkeypatch.setattr(pipeline.classifier, "classify_batch", _explode)
    with pytest.raises(RuntimeError, match="classifier crashed"):
        pipeline.import_statement(statement_csv(*ROWS), account, JAN)

    data = statement_csv(*ROWS)
    batch = pipeline.store.find_batch_by_fingerprint(account, file_fingerprint(data), JAN)
    assert batch is not None
    assert batch.status is BatchStatus.FAILED
    assert batch.error_message == "classifier crashed"


def test_losing_a_batch_creation_race_returns_the_winner(db_url, monkeypatch):
    account = seed_account(db_url)
    pipeline = _pipeline(db_url)
    data = statement_csv(*ROWS)
    winner = pipeline.import_statement(data, account, JAN).batch

    # The loser saw no batch when it looked, then hit the unique key on insert.
    store = pipeline.store
    real_find = store.find_batch_by_fingerprint
    calls = {"n": 0}

    def _find(*args, **kwargs):
        calls["n"] += 1
        return None if calls["n"] == 1 else real_find(*args, **kwargs)

    monkeypatch.setattr(store, "find_batch_by_fingerprint", _find)
    report = pipeline.import_statement(data, account, JAN)

    assert report.reused
    assert report.state is ImportState.EXISTING_BATCH_RETURNED
    assert report.batch.id == winner.id
    assert _tx_count(db_url) == 5


def test_create_batch_conflict_is_reported_by_the_store(db_url):
    account = seed_account(db_url)
    store = SqlAlchemyLedgerStore(database_url=db_url)
    store.create_batch(account_id=account, fingerprint="a" * 64, period=JAN, row_count=0)
    with pytest.raises(BatchConflict):
        store.create_batch(account_id=account, fingerprint="a" * 64, period=JAN, row_count=0)


def test_unknown_account_is_a_persistence_failure(db_url):
    pipeline = _pipeline(db_url)
    with pytest.raises(PersistenceFailure):
        pipeline.import_statement(statement_csv(*ROWS), 999, JAN)
    assert _batch_count(db_url) == 0


def test_latin1_statement_is_decoded_and_recorded(db_url):
    account = seed_account(db_url)
    seed_rule(db_url, "padaria", "padaria jose", "Alimentação")
    pipeline = _pipeline(db_url)
    data = 'Data,Documento,Valor\n03/01/2025,Padaria José,"(9,90)"\n'.encode("latin-1")

    report = pipeline.import_statement(data, account, JAN)

    assert report.batch.encoding is FileEncoding.LATIN1
    (tx,) = pipeline.store.list_transactions(report.batch.id)
    assert tx.descriptor == "PADARIA JOSÉ"
    assert tx.category == "Alimentação"


def test_semicolon_settings_and_no_classify(db_url):
    account = seed_account(db_url)
    seed_rule(db_url, "padaria", "PADARIA", "Alimentação")
    pipeline = _pipeline(db_url, delimiter=";")
    data = "Data;Documento;Valor\n03/01/2025;Padaria;1.000,50\n".encode()

    report = pipeline.import_statement(data, account, JAN, classify=False)

    assert report.classified == 0
    (tx,) = pipeline.store.list_transactions(report.batch.id)
    assert tx.amount == Decimal("1000.50")
    assert tx.classification_source is ClassificationSource.NONE


def test_empty_statement_completes_with_zero_rows(db_url):
    account = seed_account(db_url)
    report = _pipeline(db_url).import_statement(b"Data,Documento,Valor\n", account, JAN)
    assert report.batch.status is BatchStatus.COMPLETED
    assert report.batch.row_count == 0


def test_reclassify_batch_picks_up_new_rules(db_url):
    account = seed_account(db_url)
    pipeline = _pipeline(db_url)
    batch = pipeline.import_statement(statement_csv(*ROWS), account, JAN).batch
    assert pipeline.store.batch_summary(batch.id).unclassified == 5

    seed_rule(db_url, "mercado", "MERCADO", "Mercado")
    summary = pipeline.reclassify_batch(batch.id)

    assert summary.by_source[ClassificationSource.RULE] == 1
    assert summary.unclassified == 4


def test_uploaded_periods_most_recent_first(db_url):
    account = seed_account(db_url)
    pipeline = _pipeline(db_url)
    data = statement_csv(*ROWS)
    for month in (1, 3, 2):
        pipeline.import_statement(data, account, ReportingPeriod(month=month, year=2025))
    periods = pipeline.store.uploaded_periods(account)
    assert [str(p) for p in periods] == ["2025-03", "2025-02", "2025-01"]
