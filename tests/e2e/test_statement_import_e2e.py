from __future__ import annotations

from decimal import Decimal
from pathlib import Path

from statement_ingest import api
from statement_ingest.config import IngestSettings
from statement_ingest.models import BatchStatus, ClassificationSource, MatcherKind, ReportingPeriod

from tests.helpers.db import bootstrap_sqlite_db, seed_account, seed_rule

_DATA = Path(__file__).resolve().parents[1] / "data"


def test_e2e_import_classify_and_reimport(tmp_path: Path):
    # -------------------------
    # DB bootstrap + rules
    # -------------------------
    db_url = bootstrap_sqlite_db(tmp_path / "ledger-e2e.db")
    account = seed_account(db_url)
    seed_rule(db_url, "padaria", "padaria", "Alimentação", priority=10)
    seed_rule(
        db_url, "mercado", r"\bsupermercado\b", "Mercado", kind=MatcherKind.REGEX, priority=10
    )
    seed_rule(db_url, "aluguel", r"^pix enviado", "Moradia", kind=MatcherKind.REGEX, priority=20)
    seed_rule(db_url, "pix", r"^pix\b", "Transferências", kind=MatcherKind.REGEX, priority=5)
    seed_rule(db_url, "uber", "UBER", "Transporte")
    seed_rule(db_url, "farmacia", "farmacia", "Saúde")
    seed_rule(db_url, "antigo", "rendimento", "Investimentos", enabled=False)

    # -------------------------
    # Execute the import (twice to assert idempotency)
    # -------------------------
    pipeline = api.build_pipeline(
        database_url=db_url, settings=IngestSettings(classify_workers=4)
    )
    data = (_DATA / "extrato_jan_2025.csv").read_bytes()
    period = ReportingPeriod(month=1, year=2025)

    first = api.process_import(data, account, period, pipeline=pipeline, uploaded_by="e2e")
    second = api.process_import(data, account, period, pipeline=pipeline, uploaded_by="e2e")

    assert second.id == first.id
    assert first.status is BatchStatus.COMPLETED
    assert second.row_count == 10

    # -------------------------
    # Expected outputs (descriptor -> category)
    # -------------------------
    expected = {
        "PAGAMENTO PADARIA JOSÉ": "Alimentação",
        "PIX RECEBIDO MARIA SOUZA": "Transferências",
        "SUPERMERCADO PÃO DE AÇÚCAR": "Mercado",
        "UBER *VIAGEM": "Transporte",
        "FARMÁCIA SÃO JOÃO": "Saúde",
        "TRANSFERÊNCIA BANCO CENTRAL": None,
        "PIX ENVIADO ALUGUEL": "Moradia",
        "PADARIA PÃO QUENTE": "Alimentação",
        "RENDIMENTO POUPANÇA": None,
    }

    txs = pipeline.store.list_transactions(first.id)
    assert len(txs) == 10
    assert {t.descriptor: t.category for t in txs} == expected
    assert sum(t.amount for t in txs) == Decimal("-2717.16")
    for t in txs:
        if t.category is None:
            assert t.classification_source is ClassificationSource.NONE
        else:
            assert t.classification_source is ClassificationSource.RULE
            assert t.rule_version == 1

    summary = pipeline.store.batch_summary(first.id)
    assert summary.by_source == {ClassificationSource.RULE: 8, ClassificationSource.NONE: 2}

    # -------------------------
    # Classification API agrees with what was stored
    # -------------------------
    service = pipeline.classifier
    assert service is not None
    results = api.classify_batch(txs, service=service)
    assert [r.category for r in results] == [t.category for t in txs]
    assert api.classify("Uber *Viagem", service=service).rule_name == "uber"
