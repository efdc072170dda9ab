"""Public API for the ``statement_ingest`` package.

The three operations an outer layer (HTTP handler, job runner) calls:
:func:`process_import`, :func:`classify` and :func:`classify_batch`. State is
never hidden in module globals; callers build a pipeline (which owns the
classification service) once with :func:`build_pipeline` and pass it in.

DB-backed wiring lives here so that consumers of the pure pieces (parser,
matchers) never import SQLAlchemy.
"""

from __future__ import annotations

from collections.abc import Sequence

from .classification import Classifiable, ClassificationService
from .config import IngestSettings
from .importer import ImportPipeline
from .models import BatchRecord, ClassificationResult, ReportingPeriod


def build_pipeline(
    *,
    database_url: str | None = None,
    settings: IngestSettings | None = None,
) -> ImportPipeline:
    """Wire a store, a classification service and a pipeline for one database."""

    from .persistence import SqlAlchemyLedgerStore

    settings = settings or IngestSettings.from_env()
    store = SqlAlchemyLedgerStore(
        database_url=database_url, insert_chunk_size=settings.insert_chunk_size
    )
    service = ClassificationService(store, workers=settings.classify_workers)
    return ImportPipeline(store, service, settings=settings)


def process_import(
    file_bytes: bytes,
    account_id: int,
    period: ReportingPeriod,
    *,
    pipeline: ImportPipeline,
    uploaded_by: str | None = None,
) -> BatchRecord:
    """Import a statement file and return its batch. Idempotent per content."""

    return pipeline.process_import(file_bytes, account_id, period, uploaded_by=uploaded_by)


def classify(transaction: Classifiable, *, service: ClassificationService) -> ClassificationResult:
    return service.classify(transaction)


def classify_batch(
    transactions: Sequence[Classifiable], *, service: ClassificationService
) -> list[ClassificationResult]:
    return service.classify_batch(transactions)


__all__ = ["build_pipeline", "process_import", "classify", "classify_batch"]
