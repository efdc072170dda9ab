"""Deduplicating import pipeline.

One call to :meth:`ImportPipeline.import_statement` walks these states::

    received -> parsing -> rejected
                        -> parsed -> deduplicating -> existing_batch_returned
                                                   -> committing -> completed | failed

- The whole-file fingerprint is checked first. A PENDING or COMPLETED batch
  with the same (account, fingerprint, period) is returned unchanged.
- The file is parsed all-or-nothing; any bad line raises ``ImportRejected``
  before anything is stored.
- Rows are fingerprinted over (date, descriptor, amount). Rows already in the
  batch, and repeats within the file, are skipped and counted.
- The batch is created PENDING, rows are inserted, classified and the batch is
  marked COMPLETED. A failure after the batch exists marks it FAILED with the
  error message and surfaces to the caller.
- Re-uploading a file whose batch is FAILED resumes that batch: rows it
  already holds are skipped and the rest are inserted. The batch is claimed
  with a FAILED -> PENDING conditional update, so of two uploads resuming it
  only one proceeds; the other returns the batch as it stands. A COMPLETED
  batch is never changed.

Two uploads racing for the same key are serialized by the unique constraint
on ``import_batches``; the loser gets ``BatchConflict`` from the store and
returns the winner's batch.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Protocol

from .classification import ClassificationService
from .config import IngestSettings
from .errors import BatchConflict, ImportRejected, PersistenceFailure
from .fingerprints import file_fingerprint, row_fingerprint
from .ingest.statement_csv import decode_statement
from .logging_setup import get_logger
from .models import (
    BatchRecord,
    BatchStatus,
    BatchSummary,
    ClassificationResult,
    ClassificationSource,
    FileEncoding,
    ImportReport,
    ImportState,
    ReportingPeriod,
    TransactionRecord,
    TransactionRow,
)
from .parser import DEFAULT_LAYOUT, ColumnLayout, parse_statement

_logger = get_logger("statement_ingest.importer")


class LedgerStore(Protocol):
    """Storage operations the pipeline depends on."""

    def find_batch_by_fingerprint(
        self, account_id: int, fingerprint: str, period: ReportingPeriod
    ) -> BatchRecord | None: ...

    def get_batch(self, batch_id: int) -> BatchRecord: ...

    def find_row_fingerprints_in_batch(self, batch_id: int) -> set[str]: ...

    def claim_failed_batch(self, batch_id: int) -> bool: ...

    def create_batch(
        self,
        *,
        account_id: int,
        fingerprint: str,
        period: ReportingPeriod,
        row_count: int,
        encoding: FileEncoding = ...,
        uploaded_by: str | None = ...,
    ) -> BatchRecord: ...

    def insert_rows(
        self, batch_id: int, account_id: int, rows: Sequence[tuple[str, TransactionRow]]
    ) -> list[int]: ...

    def mark_batch_status(
        self,
        batch_id: int,
        status: BatchStatus,
        error: str | None = ...,
        *,
        row_count: int | None = ...,
    ) -> bool: ...

    def list_transactions(
        self, batch_id: int, *, include_overridden: bool = ...
    ) -> list[TransactionRecord]: ...

    def apply_classifications(
        self, results: Mapping[int, ClassificationResult], *, batch_id: int | None = ...
    ) -> int: ...

    def batch_summary(self, batch_id: int) -> BatchSummary: ...


class ImportPipeline:
    def __init__(
        self,
        store: LedgerStore,
        classifier: ClassificationService | None = None,
        *,
        settings: IngestSettings | None = None,
        layout: ColumnLayout = DEFAULT_LAYOUT,
    ) -> None:
        self.store = store
        self.classifier = classifier
        self.settings = settings or IngestSettings()
        self.layout = layout

    def import_statement(
        self,
        data: bytes,
        account_id: int,
        period: ReportingPeriod,
        *,
        uploaded_by: str | None = None,
        classify: bool = True,
    ) -> ImportReport:
        """Import one statement file; safe to repeat with the same bytes."""

        state = ImportState.RECEIVED
        fingerprint = file_fingerprint(data)
        _logger.debug(
            "import %s: %s (account=%s period=%s)", fingerprint[:12], state, account_id, period
        )

        existing = self.store.find_batch_by_fingerprint(account_id, fingerprint, period)
        if existing is not None and existing.status is not BatchStatus.FAILED:
            _logger.info("Statement already imported as batch %s; returning it", existing.id)
            return ImportReport(
                batch=existing, state=ImportState.EXISTING_BATCH_RETURNED, reused=True
            )

        state = ImportState.PARSING
        _logger.debug("import %s: %s", fingerprint[:12], state)
        text, encoding = decode_statement(data)
        try:
            parsed = parse_statement(
                text,
                delimiter=self.settings.delimiter,
                has_header=self.settings.has_header,
                layout=self.layout,
                currency=self.settings.currency,
            )
        except ImportRejected as exc:
            _logger.warning(
                "import %s: %s with %d line error(s)",
                fingerprint[:12],
                ImportState.REJECTED,
                len(exc.errors),
            )
            raise

        state = ImportState.PARSED
        _logger.debug("import %s: %s (%d rows)", fingerprint[:12], state, len(parsed))

        state = ImportState.DEDUPLICATING
        _logger.debug("import %s: %s", fingerprint[:12], state)
        committed: set[str] = set()
        if existing is not None:
            if not self.store.claim_failed_batch(existing.id):
                current = self.store.get_batch(existing.id)
                _logger.info(
                    "Batch %s was resumed by another upload (%s); returning it",
                    current.id,
                    current.status,
                )
                return ImportReport(
                    batch=current, state=ImportState.EXISTING_BATCH_RETURNED, reused=True
                )
            _logger.info("Resuming failed batch %s", existing.id)
            try:
                committed = self.store.find_row_fingerprints_in_batch(existing.id)
            except Exception as exc:
                self._mark_failed(existing.id, exc)
                raise
        seen = set(committed)
        pending: list[tuple[str, TransactionRow]] = []
        skipped = 0
        for ok in parsed:
            fp = row_fingerprint(ok.row)
            if fp in seen:
                skipped += 1
                continue
            seen.add(fp)
            pending.append((fp, ok.row))
        if skipped:
            _logger.info("Skipped %d duplicate row(s)", skipped)

        state = ImportState.COMMITTING
        if existing is not None:
            batch = existing
        else:
            try:
                batch = self.store.create_batch(
                    account_id=account_id,
                    fingerprint=fingerprint,
                    period=period,
                    row_count=len(pending),
                    encoding=encoding,
                    uploaded_by=uploaded_by,
                )
            except BatchConflict:
                winner = self.store.find_batch_by_fingerprint(account_id, fingerprint, period)
                if winner is None:
                    raise PersistenceFailure(
                        "batch creation conflicted but no existing batch was found"
                    ) from None
                _logger.info("Concurrent import created batch %s first; returning it", winner.id)
                return ImportReport(
                    batch=winner, state=ImportState.EXISTING_BATCH_RETURNED, reused=True
                )

        _logger.debug("import %s: %s batch=%s", fingerprint[:12], state, batch.id)
        try:
            self.store.insert_rows(batch.id, account_id, pending)
            classified = self._classify_unclassified(batch.id) if classify else 0
            self.store.mark_batch_status(
                batch.id, BatchStatus.COMPLETED, row_count=len(committed) + len(pending)
            )
        except Exception as exc:
            self._mark_failed(batch.id, exc)
            if isinstance(exc, PersistenceFailure) and exc.batch_id is None:
                raise PersistenceFailure(str(exc), batch_id=batch.id) from exc
            raise

        _logger.info(
            "Imported batch %s: %d row(s) inserted, %d duplicate(s) skipped, %d classified",
            batch.id,
            len(pending),
            skipped,
            classified,
        )
        return ImportReport(
            batch=self.store.get_batch(batch.id),
            state=ImportState.COMPLETED,
            inserted=len(pending),
            skipped_duplicates=skipped,
            classified=classified,
        )

    def process_import(
        self,
        data: bytes,
        account_id: int,
        period: ReportingPeriod,
        *,
        uploaded_by: str | None = None,
    ) -> BatchRecord:
        return self.import_statement(data, account_id, period, uploaded_by=uploaded_by).batch

    def reclassify_batch(self, batch_id: int) -> BatchSummary:
        """Reload rules and re-run classification on a batch's non-overridden rows."""

        classifier = self._require_classifier()
        classifier.reload()
        records = self.store.list_transactions(batch_id, include_overridden=False)
        self._apply(batch_id, records)
        return self.store.batch_summary(batch_id)

    # -- internals ---------------------------------------------------------

    def _require_classifier(self) -> ClassificationService:
        if self.classifier is None:
            raise RuntimeError("ImportPipeline was built without a ClassificationService")
        return self.classifier

    def _classify_unclassified(self, batch_id: int) -> int:
        if self.classifier is None:
            return 0
        records = [
            r
            for r in self.store.list_transactions(batch_id, include_overridden=False)
            if r.classification_source is ClassificationSource.NONE
        ]
        return self._apply(batch_id, records)

    def _apply(self, batch_id: int, records: Sequence[TransactionRecord]) -> int:
        classifier = self._require_classifier()
        if not records:
            return 0
        results = classifier.classify_batch(records, workers=self.settings.classify_workers)
        self.store.apply_classifications(
            {r.id: res for r, res in zip(records, results, strict=True)}, batch_id=batch_id
        )
        return sum(1 for res in results if res.matched)

    def _mark_failed(self, batch_id: int, exc: Exception) -> None:
        _logger.error("import batch %s: %s: %s", batch_id, ImportState.FAILED, exc)
        try:
            self.store.mark_batch_status(
                batch_id, BatchStatus.FAILED, str(exc) or type(exc).__name__
            )
        except PersistenceFailure as mark_exc:
            _logger.error("Could not mark batch %s as failed: %s", batch_id, mark_exc)


__all__ = ["ImportPipeline", "LedgerStore"]
