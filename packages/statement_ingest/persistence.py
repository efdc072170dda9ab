# ruff: noqa: I001
"""SQLAlchemy-backed ledger store.

Implements the storage operations the import pipeline and the classification
service consume, against the ORM models in ``db.models.ledger``. Every method
runs in its own short transaction from ``db.client.session_scope`` so that a
failure while inserting rows can still be recorded on the batch afterwards.

Error mapping:
- ``IntegrityError`` while creating a batch -> ``BatchConflict`` (another
  upload with the same account/fingerprint/period won the race).
- Any other ``SQLAlchemyError`` -> ``PersistenceFailure``.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from db.client import session_scope
from db.models.ledger import Account, ClassificationRule, ImportBatch, Transaction

from .config import DEFAULT_INSERT_CHUNK
from .errors import BatchConflict, BatchNotFound, PersistenceFailure
from .logging_setup import get_logger
from .models import (
    AccountRecord,
    AccountStatus,
    BatchRecord,
    BatchStatus,
    BatchSummary,
    ClassificationResult,
    ClassificationSource,
    FileEncoding,
    MatcherKind,
    ReportingPeriod,
    RuleRecord,
    TransactionRecord,
    TransactionRow,
)

_logger = get_logger("statement_ingest.persistence")


# ---------------------------------------------------------------------------
# ORM -> record views
# ---------------------------------------------------------------------------


def account_to_record(a: Account) -> AccountRecord:
    return AccountRecord(
        id=a.id,
        name=a.name,
        bank_name=a.bank_name,
        account_number=a.account_number,
        status=AccountStatus(a.status),
    )


def batch_to_record(b: ImportBatch) -> BatchRecord:
    return BatchRecord(
        id=b.id,
        account_id=b.account_id,
        file_fingerprint=b.file_fingerprint,
        period=ReportingPeriod(month=b.period_month, year=b.period_year),
        row_count=b.row_count,
        status=BatchStatus(b.status),
        encoding=FileEncoding(b.encoding),
        error_message=b.error_message,
        uploaded_by=b.uploaded_by,
        created_at=b.created_at,
    )


def rule_to_record(r: ClassificationRule) -> RuleRecord:
    return RuleRecord(
        id=r.id,
        name=r.name,
        pattern=r.pattern,
        kind=MatcherKind(r.matcher_kind),
        category=r.category,
        priority=r.priority,
        enabled=bool(r.enabled),
        version=r.version,
        description=r.description,
    )


def transaction_to_record(t: Transaction) -> TransactionRecord:
    return TransactionRecord(
        id=t.id,
        batch_id=t.batch_id,
        account_id=t.account_id,
        date=t.date,
        descriptor=t.descriptor,
        amount=t.amount,
        currency=t.currency_code,
        category=t.category,
        classification_source=ClassificationSource(t.classification_source),
        rule_id=t.rule_id,
        rule_version=t.rule_version,
        rationale=t.rationale,
    )


def classification_values(result: ClassificationResult) -> dict[str, object]:
    """Column values that record ``result`` on a transaction row."""

    return {
        "category": result.category,
        "classification_source": result.source.value,
        "rule_id": result.rule_id,
        "rule_version": result.rule_version,
        "rationale": result.rationale,
        "classified_at": datetime.now(UTC),
    }


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class SqlAlchemyLedgerStore:
    """Ledger persistence bound to one database URL (``DATABASE_URL`` when None)."""

    def __init__(
        self,
        *,
        database_url: str | None = None,
        insert_chunk_size: int = DEFAULT_INSERT_CHUNK,
    ) -> None:
        if insert_chunk_size < 1:
            raise ValueError("insert_chunk_size must be a positive integer")
        self.database_url = database_url
        self.insert_chunk_size = insert_chunk_size

    @contextmanager
    def _session(self, op: str, *, batch_id: int | None = None) -> Iterator[Session]:
        try:
            with session_scope(database_url=self.database_url) as session:
                yield session
        except SQLAlchemyError as exc:
            _logger.error("Storage operation %s failed: %s", op, exc)
            raise PersistenceFailure(f"{op} failed: {exc}", batch_id=batch_id) from exc

    # -- accounts ----------------------------------------------------------

    def create_account(
        self,
        name: str,
        *,
        bank_name: str | None = None,
        account_number: str | None = None,
    ) -> AccountRecord:
        if not name or not name.strip():
            raise ValueError("account name must be non-empty")
        with self._session("create_account") as s:
            account = Account(name=name.strip(), bank_name=bank_name, account_number=account_number)
            s.add(account)
            s.flush()
            s.refresh(account)
            return account_to_record(account)

    def list_accounts(self) -> list[AccountRecord]:
        with self._session("list_accounts") as s:
            rows = s.scalars(select(Account).order_by(Account.id)).all()
            return [account_to_record(a) for a in rows]

    # -- batches -----------------------------------------------------------

    def find_batch_by_fingerprint(
        self, account_id: int, fingerprint: str, period: ReportingPeriod
    ) -> BatchRecord | None:
        with self._session("find_batch_by_fingerprint") as s:
            batch = s.scalars(
                select(ImportBatch).where(
                    ImportBatch.account_id == account_id,
                    ImportBatch.file_fingerprint == fingerprint,
                    ImportBatch.period_month == period.month,
                    ImportBatch.period_year == period.year,
                )
            ).one_or_none()
            return batch_to_record(batch) if batch is not None else None

    def get_batch(self, batch_id: int) -> BatchRecord:
        with self._session("get_batch", batch_id=batch_id) as s:
            batch = s.get(ImportBatch, batch_id)
            if batch is None:
                raise BatchNotFound(f"import batch {batch_id} does not exist")
            return batch_to_record(batch)

    def create_batch(
        self,
        *,
        account_id: int,
        fingerprint: str,
        period: ReportingPeriod,
        row_count: int,
        encoding: FileEncoding = FileEncoding.UTF8,
        uploaded_by: str | None = None,
    ) -> BatchRecord:
        """Insert a PENDING batch.

        Raises ``BatchConflict`` when the (account, fingerprint, period) key is
        already taken, and ``PersistenceFailure`` when the account is unknown.
        """

        with self._session("create_batch") as s:
            if s.get(Account, account_id) is None:
                raise PersistenceFailure(f"account {account_id} does not exist")
            batch = ImportBatch(
                account_id=account_id,
                file_fingerprint=fingerprint,
                period_month=period.month,
                period_year=period.year,
                row_count=row_count,
                encoding=encoding.value,
                status=BatchStatus.PENDING.value,
                uploaded_by=uploaded_by,
            )
            s.add(batch)
            try:
                s.flush()
            except IntegrityError as exc:
                raise BatchConflict(
                    f"batch for account {account_id} period {period} already exists"
                ) from exc
            s.refresh(batch)
            return batch_to_record(batch)

    def claim_failed_batch(self, batch_id: int) -> bool:
        """Move a FAILED batch back to PENDING; False if it is no longer FAILED.

        Of several uploads resuming the same batch, only one gets True.
        """

        stmt = (
            update(ImportBatch)
            .where(
                ImportBatch.id == batch_id,
                ImportBatch.status == BatchStatus.FAILED.value,
            )
            .values(status=BatchStatus.PENDING.value, error_message=None)
        )
        with self._session("claim_failed_batch", batch_id=batch_id) as s:
            return s.execute(stmt).rowcount == 1

    def mark_batch_status(
        self,
        batch_id: int,
        status: BatchStatus,
        error: str | None = None,
        *,
        row_count: int | None = None,
    ) -> bool:
        """Set a batch's status. A COMPLETED batch is left untouched (returns False)."""

        values: dict[str, object] = {"status": status.value, "error_message": error}
        if row_count is not None:
            values["row_count"] = row_count
        if status is BatchStatus.COMPLETED:
            values["completed_at"] = datetime.now(UTC)
        stmt = (
            update(ImportBatch)
            .where(
                ImportBatch.id == batch_id,
                ImportBatch.status != BatchStatus.COMPLETED.value,
            )
            .values(**values)
        )
        with self._session("mark_batch_status", batch_id=batch_id) as s:
            updated = s.execute(stmt).rowcount == 1
        if not updated:
            _logger.warning("Batch %s not moved to %s: completed or missing", batch_id, status)
        return updated

    def uploaded_periods(self, account_id: int | None = None) -> list[ReportingPeriod]:
        """Distinct periods with a batch, most recent first."""

        stmt = select(ImportBatch.period_year, ImportBatch.period_month).distinct()
        if account_id is not None:
            stmt = stmt.where(ImportBatch.account_id == account_id)
        stmt = stmt.order_by(ImportBatch.period_year.desc(), ImportBatch.period_month.desc())
        with self._session("uploaded_periods") as s:
            return [ReportingPeriod(month=m, year=y) for y, m in s.execute(stmt).all()]

    def batch_summary(self, batch_id: int) -> BatchSummary:
        with self._session("batch_summary", batch_id=batch_id) as s:
            batch = s.get(ImportBatch, batch_id)
            if batch is None:
                raise BatchNotFound(f"import batch {batch_id} does not exist")
            rows = s.execute(
                select(Transaction.classification_source, func.count())
                .where(Transaction.batch_id == batch_id)
                .group_by(Transaction.classification_source)
            ).all()
            by_source = {ClassificationSource(src): int(n) for src, n in rows}
            return BatchSummary(
                batch=batch_to_record(batch),
                total=sum(by_source.values()),
                by_source=by_source,
            )

    # -- transactions ------------------------------------------------------

    def find_row_fingerprints_in_batch(self, batch_id: int) -> set[str]:
        with self._session("find_row_fingerprints_in_batch", batch_id=batch_id) as s:
            return set(
                s.scalars(
                    select(Transaction.row_fingerprint).where(Transaction.batch_id == batch_id)
                ).all()
            )

    def insert_rows(
        self,
        batch_id: int,
        account_id: int,
        rows: Sequence[tuple[str, TransactionRow]],
    ) -> list[int]:
        """Insert ``(row_fingerprint, row)`` pairs unclassified; all or nothing.

        Returns the new transaction ids in input order.
        """

        ids: list[int] = []
        with self._session("insert_rows", batch_id=batch_id) as s:
            for start in range(0, len(rows), self.insert_chunk_size):
                chunk = [
                    Transaction(
                        account_id=account_id,
                        batch_id=batch_id,
                        row_fingerprint=fp,
                        date=row.date,
                        descriptor=row.descriptor,
                        descriptor_folded=row.descriptor_folded,
                        amount=row.amount,
                        currency_code=row.currency,
                        classification_source=ClassificationSource.NONE.value,
                    )
                    for fp, row in rows[start : start + self.insert_chunk_size]
                ]
                s.add_all(chunk)
                s.flush()
                ids.extend(t.id for t in chunk)
        return ids

    def list_transactions(
        self, batch_id: int, *, include_overridden: bool = True
    ) -> list[TransactionRecord]:
        stmt = select(Transaction).where(Transaction.batch_id == batch_id)
        if not include_overridden:
            stmt = stmt.where(
                Transaction.classification_source != ClassificationSource.OVERRIDE.value
            )
        with self._session("list_transactions", batch_id=batch_id) as s:
            return [transaction_to_record(t) for t in s.scalars(stmt.order_by(Transaction.id))]

    def list_unclassified(
        self, account_id: int | None = None, *, limit: int = 1000
    ) -> list[TransactionRecord]:
        stmt = select(Transaction).where(
            Transaction.classification_source == ClassificationSource.NONE.value
        )
        if account_id is not None:
            stmt = stmt.where(Transaction.account_id == account_id)
        stmt = stmt.order_by(Transaction.date.desc(), Transaction.id).limit(limit)
        with self._session("list_unclassified") as s:
            return [transaction_to_record(t) for t in s.scalars(stmt)]

    def apply_classifications(
        self,
        results: Mapping[int, ClassificationResult],
        *,
        batch_id: int | None = None,
    ) -> int:
        """Record classification outcomes keyed by transaction id.

        Manually overridden transactions are left untouched. Returns the number
        of rows updated.
        """

        updated = 0
        with self._session("apply_classifications", batch_id=batch_id) as s:
            for tx_id, result in results.items():
                res = s.execute(
                    update(Transaction)
                    .where(
                        Transaction.id == tx_id,
                        Transaction.classification_source
                        != ClassificationSource.OVERRIDE.value,
                    )
                    .values(**classification_values(result))
                )
                updated += res.rowcount or 0
        return updated

    # -- rules -------------------------------------------------------------

    def find_enabled_rules(self) -> list[RuleRecord]:
        """Enabled rules by descending priority, oldest first within a priority."""

        stmt = (
            select(ClassificationRule)
            .where(ClassificationRule.enabled.is_(True))
            .order_by(ClassificationRule.priority.desc(), ClassificationRule.id)
        )
        with self._session("find_enabled_rules") as s:
            return [rule_to_record(r) for r in s.scalars(stmt)]

    def find_rule_by_id(self, rule_id: int) -> RuleRecord | None:
        with self._session("find_rule_by_id") as s:
            rule = s.get(ClassificationRule, rule_id)
            return rule_to_record(rule) if rule is not None else None


__all__ = [
    "SqlAlchemyLedgerStore",
    "account_to_record",
    "batch_to_record",
    "rule_to_record",
    "transaction_to_record",
    "classification_values",
]
