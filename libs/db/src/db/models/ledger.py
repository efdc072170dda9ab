from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    CHAR,
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import expression as sa_expr

# SQLite only autoincrements INTEGER PRIMARY KEY columns.
_PK = BigInteger().with_variant(Integer, "sqlite")


class Base(DeclarativeBase):
    pass


# ---------------------------
# Reference: accounts
# ---------------------------


class Account(Base):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    bank_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    account_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, server_default=text("'ACTIVE'")
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )

    __table_args__ = (
        CheckConstraint("length(trim(name)) > 0", name="ck_accounts_name_not_empty"),
        CheckConstraint(
            "status in ('ACTIVE','INACTIVE','ARCHIVED')", name="ck_accounts_status"
        ),
    )


# ---------------------------
# Core: import_batches
# ---------------------------


class ImportBatch(Base):
    __tablename__ = "import_batches"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(
        ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # SHA-256 over the raw uploaded bytes.
    file_fingerprint: Mapped[str] = mapped_column(CHAR(64), nullable=False)
    period_month: Mapped[int] = mapped_column(Integer, nullable=False)
    period_year: Mapped[int] = mapped_column(Integer, nullable=False)
    encoding: Mapped[str] = mapped_column(
        String(8), nullable=False, server_default=text("'UTF8'")
    )
    row_count: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, server_default=text("'PENDING'")
    )
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    uploaded_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        # Enforced at the persistence boundary; concurrent uploads of the same
        # file for the same account/period collapse onto one batch.
        UniqueConstraint(
            "account_id",
            "file_fingerprint",
            "period_month",
            "period_year",
            name="uq_import_batches_account_fp_period",
        ),
        CheckConstraint("period_month >= 1 AND period_month <= 12", name="ck_batches_month"),
        CheckConstraint("period_year >= 2000 AND period_year <= 2100", name="ck_batches_year"),
        CheckConstraint("row_count >= 0", name="ck_batches_row_count"),
        CheckConstraint(
            "status in ('PENDING','COMPLETED','FAILED')", name="ck_batches_status"
        ),
        CheckConstraint("encoding in ('UTF8','LATIN1')", name="ck_batches_encoding"),
    )


# ---------------------------
# Rules and their audit trail
# ---------------------------


class ClassificationRule(Base):
    __tablename__ = "classification_rules"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    pattern: Mapped[str] = mapped_column(String(1024), nullable=False)
    matcher_kind: Mapped[str] = mapped_column(String(16), nullable=False)
    category: Mapped[str] = mapped_column(String(255), nullable=False)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=sa_expr.true())
    version: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("1"))
    created_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )

    __table_args__ = (
        CheckConstraint("length(trim(pattern)) > 0", name="ck_rules_pattern_not_empty"),
        CheckConstraint("matcher_kind in ('contains','regex')", name="ck_rules_matcher_kind"),
        CheckConstraint("version >= 1", name="ck_rules_version"),
    )


class ClassificationRuleVersion(Base):
    """Immutable snapshot of a rule as of one version."""

    __tablename__ = "classification_rule_versions"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    rule_id: Mapped[int] = mapped_column(
        ForeignKey("classification_rules.id", ondelete="CASCADE"), nullable=False
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    pattern: Mapped[str] = mapped_column(String(1024), nullable=False)
    matcher_kind: Mapped[str] = mapped_column(String(16), nullable=False)
    category: Mapped[str] = mapped_column(String(255), nullable=False)
    priority: Mapped[int] = mapped_column(Integer, nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )

    __table_args__ = (
        UniqueConstraint("rule_id", "version", name="uq_rule_versions_rule_version"),
    )


# ---------------------------
# Core: ledger_transactions
# ---------------------------


class Transaction(Base):
    __tablename__ = "ledger_transactions"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(
        ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    batch_id: Mapped[int] = mapped_column(
        ForeignKey("import_batches.id", ondelete="CASCADE"), nullable=False, index=True
    )
    row_fingerprint: Mapped[str] = mapped_column(CHAR(64), nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    # Display form: trimmed, whitespace-collapsed, upper-cased, accents kept.
    descriptor: Mapped[str] = mapped_column(String(255), nullable=False)
    # Matching form: ``descriptor`` with diacritics removed.
    descriptor_folded: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    currency_code: Mapped[str] = mapped_column(
        CHAR(3), nullable=False, server_default=text("'BRL'")
    )
    category: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    classification_source: Mapped[str] = mapped_column(
        String(16), nullable=False, server_default=text("'none'")
    )
    rule_id: Mapped[int | None] = mapped_column(
        ForeignKey("classification_rules.id", ondelete="RESTRICT"), nullable=True
    )
    rule_version: Mapped[int | None] = mapped_column(Integer, nullable=True)
    rationale: Mapped[str | None] = mapped_column(Text, nullable=True)
    classified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )

    __table_args__ = (
        UniqueConstraint("batch_id", "row_fingerprint", name="uq_ledger_tx_batch_row_fp"),
        CheckConstraint(
            "classification_source in ('rule','override','none')",
            name="ck_ledger_tx_classification_source",
        ),
        CheckConstraint(
            (
                "(classification_source = 'rule' AND rule_id IS NOT NULL) OR "
                "(classification_source = 'override' AND rule_id IS NULL) OR "
                "(classification_source = 'none' AND rule_id IS NULL)"
            ),
            name="ck_ledger_tx_rule_consistency",
        ),
    )


class ClassificationOverride(Base):
    __tablename__ = "classification_overrides"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    transaction_id: Mapped[int] = mapped_column(
        ForeignKey("ledger_transactions.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    previous_category: Mapped[str | None] = mapped_column(String(255), nullable=True)
    previous_source: Mapped[str] = mapped_column(String(16), nullable=False)
    new_category: Mapped[str] = mapped_column(String(255), nullable=False)
    actor: Mapped[str] = mapped_column(String(255), nullable=False)
    reason: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )


__all__ = [
    "Base",
    "Account",
    "ImportBatch",
    "ClassificationRule",
    "ClassificationRuleVersion",
    "Transaction",
    "ClassificationOverride",
]
