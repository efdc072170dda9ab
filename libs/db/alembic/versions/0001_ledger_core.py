# ruff: noqa: I001
"""Ledger core tables: accounts, import batches, rules, transactions, overrides.

Revision ID: 0001_ledger_core
Revises: None
Create Date: 2025-12-11
"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = "0001_ledger_core"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

# SQLite only autoincrements INTEGER PRIMARY KEY columns.
_PK = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def _created_at(name: str = "created_at") -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("CURRENT_TIMESTAMP"),
    )


def upgrade() -> None:
    # accounts
    op.create_table(
        "accounts",
        sa.Column("id", _PK, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("bank_name", sa.String(255), nullable=True),
        sa.Column("account_number", sa.String(64), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default=sa.text("'ACTIVE'")),
        _created_at(),
        sa.CheckConstraint("length(trim(name)) > 0", name="ck_accounts_name_not_empty"),
        sa.CheckConstraint(
            "status in ('ACTIVE','INACTIVE','ARCHIVED')", name="ck_accounts_status"
        ),
    )

    # import_batches
    op.create_table(
        "import_batches",
        sa.Column("id", _PK, primary_key=True, autoincrement=True),
        sa.Column(
            "account_id",
            sa.BigInteger(),
            sa.ForeignKey("accounts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("file_fingerprint", sa.CHAR(64), nullable=False),
        sa.Column("period_month", sa.Integer(), nullable=False),
        sa.Column("period_year", sa.Integer(), nullable=False),
        sa.Column("encoding", sa.String(8), nullable=False, server_default=sa.text("'UTF8'")),
        sa.Column("row_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("status", sa.String(16), nullable=False, server_default=sa.text("'PENDING'")),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("uploaded_by", sa.String(255), nullable=True),
        _created_at(),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint(
            "account_id",
            "file_fingerprint",
            "period_month",
            "period_year",
            name="uq_import_batches_account_fp_period",
        ),
        sa.CheckConstraint("period_month >= 1 AND period_month <= 12", name="ck_batches_month"),
        sa.CheckConstraint(
            "period_year >= 2000 AND period_year <= 2100", name="ck_batches_year"
        ),
        sa.CheckConstraint("row_count >= 0", name="ck_batches_row_count"),
        sa.CheckConstraint(
            "status in ('PENDING','COMPLETED','FAILED')", name="ck_batches_status"
        ),
        sa.CheckConstraint("encoding in ('UTF8','LATIN1')", name="ck_batches_encoding"),
    )
    op.create_index("ix_import_batches_account_id", "import_batches", ["account_id"])

    # classification_rules
    op.create_table(
        "classification_rules",
        sa.Column("id", _PK, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(255), nullable=False, unique=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("pattern", sa.String(1024), nullable=False),
        sa.Column("matcher_kind", sa.String(16), nullable=False),
        sa.Column("category", sa.String(255), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_by", sa.String(255), nullable=True),
        _created_at(),
        _created_at("updated_at"),
        sa.CheckConstraint("length(trim(pattern)) > 0", name="ck_rules_pattern_not_empty"),
        sa.CheckConstraint(
            "matcher_kind in ('contains','regex')", name="ck_rules_matcher_kind"
        ),
        sa.CheckConstraint("version >= 1", name="ck_rules_version"),
    )

    op.create_table(
        "classification_rule_versions",
        sa.Column("id", _PK, primary_key=True, autoincrement=True),
        sa.Column(
            "rule_id",
            sa.BigInteger(),
            sa.ForeignKey("classification_rules.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("pattern", sa.String(1024), nullable=False),
        sa.Column("matcher_kind", sa.String(16), nullable=False),
        sa.Column("category", sa.String(255), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False),
        _created_at("recorded_at"),
        sa.UniqueConstraint("rule_id", "version", name="uq_rule_versions_rule_version"),
    )

    # ledger_transactions
    op.create_table(
        "ledger_transactions",
        sa.Column("id", _PK, primary_key=True, autoincrement=True),
        sa.Column(
            "account_id",
            sa.BigInteger(),
            sa.ForeignKey("accounts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "batch_id",
            sa.BigInteger(),
            sa.ForeignKey("import_batches.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("row_fingerprint", sa.CHAR(64), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("descriptor", sa.String(255), nullable=False),
        sa.Column("descriptor_folded", sa.String(255), nullable=False),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("currency_code", sa.CHAR(3), nullable=False, server_default=sa.text("'BRL'")),
        sa.Column("category", sa.String(255), nullable=True),
        sa.Column(
            "classification_source",
            sa.String(16),
            nullable=False,
            server_default=sa.text("'none'"),
        ),
        sa.Column(
            "rule_id",
            sa.BigInteger(),
            sa.ForeignKey("classification_rules.id", ondelete="RESTRICT"),
            nullable=True,
        ),
        sa.Column("rule_version", sa.Integer(), nullable=True),
        sa.Column("rationale", sa.Text(), nullable=True),
        sa.Column("classified_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.UniqueConstraint("batch_id", "row_fingerprint", name="uq_ledger_tx_batch_row_fp"),
        sa.CheckConstraint(
            "classification_source in ('rule','override','none')",
            name="ck_ledger_tx_classification_source",
        ),
        sa.CheckConstraint(
            (
                "(classification_source = 'rule' AND rule_id IS NOT NULL) OR "
                "(classification_source = 'override' AND rule_id IS NULL) OR "
                "(classification_source = 'none' AND rule_id IS NULL)"
            ),
            name="ck_ledger_tx_rule_consistency",
        ),
    )
    op.create_index("ix_ledger_transactions_account_id", "ledger_transactions", ["account_id"])
    op.create_index("ix_ledger_transactions_batch_id", "ledger_transactions", ["batch_id"])
    op.create_index("ix_ledger_transactions_date", "ledger_transactions", ["date"])
    op.create_index("ix_ledger_transactions_category", "ledger_transactions", ["category"])
    op.create_index(
        "ix_ledger_transactions_descriptor_folded",
        "ledger_transactions",
        ["descriptor_folded"],
    )

    # classification_overrides
    op.create_table(
        "classification_overrides",
        sa.Column("id", _PK, primary_key=True, autoincrement=True),
        sa.Column(
            "transaction_id",
            sa.BigInteger(),
            sa.ForeignKey("ledger_transactions.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("previous_category", sa.String(255), nullable=True),
        sa.Column("previous_source", sa.String(16), nullable=False),
        sa.Column("new_category", sa.String(255), nullable=False),
        sa.Column("actor", sa.String(255), nullable=False),
        sa.Column("reason", sa.String(1024), nullable=True),
        _created_at(),
    )


def downgrade() -> None:
    op.drop_table("classification_overrides")
    op.drop_index("ix_ledger_transactions_descriptor_folded", table_name="ledger_transactions")
    op.drop_index("ix_ledger_transactions_category", table_name="ledger_transactions")
    op.drop_index("ix_ledger_transactions_date", table_name="ledger_transactions")
    op.drop_index("ix_ledger_transactions_batch_id", table_name="ledger_transactions")
    op.drop_index("ix_ledger_transactions_account_id", table_name="ledger_transactions")
    op.drop_table("ledger_transactions")
    op.drop_table("classification_rule_versions")
    op.drop_table("classification_rules")
    op.drop_index("ix_import_batches_account_id", table_name="import_batches")
    op.drop_table("import_batches")
    op.drop_table("accounts")
