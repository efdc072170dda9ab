"""Shared SQLAlchemy models registry for the workspace database.

Currently includes the ledger models used by ``statement_ingest``.
"""

from .ledger import (
    Account,
    Base,
    ClassificationOverride,
    ClassificationRule,
    ClassificationRuleVersion,
    ImportBatch,
    Transaction,
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
