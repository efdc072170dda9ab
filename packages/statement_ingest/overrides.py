# ruff: noqa: I001
"""Manual classification overrides.

An override pins a transaction's category: it sets the classification source
to ``override``, clears the rule reference and stores the reason as the
rationale. A ``classification_overrides`` row records who changed what; there
is one per transaction and a later override replaces it. Overridden
transactions are skipped by reclassification.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from db.models.ledger import ClassificationOverride, Transaction

from .errors import TransactionNotFound
from .logging_setup import get_logger
from .models import ClassificationSource, OverrideRecord

_logger = get_logger("statement_ingest.overrides")


def apply_override(
    session: Session,
    transaction_id: int,
    *,
    category: str,
    actor: str,
    reason: str | None = None,
) -> OverrideRecord:
    if not category or not category.strip():
        raise ValueError("category must be non-empty")
    if not actor or not actor.strip():
        raise ValueError("actor must be non-empty")

    tx = session.get(Transaction, transaction_id)
    if tx is None:
        raise TransactionNotFound(f"transaction {transaction_id} does not exist")

    previous_category = tx.category
    previous_source = ClassificationSource(tx.classification_source)

    audit = session.scalars(
        select(ClassificationOverride).where(
            ClassificationOverride.transaction_id == transaction_id
        )
    ).one_or_none()
    if audit is None:
        audit = ClassificationOverride(transaction_id=transaction_id)
        session.add(audit)
    audit.previous_category = previous_category
    audit.previous_source = previous_source.value
    audit.new_category = category.strip()
    audit.actor = actor.strip()
    audit.reason = reason
    audit.created_at = datetime.now(UTC)

    tx.category = category.strip()
    tx.classification_source = ClassificationSource.OVERRIDE.value
    tx.rule_id = None
    tx.rule_version = None
    tx.rationale = reason or f"manual override by {actor.strip()}"
    tx.classified_at = datetime.now(UTC)
    session.flush()

    _logger.info(
        "Override on transaction %s: %r -> %r by %s",
        transaction_id,
        previous_category,
        tx.category,
        audit.actor,
    )
    return OverrideRecord(
        transaction_id=transaction_id,
        previous_category=previous_category,
        previous_source=previous_source,
        new_category=audit.new_category,
        actor=audit.actor,
        reason=reason,
    )


__all__ = ["apply_override"]
