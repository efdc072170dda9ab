# ruff: noqa: I001
"""Classification rule administration.

Rules are validated by building their matcher before anything is written, so
an empty or uncompilable pattern blocks the request with ``EmptyPattern`` or
``InvalidPattern``. Every change bumps the rule's ``version`` and records a
snapshot in ``classification_rule_versions``; transactions classified earlier
keep the version they were matched against.

These functions take an open ``Session`` (callers own the transaction via
``db.client.session_scope``). Running classifiers only see changes after
``ClassificationService.reload()``.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from db.models.ledger import ClassificationRule, ClassificationRuleVersion

from .errors import DuplicateRuleName, RuleNotFound
from .logging_setup import get_logger
from .matching import MatchResult, build_matcher
from .models import MatcherKind, RuleInput, RuleRecord, RuleUpdate
from .persistence import rule_to_record

_logger = get_logger("statement_ingest.rules")


def _snapshot(session: Session, rule: ClassificationRule) -> None:
    session.add(
        ClassificationRuleVersion(
            rule_id=rule.id,
            version=rule.version,
            pattern=rule.pattern,
            matcher_kind=rule.matcher_kind,
            category=rule.category,
            priority=rule.priority,
            enabled=rule.enabled,
        )
    )


def _load(session: Session, rule_id: int) -> ClassificationRule:
    rule = session.get(ClassificationRule, rule_id)
    if rule is None:
        raise RuleNotFound(f"classification rule {rule_id} does not exist")
    return rule


def create_rule(session: Session, data: RuleInput) -> RuleRecord:
    """Validate and store a new rule at version 1."""

    build_matcher(data.pattern, data.kind)
    existing = session.scalars(
        select(ClassificationRule.id).where(ClassificationRule.name == data.name)
    ).first()
    if existing is not None:
        raise DuplicateRuleName(f"a rule named {data.name!r} already exists")

    rule = ClassificationRule(
        name=data.name,
        description=data.description,
        pattern=data.pattern,
        matcher_kind=data.kind.value,
        category=data.category,
        priority=data.priority,
        enabled=data.enabled,
        version=1,
        created_by=data.created_by,
    )
    session.add(rule)
    session.flush()
    _snapshot(session, rule)
    session.flush()
    _logger.info(
        "Created rule id=%s name=%r (%s %r)", rule.id, rule.name, rule.matcher_kind, rule.pattern
    )
    return rule_to_record(rule)


def update_rule(session: Session, rule_id: int, changes: RuleUpdate) -> RuleRecord:
    """Apply ``changes`` and bump the version. A no-op update still bumps it."""

    rule = _load(session, rule_id)
    pattern = changes.pattern if changes.pattern is not None else rule.pattern
    kind = changes.kind if changes.kind is not None else MatcherKind(rule.matcher_kind)
    build_matcher(pattern, kind)

    rule.pattern = pattern
    rule.matcher_kind = kind.value
    if changes.category is not None:
        rule.category = changes.category
    if changes.priority is not None:
        rule.priority = changes.priority
    if changes.enabled is not None:
        rule.enabled = changes.enabled
    if changes.description is not None:
        rule.description = changes.description
    rule.version = rule.version + 1
    rule.updated_at = datetime.now(UTC)
    session.flush()
    _snapshot(session, rule)
    session.flush()
    _logger.info("Updated rule id=%s to version %d", rule.id, rule.version)
    return rule_to_record(rule)


def set_rule_enabled(session: Session, rule_id: int, enabled: bool) -> RuleRecord:
    return update_rule(session, rule_id, RuleUpdate(enabled=enabled))


def get_rule(session: Session, rule_id: int) -> RuleRecord:
    return rule_to_record(_load(session, rule_id))


def list_rules(session: Session, *, enabled: bool | None = None) -> list[RuleRecord]:
    """Rules in evaluation order (priority desc, then creation order)."""

    stmt = select(ClassificationRule)
    if enabled is not None:
        stmt = stmt.where(ClassificationRule.enabled.is_(enabled))
    stmt = stmt.order_by(ClassificationRule.priority.desc(), ClassificationRule.id)
    return [rule_to_record(r) for r in session.scalars(stmt)]


def rule_versions(session: Session, rule_id: int) -> list[RuleRecord]:
    """Every recorded version of a rule, oldest first."""

    rule = _load(session, rule_id)
    snaps = session.scalars(
        select(ClassificationRuleVersion)
        .where(ClassificationRuleVersion.rule_id == rule_id)
        .order_by(ClassificationRuleVersion.version)
    )
    return [
        RuleRecord(
            id=rule.id,
            name=rule.name,
            pattern=v.pattern,
            kind=MatcherKind(v.matcher_kind),
            category=v.category,
            priority=v.priority,
            enabled=bool(v.enabled),
            version=v.version,
            description=rule.description,
        )
        for v in snaps
    ]


def try_rule(pattern: str, kind: MatcherKind | str, descriptor: str) -> MatchResult:
    """What-if check of one pattern against one descriptor; nothing is stored."""

    return build_matcher(pattern, kind).match(descriptor)


__all__ = [
    "create_rule",
    "update_rule",
    "set_rule_enabled",
    "get_rule",
    "list_rules",
    "rule_versions",
    "try_rule",
]
