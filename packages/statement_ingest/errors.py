"""Exception taxonomy for ``statement_ingest``.

Parse-time errors (``MalformedDate``, ``MalformedAmount``,
``MalformedDescriptor``) are raised by the normalizers and collected per line
by the row parser; a file with any of them is rejected as a whole with
``ImportRejected``. Pattern errors (``EmptyPattern``, ``InvalidPattern``) are
raised when a matcher is built. ``PersistenceFailure`` is the only error class
that crosses the storage boundary.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .parser import RowError


class StatementError(Exception):
    """Base class for all errors raised by this package."""


# ---------------------------------------------------------------------------
# Parse-time (line-scoped)
# ---------------------------------------------------------------------------


class RowParseError(StatementError, ValueError):
    """A single field could not be normalized."""

    kind = "MalformedField"


class MalformedDate(RowParseError):
    kind = "MalformedDate"


class MalformedAmount(RowParseError):
    kind = "MalformedAmount"


class MalformedDescriptor(RowParseError):
    kind = "MalformedDescriptor"


class ImportRejected(StatementError):
    """The statement had at least one unparseable line; nothing was persisted."""

    def __init__(self, errors: Sequence[RowError]) -> None:
        self.errors: tuple[RowError, ...] = tuple(errors)
        lines = "; ".join(str(e) for e in self.errors)
        super().__init__(f"statement rejected with {len(self.errors)} line error(s): {lines}")


# ---------------------------------------------------------------------------
# Rule construction
# ---------------------------------------------------------------------------


class PatternError(StatementError, ValueError):
    """A rule pattern cannot be turned into a matcher."""


class EmptyPattern(PatternError):
    pass


class InvalidPattern(PatternError):
    pass


class RuleConstructionError(StatementError, ValueError):
    """Adding a rule to a rule set failed; the set is left unchanged."""

    def __init__(self, rule_name: str, cause: PatternError) -> None:
        self.rule_name = rule_name
        self.cause = cause
        super().__init__(f"failed to add rule {rule_name!r}: {cause}")


# ---------------------------------------------------------------------------
# Persistence boundary
# ---------------------------------------------------------------------------


class PersistenceFailure(StatementError):
    """A storage operation failed; the batch (when known) is marked FAILED."""

    def __init__(self, message: str, *, batch_id: int | None = None) -> None:
        self.batch_id = batch_id
        super().__init__(message)


class BatchConflict(StatementError):
    """A batch with the same (account, fingerprint, period) already exists."""


class RuleNotFound(StatementError, LookupError):
    pass


class DuplicateRuleName(StatementError, ValueError):
    pass


class TransactionNotFound(StatementError, LookupError):
    pass


class BatchNotFound(StatementError, LookupError):
    pass


__all__ = [
    "StatementError",
    "RowParseError",
    "MalformedDate",
    "MalformedAmount",
    "MalformedDescriptor",
    "ImportRejected",
    "PatternError",
    "EmptyPattern",
    "InvalidPattern",
    "RuleConstructionError",
    "PersistenceFailure",
    "BatchConflict",
    "RuleNotFound",
    "DuplicateRuleName",
    "TransactionNotFound",
    "BatchNotFound",
]
