"""Data models for ``statement_ingest``.

Parsed rows, persisted-record views and classification outcomes are frozen
dataclasses so they can be shared across threads during batch classification.
The rule administration input is a pydantic model (validated once at the API
edge, mirroring what is stored in ``classification_rules``).

Persisted records are exposed as plain views (``BatchRecord``, ``RuleRecord``,
``TransactionRecord``) rather than ORM instances so callers never hold a live
session object.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .config import DEFAULT_CURRENCY

# ---------------------------------------------------------------------------
# Closed value sets
# ---------------------------------------------------------------------------


class MatcherKind(StrEnum):
    CONTAINS = "contains"
    REGEX = "regex"


class ClassificationSource(StrEnum):
    RULE = "rule"
    OVERRIDE = "override"
    NONE = "none"


class BatchStatus(StrEnum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class FileEncoding(StrEnum):
    UTF8 = "UTF8"
    LATIN1 = "LATIN1"


class AccountStatus(StrEnum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    ARCHIVED = "ARCHIVED"


class ImportState(StrEnum):
    """Where an import attempt stopped.

    received -> parsing -> rejected | parsed -> deduplicating ->
    existing_batch_returned | committing -> completed | failed
    """

    RECEIVED = "received"
    PARSING = "parsing"
    REJECTED = "rejected"
    PARSED = "parsed"
    DEDUPLICATING = "deduplicating"
    EXISTING_BATCH_RETURNED = "existing_batch_returned"
    COMMITTING = "committing"
    COMPLETED = "completed"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Reporting period
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ReportingPeriod:
    """Calendar month a statement covers."""

    month: int
    year: int

    def __post_init__(self) -> None:
        # Booleans are ints; disallow them explicitly.
        for name, val in (("month", self.month), ("year", self.year)):
            if isinstance(val, bool) or not isinstance(val, int):
                raise ValueError(f"ReportingPeriod.{name} must be an integer")
        if not 1 <= self.month <= 12:
            raise ValueError(f"ReportingPeriod.month must be 1-12, got {self.month}")
        if not 2000 <= self.year <= 2100:
            raise ValueError(f"ReportingPeriod.year must be 2000-2100, got {self.year}")

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


# ---------------------------------------------------------------------------
# Parsed rows
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class TransactionRow:
    """One validated statement line.

    ``descriptor`` is the storage form (trimmed, single-spaced, upper-cased,
    accents kept); ``descriptor_folded`` is the matching form. ``amount``
    carries the sign of the source notation (parenthesized values are
    negative).
    """

    date: date
    raw_descriptor: str
    descriptor: str
    descriptor_folded: str
    amount: Decimal
    currency: str = DEFAULT_CURRENCY


# ---------------------------------------------------------------------------
# Persisted record views
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class AccountRecord:
    id: int
    name: str
    bank_name: str | None = None
    account_number: str | None = None
    status: AccountStatus = AccountStatus.ACTIVE


@dataclass(frozen=True, slots=True)
class BatchRecord:
    id: int
    account_id: int
    file_fingerprint: str
    period: ReportingPeriod
    row_count: int
    status: BatchStatus
    encoding: FileEncoding = FileEncoding.UTF8
    error_message: str | None = None
    uploaded_by: str | None = None
    created_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class RuleRecord:
    id: int
    name: str
    pattern: str
    kind: MatcherKind
    category: str
    priority: int = 0
    enabled: bool = True
    version: int = 1
    description: str | None = None


@dataclass(frozen=True, slots=True)
class TransactionRecord:
    id: int
    batch_id: int
    account_id: int
    date: date
    descriptor: str
    amount: Decimal
    currency: str
    category: str | None
    classification_source: ClassificationSource
    rule_id: int | None = None
    rule_version: int | None = None
    rationale: str | None = None


@dataclass(frozen=True, slots=True)
class OverrideRecord:
    transaction_id: int
    previous_category: str | None
    previous_source: ClassificationSource
    new_category: str
    actor: str
    reason: str | None = None


@dataclass(frozen=True, slots=True)
class BatchSummary:
    """Per-batch counts by classification source."""

    batch: BatchRecord
    total: int
    by_source: dict[ClassificationSource, int]

    @property
    def unclassified(self) -> int:
        return self.by_source.get(ClassificationSource.NONE, 0)


# ---------------------------------------------------------------------------
# Classification outcome
# ---------------------------------------------------------------------------

NO_RULE_MATCHED = "no rule matched"


@dataclass(frozen=True, slots=True)
class ClassificationResult:
    """Outcome of classifying one transaction, with its rationale.

    A ``RULE`` result always names the rule and its version; ``NONE`` and
    ``OVERRIDE`` results never do.
    """

    source: ClassificationSource
    rationale: str
    category: str | None = None
    rule_id: int | None = None
    rule_name: str | None = None
    rule_version: int | None = None

    def __post_init__(self) -> None:
        if self.source is ClassificationSource.RULE:
            if self.rule_id is None or self.rule_version is None:
                raise ValueError("rule-matched results require rule_id and rule_version")
        elif self.rule_id is not None:
            raise ValueError(f"{self.source.value} results must not carry a rule_id")

    @property
    def matched(self) -> bool:
        return self.source is ClassificationSource.RULE

    @classmethod
    def unclassified(cls) -> ClassificationResult:
        return cls(source=ClassificationSource.NONE, rationale=NO_RULE_MATCHED)


# ---------------------------------------------------------------------------
# Import outcome
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ImportReport:
    """What one ``process_import`` call did.

    ``reused`` is True when an existing batch was returned unchanged.
    """

    batch: BatchRecord
    state: ImportState
    inserted: int = 0
    skipped_duplicates: int = 0
    reused: bool = False
    classified: int = 0


# ---------------------------------------------------------------------------
# Rule administration input
# ---------------------------------------------------------------------------

# Width of the ``pattern`` column.
PATTERN_MAX_LENGTH = 1024


class RuleInput(BaseModel):
    """Validated payload for creating a classification rule.

    Pattern validity (non-empty, compiles as a regex) is checked by building
    the matcher, so the caller gets ``EmptyPattern``/``InvalidPattern`` rather
    than a generic validation error.
    """

    model_config = ConfigDict(extra="forbid")

    name: str
    # Kept verbatim: leading and trailing spaces are part of a contains pattern.
    pattern: str = Field(max_length=PATTERN_MAX_LENGTH)
    kind: MatcherKind = MatcherKind.CONTAINS
    category: str
    priority: int = 0
    enabled: bool = True
    description: str | None = None
    created_by: str | None = None

    @field_validator("name", "category")
    @classmethod
    def _strip_non_empty(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must be non-empty")
        return v


class RuleUpdate(BaseModel):
    """Partial update for an existing rule. Unset fields are left unchanged."""

    model_config = ConfigDict(extra="forbid")

    pattern: str | None = Field(default=None, max_length=PATTERN_MAX_LENGTH)
    kind: MatcherKind | None = None
    category: str | None = None
    priority: int | None = None
    enabled: bool | None = None
    description: str | None = None

    @field_validator("category")
    @classmethod
    def _strip_non_empty(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.strip()
        if not v:
            raise ValueError("must be non-empty")
        return v


__all__ = [
    "MatcherKind",
    "ClassificationSource",
    "BatchStatus",
    "FileEncoding",
    "AccountStatus",
    "ImportState",
    "ReportingPeriod",
    "TransactionRow",
    "AccountRecord",
    "BatchRecord",
    "RuleRecord",
    "TransactionRecord",
    "OverrideRecord",
    "BatchSummary",
    "ClassificationResult",
    "NO_RULE_MATCHED",
    "ImportReport",
    "PATTERN_MAX_LENGTH",
    "RuleInput",
    "RuleUpdate",
]
