"""Public interface for the ``statement_ingest`` package.

Symbol re-exports only; see :mod:`statement_ingest.api` for the operations and
:mod:`statement_ingest.importer` / :mod:`statement_ingest.classification` for
the components behind them.
"""

from .api import build_pipeline, classify, classify_batch, process_import
from .classification import ClassificationService
from .config import IngestSettings
from .errors import (
    BatchConflict,
    EmptyPattern,
    ImportRejected,
    InvalidPattern,
    MalformedAmount,
    MalformedDate,
    MalformedDescriptor,
    PersistenceFailure,
    RuleConstructionError,
    StatementError,
)
from .importer import ImportPipeline
from .matching import RuleSet, build_matcher
from .models import (
    BatchRecord,
    BatchStatus,
    ClassificationResult,
    ClassificationSource,
    ImportReport,
    ImportState,
    MatcherKind,
    ReportingPeriod,
    TransactionRow,
)
from .normalizers import fold_descriptor, normalize_descriptor, parse_amount, parse_date

__all__ = [
    # API
    "build_pipeline",
    "process_import",
    "classify",
    "classify_batch",
    # Components
    "ClassificationService",
    "ImportPipeline",
    "IngestSettings",
    "RuleSet",
    "build_matcher",
    # Normalizers
    "parse_date",
    "parse_amount",
    "normalize_descriptor",
    "fold_descriptor",
    # Models / types
    "BatchRecord",
    "BatchStatus",
    "ClassificationResult",
    "ClassificationSource",
    "ImportReport",
    "ImportState",
    "MatcherKind",
    "ReportingPeriod",
    "TransactionRow",
    # Errors
    "StatementError",
    "MalformedDate",
    "MalformedAmount",
    "MalformedDescriptor",
    "ImportRejected",
    "EmptyPattern",
    "InvalidPattern",
    "RuleConstructionError",
    "PersistenceFailure",
    "BatchConflict",
]
