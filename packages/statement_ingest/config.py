"""Environment-driven settings for the ingest pipeline.

Entry points (the CLI) load a local ``.env`` with ``python-dotenv`` first; this
module only reads ``os.environ``. Library callers can construct
``IngestSettings`` directly and never touch the environment.

Variables
---------
- ``STATEMENT_INGEST_CURRENCY``: default ISO currency code (``BRL``).
- ``STATEMENT_INGEST_DELIMITER``: statement field delimiter (``,``).
- ``STATEMENT_INGEST_CLASSIFY_WORKERS``: thread fan-out for batch
  classification (``1``; capped at 32).
- ``STATEMENT_INGEST_INSERT_CHUNK``: rows per INSERT statement (``500``).
"""

from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_CURRENCY = "BRL"
DEFAULT_DELIMITER = ","
DEFAULT_INSERT_CHUNK = 500
_MAX_WORKERS_CAP = 32


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def resolve_classify_workers(default: int = 1) -> int:
    """Resolve the worker count for batch classification.

    Honors ``STATEMENT_INGEST_CLASSIFY_WORKERS`` and caps it to 32.
    """

    return max(1, min(_env_int("STATEMENT_INGEST_CLASSIFY_WORKERS", default), _MAX_WORKERS_CAP))


@dataclass(frozen=True, slots=True)
class IngestSettings:
    currency: str = DEFAULT_CURRENCY
    delimiter: str = DEFAULT_DELIMITER
    has_header: bool = True
    classify_workers: int = 1
    insert_chunk_size: int = DEFAULT_INSERT_CHUNK

    def __post_init__(self) -> None:
        if len(self.currency) != 3 or not self.currency.isalpha():
            raise ValueError(f"currency must be a 3-letter code, got {self.currency!r}")
        if len(self.delimiter) != 1:
            raise ValueError(f"delimiter must be a single character, got {self.delimiter!r}")
        if self.classify_workers < 1:
            raise ValueError("classify_workers must be a positive integer")
        if self.insert_chunk_size < 1:
            raise ValueError("insert_chunk_size must be a positive integer")

    @classmethod
    def from_env(cls) -> IngestSettings:
        currency = (os.getenv("STATEMENT_INGEST_CURRENCY") or DEFAULT_CURRENCY).strip().upper()
        delimiter = os.getenv("STATEMENT_INGEST_DELIMITER") or DEFAULT_DELIMITER
        if delimiter.lower() in {"\\t", "tab"}:
            delimiter = "\t"
        return cls(
            currency=currency,
            delimiter=delimiter,
            classify_workers=resolve_classify_workers(),
            insert_chunk_size=_env_int("STATEMENT_INGEST_INSERT_CHUNK", DEFAULT_INSERT_CHUNK),
        )


__all__ = ["IngestSettings", "resolve_classify_workers", "DEFAULT_CURRENCY"]
