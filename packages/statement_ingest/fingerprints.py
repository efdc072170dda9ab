"""Content fingerprints for idempotent imports.

- File fingerprint: SHA-256 over the raw uploaded bytes (before decoding), so a
  byte-identical re-upload maps to the same batch.
- Row fingerprint: SHA-256 over a canonical JSON payload of
  ``(date, descriptor, amount)``. The descriptor is the stored (normalized)
  form and the amount is rendered with two decimals, so ``"1.000,00"`` and
  ``"1000,00"`` fingerprint identically.
"""

from __future__ import annotations

import hashlib
import json

from .models import TransactionRow
from .normalizers import format_amount


def file_fingerprint(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def row_fingerprint(row: TransactionRow) -> str:
    payload = {
        "date": row.date.isoformat(),
        "descriptor": row.descriptor,
        "amount": format_amount(row.amount),
    }
    # Deterministic serialization; accents are hashed as UTF-8.
    data = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


__all__ = ["file_fingerprint", "row_fingerprint"]
