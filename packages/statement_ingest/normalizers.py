"""Locale normalizers for pt-BR bank statement fields.

Conventions
-----------
- Dates are ``D/M/YYYY`` (one or two digit day and month, four digit year).
  Only the calendar date is kept; there is no timezone handling.
- Amounts use ``.`` as the thousands separator and ``,`` as the decimal
  separator, may carry an ``R$`` prefix, and are negative when wrapped in
  parentheses: ``(1.000,50)`` -> ``Decimal("-1000.50")``. At most two decimal
  places and twelve integer digits, matching the ledger column.
- Descriptors are trimmed, whitespace-collapsed and upper-cased for storage
  (accents kept for display), up to 255 characters. ``fold_descriptor``
  additionally strips diacritics and is what every comparison uses.

Each parser raises a ``RowParseError`` subclass; the row parser turns those
into per-line results.
"""

from __future__ import annotations

import re
import unicodedata
from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from .errors import MalformedAmount, MalformedDate, MalformedDescriptor

_DATE_RE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")

# C0 controls except TAB, LF and CR (those collapse as whitespace).
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")

_WHITESPACE_RE = re.compile(r"\s+")

_CURRENCY_PREFIXES = ("R$",)

_AMOUNT_BODY_RE = re.compile(r"^[\d.]*,?\d*$")

# Ledger columns: amounts are NUMERIC(14, 2), descriptors VARCHAR(255).
AMOUNT_SCALE = 2
AMOUNT_MAX_INTEGER_DIGITS = 12
DESCRIPTOR_MAX_LENGTH = 255


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------


def parse_date(text: str) -> date:
    """Parse ``D/M/YYYY`` into a calendar date.

    Raises ``MalformedDate`` when the text does not match the pattern or names
    a day that does not exist (e.g., ``31/04/2025``).
    """

    s = text.strip()
    match = _DATE_RE.match(s)
    if match is None:
        raise MalformedDate(f"invalid date format: {text!r}; expected DD/MM/YYYY")
    day, month, year = (int(g) for g in match.groups())
    try:
        return date(year, month, day)
    except ValueError as exc:
        raise MalformedDate(f"invalid calendar date: {text!r} ({exc})") from exc


# ---------------------------------------------------------------------------
# Amounts
# ---------------------------------------------------------------------------


def parse_amount(text: str) -> Decimal:
    """Parse a pt-BR formatted amount into a signed ``Decimal``.

    Strips the currency prefix and surrounding parentheses (in either order),
    drops thousands separators, swaps the decimal comma for a dot and negates
    parenthesized values.
    """

    if _CONTROL_RE.search(text):
        raise MalformedAmount(f"amount contains control characters: {text!r}")
    s = text.strip()
    if not s:
        raise MalformedAmount("amount is empty")

    negative = False
    # Iteratively strip the currency prefix and surrounding parentheses until
    # stable, so both "R$ (1,00)" and "(R$ 1,00)" are accepted.
    while True:
        changed = False
        for prefix in _CURRENCY_PREFIXES:
            if s.startswith(prefix):
                s = s[len(prefix) :].lstrip()
                changed = True
        if s.startswith("(") and s.endswith(")") and len(s) >= 2:
            if negative:
                raise MalformedAmount(f"nested parentheses in amount: {text!r}")
            negative = True
            s = s[1:-1].strip()
            changed = True
        if not changed:
            break

    if s.count(",") > 1:
        raise MalformedAmount(f"multiple decimal markers in amount: {text!r}")
    if not any(ch.isdigit() for ch in s) or not _AMOUNT_BODY_RE.match(s):
        raise MalformedAmount(
            f"invalid amount format: {text!r}; expected pt-BR format (e.g., 1.234,56)"
        )

    standardized = s.replace(".", "").replace(",", ".")
    try:
        value = Decimal(standardized)
    except InvalidOperation as exc:
        raise MalformedAmount(f"could not parse amount: {text!r}") from exc
    if -value.as_tuple().exponent > AMOUNT_SCALE:
        raise MalformedAmount(f"amount has more than {AMOUNT_SCALE} decimal places: {text!r}")
    if value.adjusted() >= AMOUNT_MAX_INTEGER_DIGITS:
        raise MalformedAmount(f"amount out of range: {text!r}")
    return -value if negative else value


def format_amount(value: Decimal) -> str:
    """Two-decimal canonical string, used wherever amounts are hashed."""

    q = value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    # "-0.00" and "0.00" must fingerprint identically.
    if q == 0:
        q = abs(q)
    return f"{q:.2f}"


# ---------------------------------------------------------------------------
# Descriptors
# ---------------------------------------------------------------------------


def normalize_descriptor(text: str) -> str:
    """Trim, collapse internal whitespace runs and upper-case.

    Accented characters are preserved; see :func:`fold_descriptor`.
    """

    if _CONTROL_RE.search(text):
        raise MalformedDescriptor(f"descriptor contains control characters: {text!r}")
    normalized = _WHITESPACE_RE.sub(" ", text).strip().upper()
    if len(normalized) > DESCRIPTOR_MAX_LENGTH:
        raise MalformedDescriptor(
            f"descriptor longer than {DESCRIPTOR_MAX_LENGTH} characters ({len(normalized)})"
        )
    return normalized


def strip_diacritics(text: str) -> str:
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def fold_descriptor(text: str) -> str:
    """Case-flatten and remove diacritics: ``"Padaria José"`` -> ``"PADARIA JOSE"``.

    Idempotent: folding a folded string returns it unchanged.
    """

    return strip_diacritics(text).upper()


__all__ = [
    "parse_date",
    "parse_amount",
    "format_amount",
    "normalize_descriptor",
    "strip_diacritics",
    "fold_descriptor",
]
