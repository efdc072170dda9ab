"""Row parser: statement columns -> validated ``TransactionRow`` values.

The normalizers raise on bad input; this module turns those exceptions into
explicit per-line results (``RowOk`` / ``RowError``) so a whole file can be
checked and every failing line reported together. Only the expected
``RowParseError`` family is converted; anything else propagates.

Column layout is fixed by position (date, descriptor, amount by default).
Extra columns are ignored.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from .config import DEFAULT_CURRENCY, DEFAULT_DELIMITER
from .errors import (
    ImportRejected,
    MalformedAmount,
    MalformedDate,
    MalformedDescriptor,
    RowParseError,
)
from .ingest.statement_csv import read_statement_lines
from .models import TransactionRow
from .normalizers import fold_descriptor, normalize_descriptor, parse_amount, parse_date


@dataclass(frozen=True, slots=True)
class ColumnLayout:
    """Zero-based positions of the required columns."""

    date: int = 0
    descriptor: int = 1
    amount: int = 2

    def __post_init__(self) -> None:
        positions = (self.date, self.descriptor, self.amount)
        if any(p < 0 for p in positions):
            raise ValueError("column positions must be non-negative")
        if len(set(positions)) != len(positions):
            raise ValueError("column positions must be distinct")


DEFAULT_LAYOUT = ColumnLayout()


@dataclass(frozen=True, slots=True)
class RowOk:
    line_no: int
    row: TransactionRow


@dataclass(frozen=True, slots=True)
class RowError:
    """A line that could not be parsed, naming the failing column."""

    line_no: int
    column: str
    kind: str
    message: str

    def __str__(self) -> str:
        return f"line {self.line_no} ({self.column}): {self.kind}: {self.message}"


type RowResult = RowOk | RowError


def _field(columns: Sequence[str], index: int, name: str, exc_type: type[RowParseError]) -> str:
    if index >= len(columns):
        raise exc_type(
            f"missing {name} column (expected at least {index + 1} columns, got {len(columns)})"
        )
    value = columns[index]
    if not value or not value.strip():
        raise exc_type(f"{name} column is empty")
    return value


def parse_row(
    columns: Sequence[str],
    *,
    line_no: int = 1,
    layout: ColumnLayout = DEFAULT_LAYOUT,
    currency: str = DEFAULT_CURRENCY,
) -> RowResult:
    """Parse one line's columns. Reports the first failing column."""

    column = "date"
    try:
        tx_date = parse_date(_field(columns, layout.date, "date", MalformedDate))
        column = "descriptor"
        raw_descriptor = _field(columns, layout.descriptor, "descriptor", MalformedDescriptor)
        descriptor = normalize_descriptor(raw_descriptor)
        column = "amount"
        amount = parse_amount(_field(columns, layout.amount, "amount", MalformedAmount))
    except RowParseError as exc:
        return RowError(line_no=line_no, column=column, kind=exc.kind, message=str(exc))

    return RowOk(
        line_no=line_no,
        row=TransactionRow(
            date=tx_date,
            raw_descriptor=raw_descriptor,
            descriptor=descriptor,
            descriptor_folded=fold_descriptor(descriptor),
            amount=amount,
            currency=currency,
        ),
    )


def parse_lines(
    lines: Iterable[tuple[int, Sequence[str]]],
    *,
    layout: ColumnLayout = DEFAULT_LAYOUT,
    currency: str = DEFAULT_CURRENCY,
) -> list[RowResult]:
    return [parse_row(cols, line_no=n, layout=layout, currency=currency) for n, cols in lines]


def parse_statement(
    text: str,
    *,
    delimiter: str = DEFAULT_DELIMITER,
    has_header: bool = True,
    layout: ColumnLayout = DEFAULT_LAYOUT,
    currency: str = DEFAULT_CURRENCY,
) -> list[RowOk]:
    """Parse a decoded statement, all-or-nothing.

    Returns every parsed row in file order, or raises ``ImportRejected``
    carrying every ``RowError`` when at least one line fails.
    """

    results = parse_lines(
        read_statement_lines(text, delimiter=delimiter, has_header=has_header),
        layout=layout,
        currency=currency,
    )
    errors = [r for r in results if isinstance(r, RowError)]
    if errors:
        raise ImportRejected(errors)
    return [r for r in results if isinstance(r, RowOk)]


__all__ = [
    "ColumnLayout",
    "DEFAULT_LAYOUT",
    "RowOk",
    "RowError",
    "RowResult",
    "parse_row",
    "parse_lines",
    "parse_statement",
]
