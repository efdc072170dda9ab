"""Reader for delimited bank statement exports.

Contract
--------
- Bytes are decoded as UTF-8 (a leading BOM is dropped); files that are not
  valid UTF-8 are decoded as Latin-1, which is what older bank exports use.
- Fields follow RFC-4180 quoting, so a quoted amount such as ``"1.234,56"``
  survives a comma delimiter.
- The first non-blank record is the header and is skipped when
  ``has_header`` is True. Blank lines are skipped.
- Each yielded record carries the 1-based physical line number where it
  starts, which is what row errors report.
"""

from __future__ import annotations

import csv
import io
from collections.abc import Iterator

from ..config import DEFAULT_DELIMITER
from ..models import FileEncoding

_UTF8_BOM = b"\xef\xbb\xbf"


def decode_statement(data: bytes) -> tuple[str, FileEncoding]:
    """Decode raw statement bytes and report which encoding was used."""

    if data.startswith(_UTF8_BOM):
        data = data[len(_UTF8_BOM) :]
    try:
        return data.decode("utf-8"), FileEncoding.UTF8
    except UnicodeDecodeError:
        # Latin-1 maps every byte, so this cannot fail.
        return data.decode("latin-1"), FileEncoding.LATIN1


def read_statement_lines(
    text: str,
    *,
    delimiter: str = DEFAULT_DELIMITER,
    has_header: bool = True,
) -> Iterator[tuple[int, list[str]]]:
    """Yield ``(line_number, columns)`` for every data record in ``text``."""

    reader = csv.reader(io.StringIO(text, newline=""), delimiter=delimiter)
    header_pending = has_header
    last_line = 0
    for record in reader:
        start_line = last_line + 1
        last_line = reader.line_num
        if not record or all(not cell.strip() for cell in record):
            continue
        if header_pending:
            header_pending = False
            continue
        yield start_line, record


__all__ = ["decode_statement", "read_statement_lines"]
