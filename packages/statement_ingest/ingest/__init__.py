"""Statement file readers."""

from .statement_csv import decode_statement, read_statement_lines

__all__ = ["decode_statement", "read_statement_lines"]
