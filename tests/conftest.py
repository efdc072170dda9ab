"""Pytest configuration for test isolation.

Puts the workspace ``packages/`` and ``libs/db/src`` directories on
``sys.path`` so ``statement_ingest`` and ``db`` import without installation,
and disposes the process-wide SQLAlchemy engine after every test: each test
binds its own SQLite file and ``db.client.get_engine`` refuses to switch URLs
while an engine is alive. Package logging is reset as well.
"""

from __future__ import annotations

import sys
from collections.abc import Iterator
from pathlib import Path

import pytest

_ROOT = Path(__file__).resolve().parents[1]
sys.path[:0] = [
    p
    for p in (str(_ROOT / "packages"), str(_ROOT / "libs" / "db" / "src"), str(_ROOT))
    if p not in sys.path
]

from db.client import dispose_engine  # noqa: E402
from statement_ingest.logging_setup import reset_logging  # noqa: E402


@pytest.fixture(autouse=True)
def _fresh_engine(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    # Keep a developer's DATABASE_URL or .env from leaking into tests.
    monkeypatch.delenv("DATABASE_URL", raising=False)
    dispose_engine()
    yield
    dispose_engine()
    reset_logging()


@pytest.fixture()
def db_url(tmp_path: Path) -> str:
    from tests.helpers.db import bootstrap_sqlite_db

    return bootstrap_sqlite_db(tmp_path / "ledger.db")
