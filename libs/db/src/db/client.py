"""Process-wide SQLAlchemy engine and session helpers.

    from db.client import session_scope

    with session_scope(database_url=url) as s:
        s.add(...)

The first call binds the engine to ``database_url`` (or ``DATABASE_URL``).
Asking for a different URL afterwards is an error until ``dispose_engine()``
releases it; tests do that between cases, each with its own SQLite file.

SQLite connections get ``PRAGMA foreign_keys = ON`` so the ledger's cascades
and uniqueness rules behave as on PostgreSQL.
"""

from __future__ import annotations

import os
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker


@dataclass(slots=True)
class _Bound:
    url: str
    engine: Engine
    sessions: sessionmaker[Session]


_bound: _Bound | None = None


def _resolve_url(database_url: str | None) -> str:
    url = database_url or os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is not set; pass database_url or export it")
    return url


def _sqlite_foreign_keys(dbapi_conn, _record) -> None:  # pragma: no cover - driver hook
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys = ON")
    cursor.close()


def _bind(database_url: str | None) -> _Bound:
    global _bound
    url = _resolve_url(database_url)
    if _bound is not None:
        if _bound.url != url:
            raise RuntimeError(
                f"database client is bound to {_bound.url!r}; "
                "call dispose_engine() before switching to another URL"
            )
        return _bound

    engine = create_engine(url, pool_pre_ping=True)
    if engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _sqlite_foreign_keys)
    _bound = _Bound(url=url, engine=engine, sessions=sessionmaker(engine, expire_on_commit=False))
    return _bound


def get_engine(*, database_url: str | None = None) -> Engine:
    return _bind(database_url).engine


def dispose_engine() -> None:
    """Close pooled connections and forget the bound URL."""

    global _bound
    if _bound is not None:
        _bound.engine.dispose()
        _bound = None


def get_session(*, database_url: str | None = None) -> Session:
    return _bind(database_url).sessions()


@contextmanager
def session_scope(*, database_url: str | None = None) -> Iterator[Session]:
    """Commit on success, roll back on any exception, always close."""

    session = get_session(database_url=database_url)
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


__all__ = ["get_engine", "dispose_engine", "get_session", "session_scope"]
