"""Database setup — SQLModel engine over SQLite.

Tables:
- scheduled_audit: audit definitions (ScheduledAudit)
- scheduled_audit_run: execution history (AuditRun), never cascaded on delete
- scheduled_audit_reminder: one row per (definition, due date, channel) reminder sent

File-backed SQLite databases run in WAL mode so the reminder sweep can read
while auditors record progress.
"""

from __future__ import annotations

import os
from typing import Any

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine

from audit_engine.config import settings


def _ensure_sqlite_dir(url: str) -> None:
    if not url.startswith("sqlite:///") or ":memory:" in url:
        return
    db_dir = os.path.dirname(url.replace("sqlite:///", ""))
    if db_dir:
        os.makedirs(db_dir, exist_ok=True)


def _enable_wal(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.execute("PRAGMA busy_timeout=5000")  # ms
    cursor.close()


def make_engine(url: str | None = None, **kwargs: Any) -> Engine:
    """Create an engine for `url` (default: settings.database_url).

    SQLite engines are shared across the event loop's callers, so they
    skip the same-thread check and get the WAL pragmas on connect.
    """
    url = url or settings.database_url
    if not url.startswith("sqlite"):
        return create_engine(url, **kwargs)

    _ensure_sqlite_dir(url)
    kwargs.setdefault("connect_args", {"check_same_thread": False})
    sqlite_engine = create_engine(url, **kwargs)
    event.listen(sqlite_engine, "connect", _enable_wal)
    return sqlite_engine


engine = make_engine()


def create_db_and_tables(bind: Engine | None = None) -> None:
    """Create all tables defined by SQLModel metadata."""
    # Register table classes with the metadata before creating
    from audit_engine.models import audit_run, scheduled_audit  # noqa: F401

    SQLModel.metadata.create_all(bind or engine)
