from __future__ import annotations

import logging
import os
import sqlite3
from typing import Any

from .runtime import utc_now
from .settings import settings

logger = logging.getLogger("asgsync.events")

_LEVELS = {"DEBUG": logging.DEBUG, "INFO": logging.INFO, "WARN": logging.WARNING, "ERROR": logging.ERROR}


def journal_enabled() -> bool:
    return bool(settings.db_path)


def _resolve_db_path() -> str:
    """Return a file path usable by sqlite.

    If the configured path is a directory (e.g. a bind mount created by the
    container runtime), the journal file is placed inside it.
    """
    p = os.path.abspath(settings.db_path)

    if os.path.isdir(p):
        p = os.path.join(p, "asgsync.db")

    parent = os.path.dirname(p)
    if parent and not os.path.exists(parent):
        os.makedirs(parent, exist_ok=True)

    return p


def connect() -> sqlite3.Connection:
    conn = sqlite3.connect(_resolve_db_path(), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


def init_db() -> None:
    """Create the events table if it does not exist."""
    if not journal_enabled():
        return
    with connect() as conn:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS events (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              ts TEXT NOT NULL,
              level TEXT NOT NULL,
              upstream TEXT,
              message TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);
            """
        )


def log_event(level: str, message: str, upstream: str | None = None) -> None:
    """Log an event and append it to the journal.

    A journal write failure is logged and does not interrupt reconciliation.
    """
    level = level.upper()
    if upstream:
        logger.log(_LEVELS.get(level, logging.INFO), "[%s] %s", upstream, message)
    else:
        logger.log(_LEVELS.get(level, logging.INFO), "%s", message)

    if not journal_enabled():
        return
    try:
        with connect() as conn:
            conn.execute(
                "INSERT INTO events (ts, level, upstream, message) VALUES (?, ?, ?, ?)",
                (utc_now(), level, upstream, message),
            )
    except (sqlite3.Error, OSError) as e:
        logger.warning("Couldn't write event to journal %s: %s", settings.db_path, e)


def latest_events(limit: int = 100, upstream: str | None = None) -> list[dict[str, Any]]:
    if not journal_enabled():
        return []
    init_db()
    with connect() as conn:
        if upstream:
            rows = conn.execute(
                "SELECT * FROM events WHERE upstream=? ORDER BY id DESC LIMIT ?", (upstream, limit)
            ).fetchall()
        else:
            rows = conn.execute("SELECT * FROM events ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        return [dict(r) for r in rows]
