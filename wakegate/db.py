from __future__ import annotations

import logging
import os
import sqlite3
from datetime import datetime
from typing import Any

from .settings import settings

logger = logging.getLogger("wakegate")

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}

_db_path: str | None = None
_enabled: bool = settings.enable_event_log
_max_rows: int = settings.event_log_max_rows


def utc_now() -> str:
    return datetime.utcnow().strftime("%Y-%m-%dT%H:%M:%SZ")


def configure_logging(level: str = settings.log_level) -> None:
    logging.basicConfig(
        level=_LEVELS.get(level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def configure(path: str | None = None, enabled: bool | None = None, max_rows: int | None = None) -> None:
    """Point the event log at another database file (tests, CLI overrides)."""
    global _db_path, _enabled, _max_rows
    _db_path = path
    if enabled is not None:
        _enabled = enabled
    if max_rows is not None:
        _max_rows = max_rows


def _resolve_db_path() -> str:
    """Return a file path usable by sqlite.

    If the configured path is a directory (a bind mount Docker created for a
    missing file), the database file is placed inside it.
    """
    p = os.path.abspath(_db_path or settings.events_db_path)

    if os.path.isdir(p):
        p = os.path.join(p, "wakegate.db")

    parent = os.path.dirname(p)
    if parent and not os.path.exists(parent):
        os.makedirs(parent, exist_ok=True)

    return p


def connect() -> sqlite3.Connection:
    conn = sqlite3.connect(_resolve_db_path(), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


def init_db() -> None:
    """Create the event table if it does not exist."""
    if not _enabled:
        return
    with connect() as conn:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS events (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              ts TEXT NOT NULL,
              level TEXT NOT NULL,
              route_id TEXT,
              message TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);
            """
        )


def log_event(level: str, message: str, route_id: str | None = None) -> None:
    """Log a lifecycle event and append it to the event table.

    The table is an operator audit trail capped at the newest ``_max_rows``
    rows (0 keeps everything). A write failure is logged and otherwise
    ignored so request handling never depends on it.
    """
    level = level.upper()
    text = f"{route_id}: {message}" if route_id else message
    logger.log(_LEVELS.get(level, logging.INFO), text)
    if not _enabled:
        return
    try:
        with connect() as conn:
            conn.execute(
                "INSERT INTO events (ts, level, route_id, message) VALUES (?, ?, ?, ?)",
                (utc_now(), level, route_id, message),
            )
            if _max_rows > 0:
                conn.execute(
                    "DELETE FROM events WHERE id <= (SELECT MAX(id) FROM events) - ?", (_max_rows,)
                )
    except sqlite3.Error as e:
        logger.warning("Could not persist event: %s", e)


def latest_events(limit: int = 100, route_id: str | None = None) -> list[dict[str, Any]]:
    try:
        with connect() as conn:
            if route_id:
                rows = conn.execute(
                    "SELECT * FROM events WHERE route_id=? ORDER BY id DESC LIMIT ?", (route_id, limit)
                ).fetchall()
            else:
                rows = conn.execute("SELECT * FROM events ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
    except sqlite3.OperationalError as e:
        # No events table: the log is disabled or was never initialised.
        logger.warning("Event log unavailable: %s", e)
        return []
    return [dict(r) for r in rows]
