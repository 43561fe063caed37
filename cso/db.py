from __future__ import annotations

import os
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from .settings import settings


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _resolve_db_path() -> str:
    """Return a file path usable by sqlite.

    A bind-mounted path that did not exist on the host shows up as a directory
    inside a container; in that case the DB file is placed inside it.
    """

    p = os.path.abspath(settings.db_path)

    if os.path.isdir(p):
        p = os.path.join(p, "cso.db")

    parent = os.path.dirname(p)
    if parent and not os.path.exists(parent):
        os.makedirs(parent, exist_ok=True)

    return p


def connect() -> sqlite3.Connection:
    conn = sqlite3.connect(_resolve_db_path(), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


def init_db() -> None:
    """Create tables if they do not exist."""
    with connect() as conn:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS events (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              ts TEXT NOT NULL,
              level TEXT NOT NULL,
              service_name TEXT,
              context TEXT,
              message TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS queries (
              id TEXT PRIMARY KEY,
              context TEXT NOT NULL,
              status TEXT NOT NULL, -- PENDING|SUCCESS|FAIL
              message TEXT NOT NULL DEFAULT '',
              created_at TEXT NOT NULL,
              updated_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);
            """
        )
    conn.close()


def log_event(level: str, message: str, service_name: str | None = None, context: str | None = None) -> None:
    conn = connect()
    with conn:
        conn.execute(
            "INSERT INTO events (ts, level, service_name, context, message) VALUES (?, ?, ?, ?, ?)",
            (utc_now(), level.upper(), service_name, context, message),
        )
    conn.close()


@dataclass(frozen=True)
class QueryRow:
    id: str
    context: str
    status: str
    message: str
    created_at: str
    updated_at: str


def insert_query(query_id: str, context: str, status: str, message: str = "") -> None:
    now = utc_now()
    conn = connect()
    with conn:
        conn.execute(
            "INSERT INTO queries (id, context, status, message, created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?)",
            (query_id, context, status, message, now, now),
        )
    conn.close()


def set_query_status(query_id: str, status: str, message: str = "") -> None:
    conn = connect()
    with conn:
        conn.execute(
            "UPDATE queries SET status=?, message=?, updated_at=? WHERE id=?",
            (status, message, utc_now(), query_id),
        )
    conn.close()


def list_queries(limit: int = 100) -> list[QueryRow]:
    conn = connect()
    with conn:
        rows = conn.execute("SELECT * FROM queries ORDER BY created_at DESC, rowid DESC LIMIT ?", (limit,)).fetchall()
    conn.close()
    return [QueryRow(**dict(r)) for r in rows]


def latest_events(limit: int = 100) -> list[dict[str, Any]]:
    conn = connect()
    with conn:
        rows = conn.execute("SELECT * FROM events ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
    conn.close()
    return [dict(r) for r in rows]
