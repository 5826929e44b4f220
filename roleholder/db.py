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

    If the configured path is an existing directory (a bind mount created
    before the file existed, for instance) the DB file is placed inside it.
    """

    p = os.path.abspath(settings.db_path)

    if os.path.isdir(p):
        p = os.path.join(p, "roleholder.db")

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
              role_name TEXT,
              package_name TEXT,
              user_id INTEGER,
              message TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS requests (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              role_name TEXT NOT NULL,
              package_name TEXT NOT NULL,
              user_id INTEGER NOT NULL,
              action TEXT NOT NULL, -- add|remove
              state TEXT NOT NULL, -- success|failure
              error TEXT,
              started_at TEXT NOT NULL,
              finished_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);
            CREATE INDEX IF NOT EXISTS idx_requests_role ON requests(role_name, package_name, user_id);
            """
        )


def log_event(
    level: str,
    message: str,
    role_name: str | None = None,
    package_name: str | None = None,
    user: int | None = None,
) -> None:
    with connect() as conn:
        conn.execute(
            "INSERT INTO events (ts, level, role_name, package_name, user_id, message) VALUES (?, ?, ?, ?, ?, ?)",
            (utc_now(), level.upper(), role_name, package_name, user, message),
        )


@dataclass(frozen=True)
class RequestRow:
    id: int
    role_name: str
    package_name: str
    user_id: int
    action: str
    state: str
    error: str | None
    started_at: str
    finished_at: str


def record_request(
    role_name: str,
    package_name: str,
    user: int,
    add: bool,
    state: str,
    error: str | None,
    started_at: str,
) -> None:
    with connect() as conn:
        conn.execute(
            """
            INSERT INTO requests (role_name, package_name, user_id, action, state, error, started_at, finished_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (role_name, package_name, user, "add" if add else "remove", state, error, started_at, utc_now()),
        )


def list_requests(role_name: str | None = None, limit: int = 100) -> list[RequestRow]:
    with connect() as conn:
        if role_name:
            cur = conn.execute(
                "SELECT * FROM requests WHERE role_name=? ORDER BY id DESC LIMIT ?",
                (role_name, limit),
            )
        else:
            cur = conn.execute("SELECT * FROM requests ORDER BY id DESC LIMIT ?", (limit,))
        return [RequestRow(**dict(r)) for r in cur.fetchall()]


def latest_events(limit: int = 100) -> list[dict[str, Any]]:
    with connect() as conn:
        rows = conn.execute("SELECT * FROM events ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        return [dict(r) for r in rows]
