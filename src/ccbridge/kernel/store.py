"""SQLite store shared by the listener and every session process.

All cross-process coordination goes through this one file. Writes that must
be atomic across processes either run as a single conditional statement or
inside `transaction()`, which takes the database write lock up front
(`BEGIN IMMEDIATE`).
"""
from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence

from ..paths import db_path
from ..util.conv import coerce_bool, coerce_int

logger = logging.getLogger("ccbridge.store")

CONFIG_BOT_TOKEN = "bot_token"
CONFIG_CHAT_ID = "chat_id"
CONFIG_CURSOR = "last_update_cursor"
CONFIG_PAUSED = "paused"
CONFIG_DEFAULT_SESSION = "default_session"

SCHEMA = """
CREATE TABLE IF NOT EXISTS sessions (
    id TEXT PRIMARY KEY,
    description TEXT NOT NULL DEFAULT '',
    owning_process_id INTEGER NOT NULL DEFAULT 0,
    status TEXT NOT NULL DEFAULT 'active' CHECK (status IN ('active', 'aborted')),
    created_at TEXT NOT NULL,
    last_activity TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS config (
    key TEXT PRIMARY KEY,
    value TEXT
);

CREATE TABLE IF NOT EXISTS instructions (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL UNIQUE,
    session_id TEXT NOT NULL,
    text TEXT NOT NULL,
    received_at TEXT NOT NULL,
    acknowledged INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS pending_questions (
    id TEXT PRIMARY KEY,
    session_id TEXT NOT NULL UNIQUE,
    text TEXT NOT NULL,
    choices TEXT NOT NULL DEFAULT '[]',
    asked_at TEXT NOT NULL,
    answered INTEGER NOT NULL DEFAULT 0,
    answer TEXT,
    answered_at TEXT
);

CREATE TABLE IF NOT EXISTS approvals (
    id TEXT PRIMARY KEY,
    category TEXT NOT NULL DEFAULT 'general',
    title TEXT NOT NULL,
    message TEXT NOT NULL,
    options TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending' CHECK (status IN ('pending', 'responded', 'expired')),
    response_value TEXT,
    channel_message_ref INTEGER,
    created_at TEXT NOT NULL,
    responded_at TEXT
);
"""

INDEXES = """
CREATE INDEX IF NOT EXISTS idx_sessions_status ON sessions(status);
CREATE INDEX IF NOT EXISTS idx_instructions_pending ON instructions(session_id, acknowledged, seq);
CREATE INDEX IF NOT EXISTS idx_approvals_status ON approvals(status, created_at);
"""

# Columns added after the first release; older files get them on open.
_LATE_COLUMNS = {
    "instructions": [
        ("source_message_ref", "INTEGER"),
        ("queued_ack_ref", "INTEGER"),
    ],
}


def _table_columns(conn: sqlite3.Connection, table: str) -> set:
    return {row[1] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()}


def _migrate(conn: sqlite3.Connection) -> None:
    for table, columns in _LATE_COLUMNS.items():
        existing = _table_columns(conn, table)
        for name, decl in columns:
            if name not in existing:
                conn.execute(f"ALTER TABLE {table} ADD COLUMN {name} {decl}")


class Store:
    """One connection to the bridge database.

    A Store is cheap; each process (or thread) opens its own. Connections run
    in autocommit mode so every standalone statement is its own transaction.
    """

    def __init__(self, path: Optional[Path] = None, *, busy_timeout: float = 10.0):
        self.path = Path(path) if path is not None else db_path()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(
            str(self.path),
            timeout=busy_timeout,
            isolation_level=None,
            check_same_thread=False,
        )
        self.conn.row_factory = sqlite3.Row
        self.conn.execute(f"PRAGMA busy_timeout={int(busy_timeout * 1000)}")
        self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.execute("PRAGMA foreign_keys=ON")
        # executescript() would commit implicitly; run statements one by one.
        with self.transaction():
            for stmt in _split_script(SCHEMA):
                self.conn.execute(stmt)
            _migrate(self.conn)
            for stmt in _split_script(INDEXES):
                self.conn.execute(stmt)

    def close(self) -> None:
        try:
            self.conn.close()
        except Exception:
            pass

    def __enter__(self) -> "Store":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block under the database write lock.

        Nested use joins the outer transaction.
        """
        if self.conn.in_transaction:
            yield self.conn
            return
        self.conn.execute("BEGIN IMMEDIATE")
        try:
            yield self.conn
        except BaseException:
            self.conn.execute("ROLLBACK")
            raise
        self.conn.execute("COMMIT")

    def execute(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        return self.conn.execute(sql, tuple(params))

    def query_one(self, sql: str, params: Sequence[Any] = ()) -> Optional[Dict[str, Any]]:
        row = self.conn.execute(sql, tuple(params)).fetchone()
        return dict(row) if row is not None else None

    def query_all(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        return [dict(r) for r in self.conn.execute(sql, tuple(params)).fetchall()]

    # ------------------------------------------------------------------
    # Config
    # ------------------------------------------------------------------

    def get_config(self, key: str) -> Optional[str]:
        row = self.query_one("SELECT value FROM config WHERE key = ?", (key,))
        if row is None:
            return None
        value = row.get("value")
        return None if value is None else str(value)

    def set_config(self, key: str, value: str) -> None:
        self.execute("INSERT OR REPLACE INTO config (key, value) VALUES (?, ?)", (key, str(value)))

    def delete_config(self, key: str) -> None:
        self.execute("DELETE FROM config WHERE key = ?", (key,))

    def get_config_bool(self, key: str, *, default: bool = False) -> bool:
        return coerce_bool(self.get_config(key), default=default)

    def get_config_int(self, key: str, *, default: int = 0) -> int:
        return coerce_int(self.get_config(key), default=default)


def _split_script(script: str) -> List[str]:
    return [s.strip() for s in script.split(";") if s.strip()]


def open_store(path: Optional[Path] = None) -> Store:
    return Store(path)
