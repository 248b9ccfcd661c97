"""SQLite memory engine and schema management."""

from __future__ import annotations

import sqlite3
from pathlib import Path


class MemoryEngine:
    """Owns the SQLite connection and table lifecycle."""

    def __init__(self, db_path: Path | str) -> None:
        self._db_path = Path(db_path)
        self._conn: sqlite3.Connection | None = None

    @property
    def db_path(self) -> Path:
        return self._db_path

    def connect(self) -> sqlite3.Connection:
        if self._conn is None:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self._db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
        return self._conn

    def initialize(self) -> None:
        conn = self.connect()
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS turns (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                account TEXT NOT NULL,
                conversation TEXT NOT NULL,
                bot TEXT NOT NULL,
                user_id TEXT NOT NULL,
                session INTEGER NOT NULL DEFAULT 1,
                role TEXT NOT NULL,
                text TEXT NOT NULL,
                attachment_url TEXT,
                created_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_turns_scope_created
            ON turns(account, conversation, bot, created_at DESC, id DESC);

            CREATE INDEX IF NOT EXISTS idx_turns_scope_session
            ON turns(account, conversation, bot, session);

            CREATE TABLE IF NOT EXISTS user_context (
                account TEXT NOT NULL,
                user_id TEXT NOT NULL,
                context TEXT NOT NULL DEFAULT '',
                updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
                PRIMARY KEY (account, user_id)
            );

            CREATE TABLE IF NOT EXISTS distilled_sessions (
                account TEXT NOT NULL,
                conversation TEXT NOT NULL,
                bot TEXT NOT NULL,
                session INTEGER NOT NULL,
                created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
                PRIMARY KEY (account, conversation, bot, session)
            );

            CREATE TABLE IF NOT EXISTS episodic_memory (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                event_type TEXT NOT NULL,
                decision TEXT,
                payload TEXT NOT NULL,
                created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
            );
            """
        )
        conn.commit()

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
