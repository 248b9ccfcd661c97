"""Per-user running context and distillation bookkeeping."""

from __future__ import annotations

import sqlite3

from streambot.memory.turn_store import Scope


class UserContextStore:
    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def get(self, account: str, user_id: str) -> str:
        row = self._conn.execute(
            "SELECT context FROM user_context WHERE account = ? AND user_id = ?",
            (account, user_id),
        ).fetchone()
        return "" if row is None else str(row["context"])

    def set(self, account: str, user_id: str, text: str) -> None:
        self._conn.execute(
            """
            INSERT INTO user_context (account, user_id, context, updated_at)
            VALUES (?, ?, ?, CURRENT_TIMESTAMP)
            ON CONFLICT(account, user_id) DO UPDATE SET
                context=excluded.context,
                updated_at=CURRENT_TIMESTAMP
            """,
            (account, user_id, text),
        )
        self._conn.commit()

    def is_distilled(self, scope: Scope, session: int) -> bool:
        row = self._conn.execute(
            """
            SELECT 1 FROM distilled_sessions
            WHERE account = ? AND conversation = ? AND bot = ? AND session = ?
            """,
            (scope.account, scope.conversation, scope.bot, session),
        ).fetchone()
        return row is not None

    def mark_distilled(self, scope: Scope, session: int) -> None:
        self._conn.execute(
            """
            INSERT OR IGNORE INTO distilled_sessions (account, conversation, bot, session)
            VALUES (?, ?, ?, ?)
            """,
            (scope.account, scope.conversation, scope.bot, session),
        )
        self._conn.commit()
