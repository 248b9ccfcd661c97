"""Persistent turn log keyed by (account, conversation, bot, session)."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any


@dataclass(frozen=True)
class Scope:
    """The (account, conversation, bot) tuple bounding a session sequence."""

    account: str
    conversation: str
    bot: str


@dataclass(frozen=True)
class Turn:
    role: str
    text: str
    session: int
    user_id: str = ""
    attachment_url: str | None = None
    created_at: datetime | None = None
    id: int | None = None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_db_time(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_db_time(raw: str) -> datetime:
    value = datetime.fromisoformat(raw)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def _row_to_turn(row: sqlite3.Row) -> Turn:
    return Turn(
        id=int(row["id"]),
        role=str(row["role"]),
        text=str(row["text"]),
        session=int(row["session"]),
        user_id=str(row["user_id"]),
        attachment_url=row["attachment_url"],
        created_at=_from_db_time(row["created_at"]),
    )


class TurnStore:
    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def append(self, scope: Scope, turn: Turn) -> int:
        if turn.session < 1:
            raise ValueError(f"session must be >= 1, got {turn.session}")
        cursor = self._conn.execute(
            """
            INSERT INTO turns (
                account, conversation, bot, user_id, session, role, text, attachment_url, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                scope.account,
                scope.conversation,
                scope.bot,
                turn.user_id,
                turn.session,
                turn.role,
                turn.text,
                turn.attachment_url,
                _to_db_time(turn.created_at or utcnow()),
            ),
        )
        self._conn.commit()
        return int(cursor.lastrowid)

    def latest(self, scope: Scope) -> Turn | None:
        row = self._conn.execute(
            """
            SELECT id, user_id, session, role, text, attachment_url, created_at
            FROM turns
            WHERE account = ? AND conversation = ? AND bot = ?
            ORDER BY created_at DESC, id DESC
            LIMIT 1
            """,
            (scope.account, scope.conversation, scope.bot),
        ).fetchone()
        return None if row is None else _row_to_turn(row)

    def in_session(
        self,
        scope: Scope,
        session: int,
        *,
        exclude_text: str | None = None,
        limit: int | None = None,
    ) -> list[Turn]:
        """Return the session's turns oldest first; with limit, the newest `limit` of them."""
        where = "WHERE account = ? AND conversation = ? AND bot = ? AND session = ?"
        params: list[Any] = [scope.account, scope.conversation, scope.bot, session]
        if exclude_text is not None:
            where += " AND text != ?"
            params.append(exclude_text)
        query = f"""
            SELECT id, user_id, session, role, text, attachment_url, created_at
            FROM turns
            {where}
            ORDER BY created_at DESC, id DESC
        """
        if limit is not None:
            query += " LIMIT ?"
            params.append(max(1, int(limit)))
        rows = self._conn.execute(query, params).fetchall()
        return [_row_to_turn(row) for row in reversed(rows)]
