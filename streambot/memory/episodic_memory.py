"""Episodic memory store for bot event history."""

from __future__ import annotations

import json
import sqlite3
from typing import Any


class EpisodicMemoryStore:
    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def record(
        self,
        event_type: str,
        payload: dict[str, Any],
        *,
        decision: str | None = None,
    ) -> int:
        cursor = self._conn.execute(
            """
            INSERT INTO episodic_memory (event_type, decision, payload)
            VALUES (?, ?, ?)
            """,
            (event_type, decision, json.dumps(payload, ensure_ascii=True, default=str)),
        )
        self._conn.commit()
        return int(cursor.lastrowid)

    def latest(self, limit: int = 50, *, event_type: str | None = None) -> list[dict[str, Any]]:
        if event_type is None:
            rows = self._conn.execute(
                """
                SELECT id, event_type, decision, payload, created_at
                FROM episodic_memory
                ORDER BY id DESC
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
        else:
            rows = self._conn.execute(
                """
                SELECT id, event_type, decision, payload, created_at
                FROM episodic_memory
                WHERE event_type = ?
                ORDER BY id DESC
                LIMIT ?
                """,
                (event_type, limit),
            ).fetchall()

        events: list[dict[str, Any]] = []
        for row in rows:
            event = dict(row)
            event["payload"] = json.loads(event["payload"])
            events.append(event)
        return events
