"""Pick the session number an inbound message belongs to."""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from typing import Callable

from streambot.memory.turn_store import Scope, Turn, TurnStore, utcnow
from streambot.profile import EngineConfig
from streambot.session.distiller import ContextDistiller

logger = logging.getLogger(__name__)


class SessionResolver:
    def __init__(
        self,
        turns: TurnStore,
        distiller: ContextDistiller,
        config: EngineConfig,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._turns = turns
        self._distiller = distiller
        self._config = config
        self._clock = clock

    def _latest(self, scope: Scope) -> Turn | None:
        try:
            return self._turns.latest(scope)
        except sqlite3.Error as exc:
            logger.error("Reading latest turn for %s failed, assuming none: %s", scope, exc)
            return None

    async def resolve(self, scope: Scope, user_id: str) -> int:
        latest = self._latest(scope)
        if latest is None or latest.created_at is None:
            return 1

        hours_elapsed = (self._clock() - latest.created_at).total_seconds() / 3600
        was_reset = latest.text == self._config.reset_marker
        if not was_reset and hours_elapsed <= self._config.session_timeout_hours:
            return latest.session

        next_session = latest.session + 1
        logger.info(
            "Rolling %s over to session %d (%s, %.1fh since last turn)",
            scope,
            next_session,
            "reset" if was_reset else "expired",
            hours_elapsed,
        )
        if not was_reset:
            try:
                await self._distiller.distill(scope, user_id, latest.session)
            except Exception as exc:
                logger.error("Distillation for expired session %d failed: %s", latest.session, exc)
        return next_session
