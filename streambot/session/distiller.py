"""Condense a closed session into the user's persisted running context."""

from __future__ import annotations

import logging
from typing import Protocol

from streambot.memory.turn_store import Scope, Turn, TurnStore
from streambot.memory.user_context import UserContextStore
from streambot.profile import EngineConfig

logger = logging.getLogger(__name__)

DISTILL_PROMPT = """You are updating what an assistant remembers about a user between conversations.

1. Start from the current user context (if any).
2. Read the conversation and pick out new facts: preferences and interests, constraints and
   specific needs, communication style, goals and the user's situation.
3. Merge them into the context, keeping existing details that are still relevant and dropping
   anything the conversation contradicts.

Current user context:
{context}

Conversation:
{transcript}

Return ONLY the updated context text, nothing else. Keep it under {word_target} words and
focus on facts that would help future conversations."""


class Summarizer(Protocol):
    async def summarize(self, prompt: str) -> str: ...


def render_transcript(turns: list[Turn]) -> str:
    return "\n".join(f"{turn.role}: {turn.text}" for turn in turns)


class ContextDistiller:
    def __init__(
        self,
        turns: TurnStore,
        contexts: UserContextStore,
        model: Summarizer,
        config: EngineConfig,
    ) -> None:
        self._turns = turns
        self._contexts = contexts
        self._model = model
        self._config = config

    def build_prompt(self, current_context: str, turns: list[Turn]) -> str:
        return DISTILL_PROMPT.format(
            context=current_context or "No previous context",
            transcript=render_transcript(turns),
            word_target=self._config.context_word_target,
        )

    async def distill(self, scope: Scope, user_id: str, session: int) -> bool:
        """Merge `session` into the user's context. Advisory: never raises."""
        try:
            if self._contexts.is_distilled(scope, session):
                logger.info("Session %d of %s already distilled", session, scope)
                return False
            current = self._contexts.get(scope.account, user_id)
            turns = self._turns.in_session(scope, session, exclude_text=self._config.reset_marker)
            if not turns:
                logger.info("No turns to distill in session %d of %s", session, scope)
                return False
            updated = (await self._model.summarize(self.build_prompt(current, turns)) or "").strip()
            if len(updated) <= self._config.min_context_chars:
                logger.info("Distillation of session %d produced no usable context", session)
                return False
            self._contexts.set(scope.account, user_id, updated)
            self._contexts.mark_distilled(scope, session)
        except Exception as exc:
            logger.error("Distilling session %d of %s failed: %s", session, scope, exc)
            return False
        logger.info("Distilled session %d of %s into %d chars of context", session, scope, len(updated))
        return True
