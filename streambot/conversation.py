"""One conversation turn, from inbound message to persisted reply."""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import weakref
from dataclasses import dataclass
from typing import Any, AsyncIterator, Protocol

from streambot.memory.turn_store import Scope, Turn, TurnStore
from streambot.memory.user_context import UserContextStore
from streambot.messenger import Messenger
from streambot.profile import BotProfile
from streambot.session.distiller import ContextDistiller
from streambot.session.resolver import SessionResolver
from streambot.streaming.dispatcher import DispatchResult, StreamDispatcher

logger = logging.getLogger(__name__)


class ReplyModel(Protocol):
    def stream(self, messages: list[dict[str, Any]]) -> AsyncIterator[str]: ...


@dataclass(frozen=True)
class InboundMessage:
    scope: Scope
    user_id: str
    text: str
    attachment_url: str | None = None


class Conversation:
    """Runs turns for one bot; turns within a scope are serialised."""

    def __init__(
        self,
        profile: BotProfile,
        turns: TurnStore,
        contexts: UserContextStore,
        resolver: SessionResolver,
        distiller: ContextDistiller,
        model: ReplyModel,
    ) -> None:
        self._profile = profile
        self._config = profile.engine
        self._turns = turns
        self._contexts = contexts
        self._resolver = resolver
        self._distiller = distiller
        self._model = model
        self._locks: weakref.WeakValueDictionary[Scope, asyncio.Lock] = weakref.WeakValueDictionary()

    def scope_for(self, conversation: int | str) -> Scope:
        return Scope(account=self._profile.account, conversation=str(conversation), bot=self._profile.name)

    def _lock(self, scope: Scope) -> asyncio.Lock:
        lock = self._locks.get(scope)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[scope] = lock
        return lock

    def _system_prompt(self, user_id: str) -> str:
        try:
            user_context = self._contexts.get(self._profile.account, user_id)
        except sqlite3.Error as exc:
            logger.error("Reading user context failed: %s", exc)
            user_context = ""
        if not user_context:
            return self._profile.instructions
        return f"{self._profile.instructions}\n\nWhat you know about this user from earlier conversations:\n{user_context}"

    def _history(self, scope: Scope, session: int) -> list[Turn]:
        try:
            return self._turns.in_session(
                scope,
                session,
                exclude_text=self._config.reset_marker,
                limit=self._config.history_limit,
            )
        except sqlite3.Error as exc:
            logger.error("Loading history for %s session %d failed: %s", scope, session, exc)
            return []

    def _append(self, scope: Scope, turn: Turn) -> None:
        try:
            self._turns.append(scope, turn)
        except sqlite3.Error as exc:
            logger.error("Appending %s turn for %s failed: %s", turn.role, scope, exc)

    def build_messages(self, system_prompt: str, history: list[Turn], inbound: InboundMessage) -> list[dict[str, Any]]:
        messages: list[dict[str, Any]] = [{"role": "system", "content": system_prompt}]
        for turn in history:
            messages.append({"role": turn.role, "content": turn.text})
        text = inbound.text or (self._profile.image_prompt if inbound.attachment_url else "")
        if inbound.attachment_url:
            messages.append(
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": text},
                        {"type": "image_url", "image_url": {"url": inbound.attachment_url}},
                    ],
                }
            )
        else:
            messages.append({"role": "user", "content": text})
        return messages

    async def handle_message(self, inbound: InboundMessage, messenger: Messenger) -> DispatchResult:
        async with self._lock(inbound.scope):
            session = await self._resolver.resolve(inbound.scope, inbound.user_id)
            history = self._history(inbound.scope, session)
            messages = self.build_messages(self._system_prompt(inbound.user_id), history, inbound)
            self._append(
                inbound.scope,
                Turn(
                    role="user",
                    text=inbound.text or self._profile.image_prompt,
                    session=session,
                    user_id=inbound.user_id,
                    attachment_url=inbound.attachment_url,
                ),
            )

            dispatcher = StreamDispatcher(messenger, self._config)
            await dispatcher.typing()
            result = await dispatcher.run(self._model.stream(messages))

            reply_text = result.text
            if result.failed and not reply_text.strip():
                reply_text = self._config.error_notice
            if reply_text.strip():
                self._append(
                    inbound.scope,
                    Turn(role="assistant", text=reply_text, session=session, user_id=inbound.user_id),
                )
            logger.info(
                "Handled message in %s session %d: %d line(s)%s",
                inbound.scope,
                session,
                result.lines,
                " (stream failed)" if result.failed else "",
            )
            return result

    async def clear(self, scope: Scope, user_id: str) -> int | None:
        """Distill the current session, then close it with the reset marker.

        Returns the closed session number, or None when the current session
        has no turns yet and there is nothing to close.
        """
        async with self._lock(scope):
            session = await self._resolver.resolve(scope, user_id)
            if not self._history(scope, session):
                return None
            await self._distiller.distill(scope, user_id, session)
            self._append(
                scope,
                Turn(role="user", text=self._config.reset_marker, session=session, user_id=user_id),
            )
            return session
