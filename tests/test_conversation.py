from __future__ import annotations

import asyncio
import tempfile
import unittest
from datetime import timedelta
from pathlib import Path
from typing import Any, Sequence

from streambot.conversation import Conversation, InboundMessage
from streambot.llm import LLMError
from streambot.memory.engine import MemoryEngine
from streambot.memory.turn_store import Turn, TurnStore, utcnow
from streambot.memory.user_context import UserContextStore
from streambot.profile import DEFAULT_IMAGE_PROMPT, BotPaths, BotProfile, EngineConfig
from streambot.session.distiller import ContextDistiller
from streambot.session.resolver import SessionResolver

CONTEXT_SUMMARY = "Prefers short answers and asked about cooking options."


class FakeMessenger:
    def __init__(self) -> None:
        self.calls: list[tuple] = []

    async def send_message(self, text: str, suggestions: Sequence[str] | None = None) -> bool:
        self.calls.append(("message", text, tuple(suggestions or ())))
        return True

    async def send_photo(self, url: str, caption: str = "") -> bool:
        self.calls.append(("photo", url, caption))
        return True

    async def send_typing(self) -> None:
        self.calls.append(("typing",))


class FakeModel:
    def __init__(self, reply: str = "Sure thing.") -> None:
        self.reply = reply
        self.stream_error: Exception | None = None
        self.requests: list[list[dict[str, Any]]] = []
        self.prompts: list[str] = []

    async def stream(self, messages: list[dict[str, Any]]):
        self.requests.append(messages)
        if self.stream_error is not None:
            raise self.stream_error
        for line in self.reply.splitlines(keepends=True):
            await asyncio.sleep(0)
            yield line

    async def summarize(self, prompt: str) -> str:
        self.prompts.append(prompt)
        return CONTEXT_SUMMARY


class ConversationTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        base = Path(self._tmp.name)
        self.engine = MemoryEngine(base / "memory.db")
        self.engine.initialize()
        conn = self.engine.connect()
        self.turns = TurnStore(conn)
        self.contexts = UserContextStore(conn)
        self.model = FakeModel()
        self.conversation = self._conversation(EngineConfig())
        self.scope = self.conversation.scope_for(1001)
        self.messenger = FakeMessenger()

    def tearDown(self) -> None:
        self.engine.close()
        self._tmp.cleanup()

    def _conversation(self, engine: EngineConfig, **profile_fields: Any) -> Conversation:
        base = Path(self._tmp.name)
        profile = BotProfile(
            name="generic",
            display_name="Generic Bot",
            account="owner@example.com",
            instructions="You are a helpful assistant.",
            paths=BotPaths(base_data_dir=base, db_path=base / "memory.db", secrets_dir=base / "secrets"),
            engine=engine,
            **profile_fields,
        )
        distiller = ContextDistiller(self.turns, self.contexts, self.model, engine)
        resolver = SessionResolver(self.turns, distiller, engine)
        return Conversation(profile, self.turns, self.contexts, resolver, distiller, self.model)

    def _inbound(self, text: str, attachment_url: str | None = None) -> InboundMessage:
        return InboundMessage(scope=self.scope, user_id="42", text=text, attachment_url=attachment_url)

    def test_scope_for_uses_profile_identity(self) -> None:
        self.assertEqual(self.scope.account, "owner@example.com")
        self.assertEqual(self.scope.conversation, "1001")
        self.assertEqual(self.scope.bot, "generic")

    async def test_expired_session_is_distilled_before_reply(self) -> None:
        seeded_at = utcnow() - timedelta(hours=30)
        self.turns.append(self.scope, Turn(role="user", text="hi", session=1, user_id="42", created_at=seeded_at))
        self.turns.append(
            self.scope,
            Turn(
                role="assistant",
                text="TG_CONCLUSION How can I help?;Option A;Option B",
                session=1,
                user_id="42",
                created_at=seeded_at + timedelta(seconds=5),
            ),
        )

        await self.conversation.handle_message(self._inbound("what's for dinner?"), self.messenger)

        self.assertEqual(len(self.model.prompts), 1)
        self.assertIn("user: hi\nassistant: TG_CONCLUSION How can I help?;Option A;Option B", self.model.prompts[0])
        self.assertEqual(self.contexts.get("owner@example.com", "42"), CONTEXT_SUMMARY)

        messages = self.model.requests[0]
        self.assertEqual(len(messages), 2)
        self.assertIn(CONTEXT_SUMMARY, messages[0]["content"])
        self.assertEqual(messages[1], {"role": "user", "content": "what's for dinner?"})

        stored = self.turns.in_session(self.scope, 2)
        self.assertEqual([(t.role, t.text) for t in stored], [("user", "what's for dinner?"), ("assistant", "Sure thing.")])

    async def test_history_is_sent_in_order_and_limited(self) -> None:
        conversation = self._conversation(EngineConfig(history_limit=2))
        for text in ("one", "two", "three"):
            await conversation.handle_message(self._inbound(text), self.messenger)

        messages = self.model.requests[-1]
        self.assertEqual(messages[0], {"role": "system", "content": "You are a helpful assistant."})
        self.assertEqual(
            messages[1:],
            [
                {"role": "user", "content": "two"},
                {"role": "assistant", "content": "Sure thing."},
                {"role": "user", "content": "three"},
            ],
        )

    async def test_reply_is_dispatched_with_typing_first(self) -> None:
        self.model.reply = "Hello!\nTG_CONCLUSION Anything else?;Yes;No"
        result = await self.conversation.handle_message(self._inbound("hi"), self.messenger)
        self.assertEqual(
            self.messenger.calls,
            [
                ("typing",),
                ("message", "Hello!", ()),
                ("typing",),
                ("message", "Anything else?", ("Yes", "No")),
            ],
        )
        self.assertEqual(result.lines, 2)
        stored = self.turns.latest(self.scope)
        self.assertEqual(stored.text, "Hello!\nTG_CONCLUSION Anything else?;Yes;No")

    async def test_clear_distills_once_and_starts_new_session(self) -> None:
        await self.conversation.handle_message(self._inbound("I only eat fish"), self.messenger)

        closed = await self.conversation.clear(self.scope, "42")
        self.assertEqual(closed, 1)
        self.assertEqual(len(self.model.prompts), 1)
        self.assertEqual(self.turns.latest(self.scope).text, "/clear")

        await self.conversation.handle_message(self._inbound("new topic"), self.messenger)
        self.assertEqual(len(self.model.prompts), 1)
        self.assertEqual(self.turns.latest(self.scope).session, 2)
        self.assertEqual(self.model.requests[-1][1:], [{"role": "user", "content": "new topic"}])

    async def test_clear_without_turns_is_a_no_op(self) -> None:
        self.assertIsNone(await self.conversation.clear(self.scope, "42"))
        self.assertIsNone(self.turns.latest(self.scope))
        self.assertEqual(self.model.prompts, [])

    async def test_clear_twice_does_not_close_empty_session(self) -> None:
        await self.conversation.handle_message(self._inbound("hello"), self.messenger)
        self.assertEqual(await self.conversation.clear(self.scope, "42"), 1)
        self.assertIsNone(await self.conversation.clear(self.scope, "42"))

    async def test_stream_failure_stores_error_notice(self) -> None:
        self.model.stream_error = LLMError("LLM API HTTP 500")
        result = await self.conversation.handle_message(self._inbound("hi"), self.messenger)
        self.assertTrue(result.failed)
        notice = EngineConfig().error_notice
        self.assertIn(("message", notice, ()), self.messenger.calls)
        stored = self.turns.in_session(self.scope, 1)
        self.assertEqual([(t.role, t.text) for t in stored], [("user", "hi"), ("assistant", notice)])

    async def test_photo_becomes_multimodal_message(self) -> None:
        url = "https://api.telegram.org/file/botTOKEN/photos/file_1.jpg"
        await self.conversation.handle_message(self._inbound("", attachment_url=url), self.messenger)

        content = self.model.requests[0][-1]["content"]
        self.assertEqual(
            content,
            [
                {"type": "text", "text": DEFAULT_IMAGE_PROMPT},
                {"type": "image_url", "image_url": {"url": url}},
            ],
        )
        first = self.turns.in_session(self.scope, 1)[0]
        self.assertEqual(first.text, DEFAULT_IMAGE_PROMPT)
        self.assertEqual(first.attachment_url, url)

    async def test_profile_image_prompt_replaces_default(self) -> None:
        prompt = "What dish is this? I'll help you recreate it or suggest similar recipes!"
        conversation = self._conversation(EngineConfig(), image_prompt=prompt)
        url = "https://api.telegram.org/file/botTOKEN/photos/dish.jpg"
        await conversation.handle_message(self._inbound("", attachment_url=url), self.messenger)

        self.assertEqual(self.model.requests[0][-1]["content"][0], {"type": "text", "text": prompt})
        self.assertEqual(self.turns.in_session(self.scope, 1)[0].text, prompt)

    async def test_hanging_typing_indicator_does_not_block_reply(self) -> None:
        class StuckTypingMessenger(FakeMessenger):
            async def send_typing(self) -> None:
                await asyncio.sleep(3600)

        messenger = StuckTypingMessenger()
        conversation = self._conversation(EngineConfig(send_timeout_seconds=0.05))
        result = await asyncio.wait_for(conversation.handle_message(self._inbound("hi"), messenger), timeout=5)

        self.assertFalse(result.failed)
        self.assertEqual(messenger.calls, [("message", "Sure thing.", ())])
        self.assertEqual(self.turns.latest(self.scope).text, "Sure thing.")

    async def test_concurrent_messages_in_one_scope_are_serialised(self) -> None:
        await asyncio.gather(
            self.conversation.handle_message(self._inbound("first"), self.messenger),
            self.conversation.handle_message(self._inbound("second"), self.messenger),
        )
        stored = [(t.role, t.text) for t in self.turns.in_session(self.scope, 1)]
        self.assertEqual(
            stored,
            [
                ("user", "first"),
                ("assistant", "Sure thing."),
                ("user", "second"),
                ("assistant", "Sure thing."),
            ],
        )


if __name__ == "__main__":
    unittest.main()
