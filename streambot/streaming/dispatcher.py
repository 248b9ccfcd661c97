"""Turn a streamed model reply into ordered Messenger calls."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterable, Awaitable

from streambot.messenger import Messenger
from streambot.profile import EngineConfig
from streambot.streaming.grammar import (
    Command,
    ConclusionCommand,
    ImageCommand,
    TextLine,
    classify_line,
)

logger = logging.getLogger(__name__)


class LineBuffer:
    """Reassembles arbitrary chunks into newline-terminated lines."""

    def __init__(self) -> None:
        self.pending = ""
        self.text = ""

    def feed(self, chunk: str) -> list[str]:
        self.text += chunk
        self.pending += chunk
        *completed, self.pending = self.pending.split("\n")
        return completed

    def flush(self) -> str | None:
        tail, self.pending = self.pending, ""
        return tail if tail.strip() else None


@dataclass(frozen=True)
class DispatchResult:
    text: str
    lines: int
    failed: bool = False


class StreamDispatcher:
    """Consumes one reply stream; owns its LineBuffer for the duration of `run`."""

    def __init__(self, messenger: Messenger, config: EngineConfig) -> None:
        self._messenger = messenger
        self._config = config

    async def run(self, chunks: AsyncIterable[str]) -> DispatchResult:
        buffer = LineBuffer()
        dispatched = 0
        try:
            async for chunk in chunks:
                if not chunk:
                    continue
                for line in buffer.feed(chunk):
                    dispatched += await self.dispatch_line(line)
        except Exception as exc:
            logger.error(
                "Reply stream failed after %d line(s), %d char(s): %s", dispatched, len(buffer.text), exc
            )
            await self._guarded(self._messenger.send_message(self._config.error_notice), "error notice")
            return DispatchResult(text=buffer.text, lines=dispatched, failed=True)

        tail = buffer.flush()
        if tail is not None:
            dispatched += await self.dispatch_line(tail)
        return DispatchResult(text=buffer.text, lines=dispatched)

    async def dispatch_line(self, line: str) -> bool:
        """Execute one line. Returns False for blank lines."""
        command = classify_line(line, self._config.conclusion_prefix)
        if command is None:
            return False
        await self.execute(command)
        return True

    async def execute(self, command: Command) -> None:
        if isinstance(command, ImageCommand):
            logger.info("Sending photo %s", command.url)
            await self._guarded(self._messenger.send_photo(command.url, command.caption), "photo")
            await self.typing()
        elif isinstance(command, ConclusionCommand):
            logger.info("Sending conclusion with %d suggestion(s)", len(command.suggestions))
            await self._guarded(
                self._messenger.send_message(command.body, list(command.suggestions)), "conclusion"
            )
        elif isinstance(command, TextLine):
            await self._guarded(self._messenger.send_message(command.text), "text")
            await self.typing()

    async def _guarded(self, call: Awaitable[bool], what: str) -> bool:
        try:
            ok = await asyncio.wait_for(call, timeout=self._config.send_timeout_seconds)
        except asyncio.TimeoutError:
            logger.error("Sending %s timed out after %ss", what, self._config.send_timeout_seconds)
            return False
        except Exception as exc:
            logger.error("Sending %s failed: %s", what, exc)
            return False
        if not ok:
            logger.warning("Sending %s was rejected", what)
        return bool(ok)

    async def typing(self) -> None:
        """Show the typing indicator; bounded by the send timeout and never raises."""
        try:
            await asyncio.wait_for(self._messenger.send_typing(), timeout=self._config.send_timeout_seconds)
        except Exception as exc:
            logger.debug("Typing indicator failed: %s", exc)
