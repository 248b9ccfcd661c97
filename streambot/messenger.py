"""Outbound messaging surface used by the stream dispatcher."""

from __future__ import annotations

import logging
from typing import Protocol, Sequence

from telegram import Bot, KeyboardButton, ReplyKeyboardMarkup
from telegram.constants import ChatAction
from telegram.error import TelegramError

MAX_TELEGRAM_MESSAGE_LEN = 3900
MAX_TELEGRAM_CAPTION_LEN = 1000

logger = logging.getLogger(__name__)


def _truncate(text: str, limit: int = MAX_TELEGRAM_MESSAGE_LEN) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


class Messenger(Protocol):
    """Sends to one chat. Each call may fail independently."""

    async def send_message(self, text: str, suggestions: Sequence[str] | None = None) -> bool: ...

    async def send_photo(self, url: str, caption: str = "") -> bool: ...

    async def send_typing(self) -> None: ...


def suggestion_keyboard(suggestions: Sequence[str]) -> ReplyKeyboardMarkup:
    """One suggestion per row, hidden after use, resized to fit."""
    return ReplyKeyboardMarkup(
        [[KeyboardButton(label)] for label in suggestions],
        resize_keyboard=True,
        one_time_keyboard=True,
    )


class TelegramMessenger:
    def __init__(self, bot: Bot, chat_id: int, *, parse_mode: str | None = "HTML") -> None:
        self._bot = bot
        self._chat_id = chat_id
        self._parse_mode = parse_mode

    @property
    def chat_id(self) -> int:
        return self._chat_id

    async def send_message(self, text: str, suggestions: Sequence[str] | None = None) -> bool:
        try:
            await self._bot.send_message(
                chat_id=self._chat_id,
                text=_truncate(text),
                parse_mode=self._parse_mode,
                reply_markup=suggestion_keyboard(suggestions) if suggestions else None,
            )
        except TelegramError as exc:
            logger.error("sendMessage to chat %s failed: %s", self._chat_id, exc)
            return False
        return True

    async def send_photo(self, url: str, caption: str = "") -> bool:
        try:
            await self._bot.send_photo(
                chat_id=self._chat_id,
                photo=url,
                caption=_truncate(caption, MAX_TELEGRAM_CAPTION_LEN) if caption else None,
                parse_mode=self._parse_mode,
            )
        except TelegramError as exc:
            logger.error("sendPhoto to chat %s failed (%s): %s", self._chat_id, url, exc)
            return False
        return True

    async def send_typing(self) -> None:
        try:
            await self._bot.send_chat_action(chat_id=self._chat_id, action=ChatAction.TYPING)
        except TelegramError as exc:
            logger.debug("sendChatAction to chat %s failed: %s", self._chat_id, exc)
