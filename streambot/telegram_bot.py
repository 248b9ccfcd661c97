"""Telegram front end: routes updates into conversation turns using python-telegram-bot."""

from __future__ import annotations

import html
import logging
import time
from typing import Any

from telegram import BotCommand, Update
from telegram.ext import (
    Application,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from streambot.conversation import Conversation, InboundMessage
from streambot.memory.episodic_memory import EpisodicMemoryStore
from streambot.messenger import TelegramMessenger
from streambot.profile import BotProfile, personalize

UNKNOWN_COMMAND_REPLY = "Unknown command. Use /help to see available commands."
CLEARED_REPLY = "✨ Conversation history cleared! Let's start fresh."
UNSUPPORTED_REPLY = "Unsupported message type. Send text, a photo, or /help."

logger = logging.getLogger(__name__)


class TelegramBot:
    def __init__(
        self,
        profile: BotProfile,
        conversation: Conversation,
        episodic_memory: EpisodicMemoryStore,
        token: str,
    ) -> None:
        self._profile = profile
        self._conversation = conversation
        self._episodic = episodic_memory
        self._token = token
        self._started_at = 0.0
        self._app: Application | None = None

    def _record(self, event_type: str, payload: dict[str, Any], decision: str = "allow") -> None:
        try:
            self._episodic.record(event_type, {"bot": self._profile.name, **payload}, decision=decision)
        except Exception as exc:
            logger.error("Recording %s event failed: %s", event_type, exc)

    def _messenger(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> TelegramMessenger:
        return TelegramMessenger(context.bot, update.effective_chat.id, parse_mode=self._profile.parse_mode)

    def _inbound(self, update: Update, text: str, attachment_url: str | None = None) -> InboundMessage:
        user = update.effective_user
        return InboundMessage(
            scope=self._conversation.scope_for(update.effective_chat.id),
            user_id=str(user.id if user else update.effective_chat.id),
            text=text,
            attachment_url=attachment_url,
        )

    def build_application(self) -> Application:
        self._app = (
            Application.builder()
            .token(self._token)
            .concurrent_updates(True)
            .post_init(self._post_init)
            .build()
        )
        self._setup_handlers()
        return self._app

    def start(self) -> None:
        """Run until interrupted; webhook mode when the profile has a webhook_url."""
        app = self.build_application()
        self._started_at = time.time()
        self._record(
            "telegram_bot_started",
            {
                "mode": "webhook" if self._profile.webhook_url else "polling",
                "command_grammar": self._profile.engine.command_grammar,
                "tools": list(self._profile.tools),
            },
        )
        try:
            if self._profile.webhook_url:
                app.run_webhook(
                    listen="0.0.0.0",
                    port=8443,
                    webhook_url=self._profile.webhook_url,
                    allowed_updates=Update.ALL_TYPES,
                )
            else:
                app.run_polling(drop_pending_updates=False, allowed_updates=Update.ALL_TYPES)
        finally:
            self._record("telegram_bot_stopped", {"uptime": int(time.time() - self._started_at)})
            self._app = None

    async def _post_init(self, app: Application) -> None:
        commands = [
            BotCommand("start", "Get started"),
            BotCommand("help", "Show help"),
            BotCommand("clear", "Start a new conversation"),
        ]
        commands.extend(BotCommand(name, f"{self._profile.display_name}: {name}") for name in self._profile.commands)
        await app.bot.set_my_commands(commands)

    def _setup_handlers(self) -> None:
        assert self._app is not None
        self._app.add_handler(CommandHandler("start", self._cmd_start, block=False))
        self._app.add_handler(CommandHandler("help", self._cmd_help, block=False))
        self._app.add_handler(CommandHandler("clear", self._cmd_clear, block=False))
        for name in self._profile.commands:
            self._app.add_handler(CommandHandler(name, self._cmd_static, block=False))
        self._app.add_handler(MessageHandler(filters.COMMAND, self._cmd_unknown, block=False))
        self._app.add_handler(
            MessageHandler(filters.TEXT & ~filters.COMMAND, self._handle_text, block=False)
        )
        self._app.add_handler(
            MessageHandler(filters.PHOTO | filters.Document.IMAGE, self._handle_photo, block=False)
        )
        self._app.add_handler(
            MessageHandler(~filters.TEXT & ~filters.COMMAND, self._handle_unsupported, block=False)
        )
        self._app.add_error_handler(self._on_error)

    async def _cmd_start(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        user = update.effective_user
        user_name = user.first_name if user else None
        if user_name and self._profile.parse_mode == "HTML":
            user_name = html.escape(user_name)
        welcome = personalize(self._profile.welcome_message, self._profile.display_name, user_name)
        await self._messenger(update, context).send_message(welcome)
        inbound = self._inbound(update, "/start")
        closed = await self._conversation.clear(inbound.scope, inbound.user_id)
        self._record(
            "telegram_command_handled",
            {"chat_id": update.effective_chat.id, "command": "start", "closed_session": closed},
        )

    async def _cmd_help(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        await self._messenger(update, context).send_message(
            personalize(self._profile.help_message, self._profile.display_name)
        )
        self._record("telegram_command_handled", {"chat_id": update.effective_chat.id, "command": "help"})

    async def _cmd_clear(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        inbound = self._inbound(update, "/clear")
        closed = await self._conversation.clear(inbound.scope, inbound.user_id)
        await self._messenger(update, context).send_message(CLEARED_REPLY)
        self._record("session_cleared", {"chat_id": update.effective_chat.id, "closed_session": closed})

    async def _cmd_static(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        text = (update.effective_message.text or "").strip()
        name = text.split(maxsplit=1)[0].lstrip("/").split("@", 1)[0]
        reply = self._profile.commands.get(name)
        if reply is None:
            await self._cmd_unknown(update, context)
            return
        await self._messenger(update, context).send_message(
            personalize(reply, self._profile.display_name)
        )
        self._record("telegram_command_handled", {"chat_id": update.effective_chat.id, "command": name})

    async def _cmd_unknown(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        await self._messenger(update, context).send_message(UNKNOWN_COMMAND_REPLY)

    async def _handle_text(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        text = (update.effective_message.text or "").strip()
        if not text:
            return
        await self._run_turn(update, context, self._inbound(update, text))

    async def _handle_photo(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        message = update.effective_message
        if message.photo:
            file_id = message.photo[-1].file_id
        else:
            file_id = message.document.file_id
        file = await context.bot.get_file(file_id)
        caption = (message.caption or "").strip()
        await self._run_turn(update, context, self._inbound(update, caption, attachment_url=file.file_path))

    async def _run_turn(
        self,
        update: Update,
        context: ContextTypes.DEFAULT_TYPE,
        inbound: InboundMessage,
    ) -> None:
        result = await self._conversation.handle_message(inbound, self._messenger(update, context))
        self._record(
            "telegram_message_processed",
            {
                "chat_id": update.effective_chat.id,
                "text": inbound.text[:200],
                "has_attachment": inbound.attachment_url is not None,
                "lines": result.lines,
                "stream_failed": result.failed,
            },
            decision="deny" if result.failed else "allow",
        )

    async def _handle_unsupported(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        if update.effective_message and update.effective_chat:
            await self._messenger(update, context).send_message(UNSUPPORTED_REPLY)

    async def _on_error(self, update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
        logger.error("Update handling failed: %s", context.error, exc_info=context.error)
        chat_id = None
        if isinstance(update, Update) and update.effective_chat:
            chat_id = update.effective_chat.id
        self._record("telegram_update_error", {"chat_id": chat_id, "error": str(context.error)}, decision="deny")
        if chat_id is not None:
            await TelegramMessenger(context.bot, chat_id, parse_mode=None).send_message(
                self._profile.engine.error_notice
            )
