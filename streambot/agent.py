"""streambot runtime entry point."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from streambot.conversation import Conversation
from streambot.llm import DEFAULT_MODEL, ChatModel, read_secret
from streambot.memory.engine import MemoryEngine
from streambot.memory.episodic_memory import EpisodicMemoryStore
from streambot.memory.turn_store import TurnStore
from streambot.memory.user_context import UserContextStore
from streambot.profile import BotProfile, ProfileError, ensure_bot_directories, load_bot_profile
from streambot.session.distiller import ContextDistiller
from streambot.session.resolver import SessionResolver
from streambot.telegram_bot import TelegramBot
from streambot.tools.get_time_tool import GetTimeTool
from streambot.tools.registry import ToolRegistry

logger = logging.getLogger("streambot")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run a streambot Telegram bot")
    parser.add_argument("--bot", required=True, help="Bot profile name, e.g. generic")
    parser.add_argument(
        "--repo-root",
        default=None,
        help="Optional repo root override for config loading",
    )
    parser.add_argument(
        "--data-root",
        default=None,
        help="Optional data directory override (default: ~/botdata)",
    )
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO)")
    return parser


def build_tool_registry() -> ToolRegistry:
    return ToolRegistry([GetTimeTool()])


def build_chat_model(profile: BotProfile, registry: ToolRegistry) -> ChatModel:
    secrets = profile.paths.secrets_dir
    api_key = read_secret(secrets, "llm_api_key.txt") or read_secret(secrets, "openai_api_key.txt")
    if api_key is None:
        raise ProfileError(f"No LLM API key in {secrets} (llm_api_key.txt or openai_api_key.txt)")
    unknown = sorted(set(profile.tools).difference(registry.list_tools()))
    if unknown:
        raise ProfileError(f"Unknown tools in profile {profile.name}: {', '.join(unknown)}")
    timeout = profile.engine.llm_timeout_seconds
    timeout_raw = read_secret(secrets, "llm_timeout_seconds.txt")
    if timeout_raw and timeout_raw.isdigit():
        timeout = max(5, min(600, int(timeout_raw)))
    return ChatModel(
        api_key,
        base_url=read_secret(secrets, "llm_base_url.txt"),
        model=read_secret(secrets, "llm_model.txt") or DEFAULT_MODEL,
        registry=registry,
        tool_names=profile.tools,
        max_tool_steps=profile.engine.max_tool_steps,
        timeout=timeout,
    )


def main() -> int:
    args = build_parser().parse_args()
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # httpx logs every request URL at INFO, which includes the bot token.
    logging.getLogger("httpx").setLevel(logging.WARNING)

    repo_root = Path(args.repo_root).resolve() if args.repo_root else None
    data_root = Path(args.data_root).expanduser().resolve() if args.data_root else None
    try:
        profile = load_bot_profile(args.bot, repo_root=repo_root, data_root=data_root)
        ensure_bot_directories(profile)
        model = build_chat_model(profile, build_tool_registry())
    except ProfileError as exc:
        print(f"streambot: {exc}", file=sys.stderr)
        return 2

    token = read_secret(profile.paths.secrets_dir, "telegram_bot_token.txt")
    if token is None:
        print(f"streambot: no telegram_bot_token.txt in {profile.paths.secrets_dir}", file=sys.stderr)
        return 2

    memory_engine = MemoryEngine(profile.paths.db_path)
    memory_engine.initialize()
    conn = memory_engine.connect()

    turns = TurnStore(conn)
    contexts = UserContextStore(conn)
    episodic_memory = EpisodicMemoryStore(conn)
    distiller = ContextDistiller(turns, contexts, model, profile.engine)
    resolver = SessionResolver(turns, distiller, profile.engine)
    conversation = Conversation(profile, turns, contexts, resolver, distiller, model)

    episodic_memory.record("agent_boot", {"bot": profile.name, "model": model.model}, decision="allow")
    logger.info("Starting bot %s (%s grammar)", profile.name, profile.engine.command_grammar)
    telegram_bot = TelegramBot(profile, conversation, episodic_memory, token)
    try:
        telegram_bot.start()
    finally:
        episodic_memory.record("agent_shutdown", {"bot": profile.name}, decision="allow")
        memory_engine.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
