"""Bot profile configuration loader and path resolver."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

CONCLUSION_PREFIXES = {
    "current": "TG_CONCLUSION ",
    "legacy": "CONCLUSION ",
}
BUILTIN_COMMANDS = frozenset({"start", "help", "clear"})
DEFAULT_ERROR_NOTICE = "Sorry, I encountered an error processing your request. Please try again."
DEFAULT_WELCOME = "Welcome, {user_name}! I'm {bot_name}. Type /help to see what I can do."
DEFAULT_HELP = (
    "Here are the commands I understand:\n\n"
    "/start - Get started\n"
    "/help - Show this help message\n"
    "/clear - Start a new conversation\n\n"
    "Just send me a message and I'll do my best to help!"
)
DEFAULT_IMAGE_PROMPT = "Please analyze this image."


@dataclass(frozen=True)
class EngineConfig:
    """Thresholds and knobs shared by the session and streaming components."""

    session_timeout_hours: float = 24.0
    context_word_target: int = 500
    min_context_chars: int = 10
    reset_marker: str = "/clear"
    history_limit: int = 20
    send_timeout_seconds: float = 15.0
    llm_timeout_seconds: float = 60.0
    max_tool_steps: int = 5
    command_grammar: str = "current"
    error_notice: str = DEFAULT_ERROR_NOTICE

    @property
    def conclusion_prefix(self) -> str:
        return CONCLUSION_PREFIXES[self.command_grammar]


@dataclass(frozen=True)
class BotPaths:
    base_data_dir: Path
    db_path: Path
    secrets_dir: Path


@dataclass(frozen=True)
class BotProfile:
    name: str
    display_name: str
    account: str
    instructions: str
    paths: BotPaths
    welcome_message: str = DEFAULT_WELCOME
    help_message: str = DEFAULT_HELP
    image_prompt: str = DEFAULT_IMAGE_PROMPT
    tools: tuple[str, ...] = ()
    commands: dict[str, str] = field(default_factory=dict)
    parse_mode: str | None = "HTML"
    webhook_url: str | None = None
    engine: EngineConfig = field(default_factory=EngineConfig)


class ProfileError(ValueError):
    """Raised when bot profile configuration is invalid."""


def _clamp(value: Any, low: float, high: float, name: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ProfileError(f"engine.{name} must be a number, got {value!r}") from exc
    return max(low, min(high, number))


def build_engine_config(raw: dict[str, Any] | None) -> EngineConfig:
    raw = raw or {}
    if not isinstance(raw, dict):
        raise ProfileError("engine must be a mapping")
    defaults = EngineConfig()
    grammar = str(raw.get("command_grammar", defaults.command_grammar)).strip().lower()
    if grammar not in CONCLUSION_PREFIXES:
        allowed = ", ".join(sorted(CONCLUSION_PREFIXES))
        raise ProfileError(f"engine.command_grammar must be one of: {allowed}")
    reset_marker = str(raw.get("reset_marker", defaults.reset_marker)).strip()
    if not reset_marker:
        raise ProfileError("engine.reset_marker must not be empty")
    return EngineConfig(
        session_timeout_hours=_clamp(
            raw.get("session_timeout_hours", defaults.session_timeout_hours), 0.1, 24 * 30, "session_timeout_hours"
        ),
        context_word_target=int(
            _clamp(raw.get("context_word_target", defaults.context_word_target), 50, 5000, "context_word_target")
        ),
        min_context_chars=int(
            _clamp(raw.get("min_context_chars", defaults.min_context_chars), 0, 1000, "min_context_chars")
        ),
        reset_marker=reset_marker,
        history_limit=int(_clamp(raw.get("history_limit", defaults.history_limit), 1, 200, "history_limit")),
        send_timeout_seconds=_clamp(
            raw.get("send_timeout_seconds", defaults.send_timeout_seconds), 1, 120, "send_timeout_seconds"
        ),
        llm_timeout_seconds=_clamp(
            raw.get("llm_timeout_seconds", defaults.llm_timeout_seconds), 5, 600, "llm_timeout_seconds"
        ),
        max_tool_steps=int(_clamp(raw.get("max_tool_steps", defaults.max_tool_steps), 1, 20, "max_tool_steps")),
        command_grammar=grammar,
        error_notice=str(raw.get("error_notice", defaults.error_notice)).strip() or defaults.error_notice,
    )


def _validate_raw_profile(raw: dict[str, Any], expected_name: str) -> None:
    required = {"name", "display_name", "account", "instructions"}
    missing = required.difference(raw.keys())
    if missing:
        missing_joined = ", ".join(sorted(missing))
        raise ProfileError(f"Missing required profile keys: {missing_joined}")

    if raw["name"] != expected_name:
        raise ProfileError(
            f"Profile filename/name mismatch: expected '{expected_name}', got '{raw['name']}'"
        )

    if not str(raw["instructions"]).strip():
        raise ProfileError("instructions must not be empty")

    tools = raw.get("tools", [])
    if not isinstance(tools, list):
        raise ProfileError("tools must be a list of tool names")

    commands = raw.get("commands", {})
    if not isinstance(commands, dict):
        raise ProfileError("commands must be a mapping of command name to reply text")
    clashing = BUILTIN_COMMANDS.intersection(str(k).lstrip("/") for k in commands)
    if clashing:
        raise ProfileError(f"commands cannot override built-ins: {', '.join(sorted(clashing))}")


def load_bot_profile(
    bot_name: str,
    repo_root: Path | None = None,
    data_root: Path | None = None,
) -> BotProfile:
    """Load a bot profile from config and resolve data paths."""
    if repo_root is None:
        repo_root = Path(__file__).resolve().parent.parent

    profile_path = repo_root / "config" / "bots" / f"{bot_name}.yaml"
    if not profile_path.exists():
        raise ProfileError(f"Bot profile not found: {profile_path}")

    with profile_path.open("r", encoding="utf-8") as fh:
        raw = yaml.safe_load(fh) or {}

    if not isinstance(raw, dict):
        raise ProfileError(f"Bot profile file must contain a mapping: {profile_path}")

    _validate_raw_profile(raw, bot_name)

    base_data_dir = (data_root or Path.home() / "botdata") / bot_name
    paths = BotPaths(
        base_data_dir=base_data_dir,
        db_path=base_data_dir / "memory.db",
        secrets_dir=base_data_dir / "secrets",
    )

    parse_mode = raw.get("parse_mode", "HTML")
    return BotProfile(
        name=raw["name"],
        display_name=raw["display_name"],
        account=str(raw["account"]).strip(),
        instructions=str(raw["instructions"]).strip(),
        welcome_message=str(raw.get("welcome_message") or DEFAULT_WELCOME),
        help_message=str(raw.get("help_message") or DEFAULT_HELP),
        image_prompt=str(raw.get("image_prompt") or DEFAULT_IMAGE_PROMPT).strip(),
        tools=tuple(str(t) for t in raw.get("tools", [])),
        commands={str(k).lstrip("/"): str(v) for k, v in (raw.get("commands") or {}).items()},
        parse_mode=str(parse_mode) if parse_mode else None,
        webhook_url=str(raw["webhook_url"]) if raw.get("webhook_url") else None,
        engine=build_engine_config(raw.get("engine")),
        paths=paths,
    )


def ensure_bot_directories(profile: BotProfile) -> None:
    """Create bot data directories without touching existing data."""
    profile.paths.base_data_dir.mkdir(parents=True, exist_ok=True)
    profile.paths.secrets_dir.mkdir(parents=True, exist_ok=True)


def personalize(template: str, bot_name: str, user_name: str | None = None) -> str:
    return template.replace("{bot_name}", bot_name).replace("{user_name}", user_name or "there")
