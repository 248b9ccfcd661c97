"""OpenAI-compatible LLM client: blocking completions and streamed replies."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, AsyncIterator
from urllib import error, request

import httpx

from streambot.tools.registry import ToolRegistry

DEFAULT_MODEL = "gpt-4o-mini"
OPENAI_BASE = "https://api.openai.com/v1"

logger = logging.getLogger(__name__)


class LLMError(RuntimeError):
    """Raised when the model endpoint fails or answers with something unusable."""


def read_secret(secrets_dir: Path, filename: str) -> str | None:
    """Read first line of a secret file; return None if missing or empty."""
    path = secrets_dir / filename
    if not path.exists():
        return None
    raw = path.read_text(encoding="utf-8").strip()
    return raw if raw else None


def _endpoint(base_url: str | None) -> str:
    return (base_url or OPENAI_BASE).rstrip("/") + "/chat/completions"


def complete(
    messages: list[dict[str, Any]],
    api_key: str,
    *,
    base_url: str | None = None,
    model: str = DEFAULT_MODEL,
    max_tokens: int = 600,
    timeout: float = 60,
) -> str:
    """
    Call OpenAI-compatible chat completions API and return the message content.
    base_url: e.g. https://api.openai.com/v1 or http://localhost:11434/v1 (Ollama).
    """
    body = {
        "model": model,
        "messages": messages,
        "max_tokens": max_tokens,
    }
    encoded = json.dumps(body).encode("utf-8")
    headers: dict[str, str] = {
        "Content-Type": "application/json",
        "Authorization": f"Bearer {api_key}",
    }
    req = request.Request(_endpoint(base_url), data=encoded, headers=headers, method="POST")
    try:
        with request.urlopen(req, timeout=timeout) as response:  # noqa: S310
            data = json.loads(response.read().decode("utf-8"))
    except error.HTTPError as exc:
        body_read = exc.read().decode("utf-8", errors="replace")
        raise LLMError(f"LLM API HTTP {exc.code}: {body_read}") from exc
    except error.URLError as exc:
        raise LLMError(f"LLM API unreachable: {exc.reason}") from exc

    for choice in data.get("choices") or []:
        msg = choice.get("message") or {}
        if msg.get("content") is not None:
            return str(msg["content"]).strip()
    raise LLMError(f"LLM API unexpected response: {data}")


class ChatModel:
    """Streams replies for a conversation and condenses transcripts."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str | None = None,
        model: str = DEFAULT_MODEL,
        registry: ToolRegistry | None = None,
        tool_names: tuple[str, ...] = (),
        max_tool_steps: int = 5,
        max_tokens: int = 1024,
        timeout: float = 60,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url
        self._model = model
        self._registry = registry or ToolRegistry()
        self._tool_definitions = self._registry.definitions(tool_names) if tool_names else []
        self._max_tool_steps = max_tool_steps
        self._max_tokens = max_tokens
        self._timeout = timeout
        self._client = client

    @property
    def model(self) -> str:
        return self._model

    async def stream(self, messages: list[dict[str, Any]]) -> AsyncIterator[str]:
        """Yield content deltas, running tool calls between steps."""
        conversation = list(messages)
        client = self._client or httpx.AsyncClient(timeout=self._timeout)
        try:
            for _ in range(self._max_tool_steps):
                tool_calls: dict[int, dict[str, str]] = {}
                finish_reason: str | None = None
                async for delta, reason in self._stream_step(client, conversation):
                    if reason:
                        finish_reason = reason
                    if delta.get("content"):
                        yield delta["content"]
                    for call in delta.get("tool_calls") or []:
                        slot = tool_calls.setdefault(
                            int(call.get("index", 0)), {"id": "", "name": "", "arguments": ""}
                        )
                        slot["id"] = call.get("id") or slot["id"]
                        function = call.get("function") or {}
                        slot["name"] += function.get("name") or ""
                        slot["arguments"] += function.get("arguments") or ""
                if finish_reason != "tool_calls" or not tool_calls:
                    return
                conversation.extend(self._run_tools(tool_calls))
            logger.warning("Tool step limit (%d) reached; ending reply", self._max_tool_steps)
        finally:
            if self._client is None:
                await client.aclose()

    async def _stream_step(
        self,
        client: httpx.AsyncClient,
        messages: list[dict[str, Any]],
    ) -> AsyncIterator[tuple[dict[str, Any], str | None]]:
        body: dict[str, Any] = {
            "model": self._model,
            "messages": messages,
            "max_tokens": self._max_tokens,
            "stream": True,
        }
        if self._tool_definitions:
            body["tools"] = self._tool_definitions
        headers = {"Authorization": f"Bearer {self._api_key}"}
        try:
            async with client.stream("POST", _endpoint(self._base_url), json=body, headers=headers) as response:
                if response.status_code >= 400:
                    detail = (await response.aread()).decode("utf-8", errors="replace")
                    raise LLMError(f"LLM API HTTP {response.status_code}: {detail}")
                async for line in response.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    data = line[len("data:"):].strip()
                    if data == "[DONE]":
                        return
                    try:
                        event = json.loads(data)
                    except json.JSONDecodeError as exc:
                        raise LLMError(f"LLM API sent malformed event: {data[:200]}") from exc
                    if event.get("error"):
                        raise LLMError(f"LLM API stream error: {event['error']}")
                    for choice in event.get("choices") or []:
                        yield choice.get("delta") or {}, choice.get("finish_reason")
        except httpx.HTTPError as exc:
            raise LLMError(f"LLM API transport error: {exc}") from exc

    def _run_tools(self, tool_calls: dict[int, dict[str, str]]) -> list[dict[str, Any]]:
        ordered = [tool_calls[i] for i in sorted(tool_calls)]
        out: list[dict[str, Any]] = [
            {
                "role": "assistant",
                "content": None,
                "tool_calls": [
                    {
                        "id": call["id"],
                        "type": "function",
                        "function": {"name": call["name"], "arguments": call["arguments"]},
                    }
                    for call in ordered
                ],
            }
        ]
        for call in ordered:
            logger.info("Running tool %s", call["name"])
            out.append(
                {
                    "role": "tool",
                    "tool_call_id": call["id"],
                    "content": self._registry.execute_call(call["name"], call["arguments"]),
                }
            )
        return out

    async def summarize(self, prompt: str, *, max_tokens: int = 600) -> str:
        return await asyncio.wait_for(
            asyncio.to_thread(
                complete,
                [{"role": "user", "content": prompt}],
                self._api_key,
                base_url=self._base_url,
                model=self._model,
                max_tokens=max_tokens,
                timeout=self._timeout,
            ),
            timeout=self._timeout + 5,
        )
