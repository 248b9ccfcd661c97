"""Tool registry exposing tool definitions to the model and executing its calls."""

from __future__ import annotations

import json
import logging
from typing import Any, Iterable

from streambot.tools.base import BaseTool, ToolExecutionResult

logger = logging.getLogger(__name__)


class ToolRegistry:
    def __init__(self, tools: Iterable[BaseTool] = ()) -> None:
        self._tools: dict[str, BaseTool] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: BaseTool) -> None:
        self._tools[tool.name] = tool

    def list_tools(self) -> list[str]:
        return sorted(self._tools.keys())

    def definitions(self, names: Iterable[str] | None = None) -> list[dict[str, Any]]:
        selected = self.list_tools() if names is None else list(names)
        unknown = [name for name in selected if name not in self._tools]
        if unknown:
            raise KeyError(f"Unknown tools: {', '.join(unknown)}")
        return [self._tools[name].definition() for name in selected]

    def execute(self, tool_name: str, payload: dict[str, Any]) -> ToolExecutionResult:
        tool = self._tools.get(tool_name)
        if tool is None:
            return ToolExecutionResult(ok=False, output={"error": f"Unknown tool: {tool_name}"})
        try:
            return tool.execute(payload)
        except Exception as exc:
            logger.warning("Tool %s failed: %s", tool_name, exc)
            return ToolExecutionResult(ok=False, output={"error": str(exc)})

    def execute_call(self, tool_name: str, raw_arguments: str) -> str:
        """Execute a model tool call whose arguments arrive as a JSON string; returns JSON."""
        try:
            payload = json.loads(raw_arguments) if raw_arguments.strip() else {}
        except json.JSONDecodeError as exc:
            result = ToolExecutionResult(ok=False, output={"error": f"Invalid arguments: {exc}"})
        else:
            if not isinstance(payload, dict):
                payload = {"value": payload}
            result = self.execute(tool_name, payload)
        return json.dumps({"ok": result.ok, **result.output}, ensure_ascii=True, default=str)
