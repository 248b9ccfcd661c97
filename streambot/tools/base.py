"""Base interface for model-callable tools."""

from __future__ import annotations

import copy
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class ToolExecutionResult:
    ok: bool
    output: dict[str, Any]


class BaseTool(ABC):
    name: str
    description: str
    # JSON schema for the arguments; None means the tool takes none.
    parameters: dict[str, Any] | None = None

    def definition(self) -> dict[str, Any]:
        """Function definition in the chat completions `tools` format."""
        if self.parameters is None:
            parameters: dict[str, Any] = {"type": "object", "properties": {}}
        else:
            parameters = copy.deepcopy(self.parameters)
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": parameters,
            },
        }

    @abstractmethod
    def execute(self, payload: dict[str, Any]) -> ToolExecutionResult:
        """Run tool with validated payload."""
