"""Return the current time so the model can reason about dates."""

from __future__ import annotations

import time
from typing import Any

from streambot.tools.base import BaseTool, ToolExecutionResult


class GetTimeTool(BaseTool):
    name = "get_time"
    description = "Get the current UTC date and time."

    def execute(self, payload: dict[str, Any]) -> ToolExecutionResult:
        t = time.time()
        return ToolExecutionResult(
            ok=True,
            output={
                "epoch_seconds": t,
                "iso8601": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(t)),
            },
        )
