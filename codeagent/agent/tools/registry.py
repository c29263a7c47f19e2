"""Name-keyed tool registry."""

from __future__ import annotations

import time
from typing import Any

from loguru import logger

from codeagent.agent.tools.base import Tool
from codeagent.errors import ToolResolutionError
from codeagent.session.models import ToolOutcome
from codeagent.utils.helpers import preview


class ToolRegistry:
    """In-memory name to tool mapping."""

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            logger.warning("tool.register overriding name={}", tool.name)
        self._tools[tool.name] = tool

    def unregister(self, name: str) -> None:
        self._tools.pop(name, None)

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def resolve(self, name: str) -> Tool:
        tool = self._tools.get(name)
        if tool is None:
            raise ToolResolutionError(name)
        return tool

    @property
    def tool_names(self) -> list[str]:
        return list(self._tools)

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def get_definitions(self, exclude: set[str] | None = None) -> list[dict[str, Any]]:
        exclude = exclude or set()
        return [tool.to_schema() for name, tool in self._tools.items() if name not in exclude]

    async def execute(self, name: str, arguments: dict[str, Any]) -> ToolOutcome:
        """Resolve and invoke. Resolution and execution failures come back as error outcomes."""
        try:
            tool = self.resolve(name)
        except ToolResolutionError as e:
            logger.warning("tool.call.unknown name={}", name)
            return ToolOutcome.from_error(e)

        params = ", ".join(f"{key}={preview(value)}" for key, value in arguments.items())
        logger.info("tool.call.start name={} {{ {} }}", name, params)
        start = time.monotonic()
        outcome = await tool.invoke(arguments)
        logger.info(
            "tool.call.end name={} status={} duration={:.3f}ms",
            name,
            outcome.status.value,
            (time.monotonic() - start) * 1000,
        )
        return outcome
