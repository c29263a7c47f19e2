"""Agent tools module."""

from pathlib import Path

from loguru import logger

from codeagent.agent.tools.base import Tool
from codeagent.agent.tools.filesystem import EditFileTool
from codeagent.agent.tools.finish import FINISH_TOOL_NAME, FinishTool
from codeagent.agent.tools.registry import ToolRegistry
from codeagent.agent.tools.search import FileSearchTool
from codeagent.agent.tools.shell import BashTool
from codeagent.agent.tools.web import UrlFetchTool
from codeagent.config.schema import ToolsConfig


def build_default_tools(workspace: Path, config: ToolsConfig | None = None) -> ToolRegistry:
    """Register the built-in tools enabled in ``config``, rooted at ``workspace``."""
    config = config or ToolsConfig()
    available: dict[str, Tool] = {
        "bash": BashTool(workspace, timeout_s=config.exec_timeout_s),
        "edit_file": EditFileTool(workspace, restrict_to_workspace=config.restrict_to_workspace),
        "file_search": FileSearchTool(workspace),
        "url_fetch": UrlFetchTool(max_length=config.fetch_max_chars),
    }

    registry = ToolRegistry()
    for name in config.enabled:
        tool = available.get(name)
        if tool is None:
            logger.warning("tools.unknown_builtin name={}", name)
            continue
        registry.register(tool)
    return registry


__all__ = [
    "BashTool",
    "EditFileTool",
    "FINISH_TOOL_NAME",
    "FileSearchTool",
    "FinishTool",
    "Tool",
    "ToolRegistry",
    "UrlFetchTool",
    "build_default_tools",
]
