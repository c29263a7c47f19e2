"""Reserved completion capability."""

from __future__ import annotations

from typing import Any

from codeagent.agent.tools.base import Tool
from codeagent.session.models import ToolOutcome

FINISH_TOOL_NAME = "finish"


class FinishTool(Tool):
    """
    Signals deliberate termination with a final answer.

    The ToolGate intercepts calls to this name before dispatch, so
    ``execute`` only runs when the tool is invoked outside the loop.
    """

    @property
    def name(self) -> str:
        return FINISH_TOOL_NAME

    @property
    def description(self) -> str:
        return (
            "Call this tool when you have completed the user's request and want to provide a final answer. "
            "This signals that you are done using tools and ready to conclude. "
            "Include your complete response to the user in the 'answer' parameter."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "answer": {
                    "type": "string",
                    "description": "Your final answer or response to the user's request",
                },
            },
            "required": ["answer"],
        }

    async def execute(self, *, answer: str = "Task completed", **kwargs: Any) -> ToolOutcome:
        return ToolOutcome.success({"answer": answer, "completed": True}, answer)
