"""Exception types for codeagent."""

from __future__ import annotations


class CodeAgentError(Exception):
    """Base exception for codeagent."""


class ConfigurationError(CodeAgentError):
    """Invalid or missing configuration."""


class ProviderError(CodeAgentError):
    """
    Model endpoint failure.

    ``retryable`` separates transient conditions (rate limit, network, 5xx)
    from fatal ones (authentication, malformed request).
    """

    def __init__(self, message: str, *, retryable: bool = False, status_code: int | None = None) -> None:
        super().__init__(message)
        self.retryable = retryable
        self.status_code = status_code


class ToolError(CodeAgentError):
    """Base class for tool-level failures."""

    def __init__(self, tool_name: str, message: str) -> None:
        super().__init__(message)
        self.tool_name = tool_name


class ToolResolutionError(ToolError):
    """Tool name not present in the registry."""

    def __init__(self, tool_name: str) -> None:
        super().__init__(tool_name, f"Tool not found: {tool_name}")


class ToolExecutionError(ToolError):
    """Tool ran but failed."""

    def __init__(self, tool_name: str, message: str) -> None:
        super().__init__(tool_name, f"Tool '{tool_name}' failed: {message}")


class MalformedToolArguments(ToolError):
    """Streamed tool-call arguments did not assemble into a JSON object."""

    def __init__(self, tool_name: str, call_id: str, reason: str) -> None:
        super().__init__(tool_name, f"Malformed arguments for tool '{tool_name}' (call {call_id}): {reason}")
        self.call_id = call_id
        self.reason = reason


class BudgetExceeded(CodeAgentError):
    """Tool calls requested after the iteration budget was exhausted."""

    def __init__(self, max_iterations: int) -> None:
        super().__init__(
            f"Tool iteration budget of {max_iterations} exhausted and the model kept requesting tools"
        )
        self.max_iterations = max_iterations


class RequestInterrupted(CodeAgentError):
    """The caller interrupted an in-flight request."""


class InvalidTransitionError(CodeAgentError):
    """A loop state transition outside the allowed graph."""


class SessionIOError(CodeAgentError):
    """Session persistence failure."""


class SessionNotFoundError(SessionIOError):
    """No session with the requested id."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id
