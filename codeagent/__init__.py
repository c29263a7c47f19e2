"""codeagent: a multi-turn, tool-using coding agent."""

__version__ = "0.1.0"
