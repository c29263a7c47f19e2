"""Agent core: loop controller, tool gate and stream aggregation."""

from codeagent.agent.aggregator import AggregatedTurn, TurnAggregator
from codeagent.agent.gate import Review, ToolGate, ToolOffer, Verdict
from codeagent.agent.loop import AgentLoop, LoopListener, LoopResult

__all__ = [
    "AgentLoop",
    "AggregatedTurn",
    "LoopListener",
    "LoopResult",
    "Review",
    "ToolGate",
    "ToolOffer",
    "TurnAggregator",
    "Verdict",
]
