"""Agent core: conversation loop and tool execution."""

from tiller.agent.executor import ExecutionContext, ToolExecutor, UndoResult
from tiller.agent.loop import AgentLoop, TurnResult

__all__ = ["AgentLoop", "ExecutionContext", "ToolExecutor", "TurnResult", "UndoResult"]
