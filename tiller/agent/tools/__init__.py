"""Agent tools."""

from tiller.agent.tools.base import Tool, ToolDescriptor, ToolResult
from tiller.agent.tools.registry import ToolRegistry

__all__ = ["Tool", "ToolDescriptor", "ToolRegistry", "ToolResult"]
