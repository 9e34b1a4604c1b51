"""Tool registry and engine-provided tools."""

from orchestrator.tools.builtin import SUPERVISOR_UTILITY_TOOLS, builtin_tools
from orchestrator.tools.registry import RegisteredTool, ToolContext, ToolRegistry, create_tool

__all__ = [
    "RegisteredTool",
    "SUPERVISOR_UTILITY_TOOLS",
    "ToolContext",
    "ToolRegistry",
    "builtin_tools",
    "create_tool",
]
