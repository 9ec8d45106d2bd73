"""Tool definitions and dispatch."""

from .definitions import get_available_tools
from .tool_executor import ToolExecutor

__all__ = ["ToolExecutor", "get_available_tools"]
