"""Tool registry and the ToolExecutor seam nodes call through."""

from nodeflow.runner.tool_registry import RegisteredTool, ToolExecutor, ToolRegistry, tool_method

__all__ = ["RegisteredTool", "ToolExecutor", "ToolRegistry", "tool_method"]
