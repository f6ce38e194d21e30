"""Named tool registration and dispatch.

Nodes never call collaborators directly: every side effect goes through
``execute_tool(name, *args, **kwargs)`` on an injected executor. The
ToolRegistry is the default executor implementation.
"""

import inspect
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from nodeflow.graph.errors import ToolExecutionError, ToolNotFoundError
from nodeflow.llm.provider import Tool

logger = logging.getLogger(__name__)


@runtime_checkable
class ToolExecutor(Protocol):
    """Anything that can run a named tool call."""

    async def execute_tool(self, name: str, *args: Any, **kwargs: Any) -> Any: ...


@dataclass
class RegisteredTool:
    """A tool with the callable that implements it."""

    tool: Tool
    func: Callable[..., Any]


def _json_type(annotation: Any) -> str:
    if annotation is int:
        return "integer"
    if annotation is float:
        return "number"
    if annotation is bool:
        return "boolean"
    if annotation is dict or getattr(annotation, "__origin__", None) is dict:
        return "object"
    if annotation is list or getattr(annotation, "__origin__", None) is list:
        return "array"
    return "string"


def _describe(func: Callable, name: str, description: str | None) -> Tool:
    sig = inspect.signature(func)
    properties = {}
    required = []

    for param_name, param in sig.parameters.items():
        if param_name in ("self", "cls"):
            continue
        if param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
            continue

        param_type = "string"
        if param.annotation != inspect.Parameter.empty:
            param_type = _json_type(param.annotation)
        properties[param_name] = {"type": param_type}

        if param.default == inspect.Parameter.empty:
            required.append(param_name)

    doc = description or inspect.getdoc(func) or f"Execute {name}"
    return Tool(
        name=name,
        description=doc.strip().splitlines()[0],
        parameters={"type": "object", "properties": properties, "required": required},
    )


class ToolRegistry:
    """
    Registry of named tools and the default ToolExecutor.

    Tools are plain callables or coroutine functions. Toolkit objects expose
    their tools as methods marked with ``@tool_method`` and are registered in
    one call with ``register_toolkit``.

    Example:
        registry = ToolRegistry()
        registry.register_function(lambda text: text.upper(), name="shout")
        await registry.execute_tool("shout", "hi")  # "HI"
    """

    def __init__(self):
        self._tools: dict[str, RegisteredTool] = {}

    def register(self, name: str, func: Callable[..., Any], description: str | None = None) -> None:
        """
        Register a single tool.

        Args:
            name: Tool name used by ``execute_tool``
            func: Callable or coroutine function implementing the tool
            description: Tool description (defaults to the docstring)
        """
        if name in self._tools:
            logger.debug(f"Replacing tool registration for '{name}'")
        self._tools[name] = RegisteredTool(tool=_describe(func, name, description), func=func)

    def register_function(
        self,
        func: Callable[..., Any],
        name: str | None = None,
        description: str | None = None,
    ) -> None:
        """Register a function as a tool, named after the function by default."""
        self.register(name or func.__name__, func, description)

    def register_toolkit(self, toolkit: Any) -> int:
        """
        Register every ``@tool_method`` of a toolkit object.

        Returns:
            Number of tools registered
        """
        count = 0
        for attr in dir(toolkit):
            if attr.startswith("_"):
                continue
            member = getattr(toolkit, attr)
            if callable(member) and hasattr(member, "_tool_metadata"):
                metadata = member._tool_metadata
                self.register(
                    metadata.get("name") or attr,
                    member,
                    description=metadata.get("description"),
                )
                count += 1
        logger.debug(f"Registered {count} tools from {type(toolkit).__name__}")
        return count

    def unregister(self, name: str) -> bool:
        return self._tools.pop(name, None) is not None

    def get_tools(self) -> dict[str, Tool]:
        """Get all registered Tool descriptions."""
        return {name: rt.tool for name, rt in self._tools.items()}

    def get_registered_names(self) -> list[str]:
        """Get list of registered tool names."""
        return list(self._tools.keys())

    def has_tool(self, name: str) -> bool:
        """Check if a tool is registered."""
        return name in self._tools

    async def execute_tool(self, name: str, *args: Any, **kwargs: Any) -> Any:
        """
        Run a named tool.

        Coroutine results are awaited. Unknown names raise ToolNotFoundError;
        any failure inside the tool is raised as ToolExecutionError chained to
        the original exception.
        """
        registered = self._tools.get(name)
        if registered is None:
            raise ToolNotFoundError(name)

        start = time.time()
        try:
            result = registered.func(*args, **kwargs)
            if inspect.isawaitable(result):
                result = await result
        except ToolExecutionError:
            raise
        except Exception as e:
            logger.warning(f"✗ Tool '{name}' failed: {e}")
            raise ToolExecutionError(name, str(e)) from e

        logger.debug(
            f"Tool '{name}' completed",
            extra={"event": "tool_call", "latency_ms": int((time.time() - start) * 1000)},
        )
        return result


def tool_method(
    description: str | None = None,
    name: str | None = None,
) -> Callable:
    """
    Decorator to mark a toolkit method as a tool.

    Usage:
        class TextToolkit:
            @tool_method(name="shout")
            def shout(self, text: str) -> str:
                return text.upper()
    """

    def decorator(func: Callable) -> Callable:
        func._tool_metadata = {
            "name": name or func.__name__,
            "description": description or func.__doc__,
        }
        return func

    return decorator
