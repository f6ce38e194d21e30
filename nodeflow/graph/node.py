"""
Node - the unit of work in a workflow graph.

A node receives a key/value input record, does one unit of work and
produces a key/value output record. Every execution runs the same pipeline:

    before_execute → operate → after_execute      (on failure: on_error)

and appends exactly one ExecutionResult to the context's history, whether
the unit of work completed or failed. Nodes never call collaborators
directly; side effects go through ``execute_tool`` on an injected
ToolExecutor.

Input resolution:
    - keys named in ``init_params`` and ``input_fields`` are read from the
      context data store (``input_mapping`` renames them on the way in)
    - a node declaring neither receives a snapshot of the whole data store

Output publication:
    - the output record is stored as the node's output
    - keys named in ``output_fields`` are copied into the data store; a node
      declaring no output fields publishes every key of its output
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any, ClassVar

from nodeflow.graph.context import ExecutionContext
from nodeflow.graph.errors import (
    MissingInputError,
    NodeConfigurationError,
    UnsupportedOperationError,
)
from nodeflow.graph.spec import NodeDescriptor
from nodeflow.graph.types import ExecutionResult, NodeCategory, NodeExecutionStatus
from nodeflow.observability.logging import get_trace_context, set_trace_context
from nodeflow.runner.tool_registry import ToolExecutor

logger = logging.getLogger(__name__)

# Input/param keys consumed by the node machinery itself
RESERVED_KEYS = frozenset({"operation"})


class Node(ABC):
    """
    Base class for all node kinds.

    Subclasses set the class attributes and implement ``operate``. Kinds with
    several operations list them in ``operations``; ``resolve_operation``
    picks one from the inputs, then the params, then ``default_operation``.

    Example:
        class UppercaseNode(Node):
            node_type = "uppercase"

            async def operate(self, inputs, config):
                text = self.require(inputs, "text", "Text")
                return {"text": await self.execute_tool("upper", text)}
    """

    node_type: ClassVar[str] = ""
    default_category: ClassVar[NodeCategory] = NodeCategory.MIDDLE
    description: ClassVar[str] = ""
    operations: ClassVar[tuple[str, ...]] = ()
    default_operation: ClassVar[str | None] = None

    def __init__(self, descriptor: NodeDescriptor, tool_executor: ToolExecutor | None = None):
        self.descriptor = descriptor
        self.id = descriptor.id
        self.name = descriptor.name or descriptor.id
        self.type = descriptor.type
        self.params: dict[str, Any] = dict(descriptor.params)
        self.metadata: dict[str, Any] = dict(descriptor.metadata)
        self.tool_executor = tool_executor
        self._next = list(descriptor.next)
        self._initialized = False

        if self.category == NodeCategory.EXIT and self._next:
            logger.warning(f"Exit node '{self.id}' declares successors {self._next}; ignoring them")

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------

    @property
    def category(self) -> NodeCategory:
        return self.descriptor.category or self.default_category

    def is_entry(self) -> bool:
        return self.category == NodeCategory.ENTRY

    def is_exit(self) -> bool:
        return self.category == NodeCategory.EXIT

    def get_next(self) -> list[str]:
        """Successor ids. Always empty for exit nodes."""
        if self.is_exit():
            return []
        return list(self._next)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """One-time setup before the first execution. Safe to call repeatedly."""
        if self._initialized:
            return
        await self.setup()
        self._initialized = True
        logger.debug(f"Initialized node '{self.id}' ({self.type})")

    async def setup(self) -> None:
        """Validate params and prepare collaborators. Raise NodeConfigurationError on bad config."""

    async def before_execute(self, inputs: dict[str, Any], context: ExecutionContext) -> None:
        context.update_node_state(
            self.id, {"status": NodeExecutionStatus.RUNNING.value, "lastInputKeys": sorted(inputs)}
        )

    @abstractmethod
    async def operate(self, inputs: dict[str, Any], config: dict[str, Any]) -> dict[str, Any]:
        """
        Perform the node's unit of work.

        Args:
            inputs: Resolved input record
            config: Execution options; ``config["context"]`` is the run's
                ExecutionContext for nodes that read it directly

        Returns:
            Output record
        """

    async def after_execute(self, output: dict[str, Any], context: ExecutionContext) -> None:
        context.set_node_output(self.id, output)
        for key in self.descriptor.output_fields or list(output):
            if key in output:
                context.set(key, output[key])
        state = context.get_node_state(self.id) or {}
        context.update_node_state(
            self.id,
            {
                "status": NodeExecutionStatus.COMPLETED.value,
                "executions": state.get("executions", 0) + 1,
            },
        )

    async def on_error(self, error: BaseException, context: ExecutionContext) -> None:
        context.set_metadata(
            "lastError",
            {"nodeId": self.id, "type": type(error).__name__, "message": str(error)},
        )
        context.update_node_state(
            self.id, {"status": NodeExecutionStatus.FAILED.value, "error": str(error)}
        )

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(
        self,
        context: ExecutionContext,
        inputs: dict[str, Any] | None = None,
        config: dict[str, Any] | None = None,
        *,
        raise_on_failure: bool = True,
        timeout: float | None = None,
    ) -> ExecutionResult:
        """
        Run the node once and record the outcome.

        Args:
            context: Shared execution context
            inputs: Explicit input record; resolved from the context when None
            config: Execution options passed through to ``operate``
            raise_on_failure: Re-raise the failure after recording it
            timeout: Seconds allowed for ``operate``

        Returns:
            The ExecutionResult appended to the context history
        """
        previous_node = get_trace_context().get("node_id")
        set_trace_context(node_id=self.id)

        start = time.time()
        resolved: dict[str, Any] = {}
        try:
            context.raise_if_cancelled()
            resolved = dict(inputs) if inputs is not None else self.resolve_input(context)
            run_config = {**(config or {}), "context": context}

            logger.info(f"▶ {self.type} node '{self.id}' started", extra={"node_type": self.type})
            await self.before_execute(resolved, context)
            if timeout is None:
                output = await self.operate(resolved, run_config)
            else:
                try:
                    async with asyncio.timeout(timeout) as deadline:
                        output = await self.operate(resolved, run_config)
                except TimeoutError as e:
                    if not deadline.expired():
                        raise
                    raise TimeoutError(f"Node '{self.id}' timed out after {timeout}s") from e
            output = dict(output or {})
            await self.after_execute(output, context)

        except Exception as e:
            end = time.time()
            logger.error(
                f"✗ {self.type} node '{self.id}' failed: {e}",
                extra={"node_type": self.type, "latency_ms": int((end - start) * 1000)},
            )
            try:
                await self.on_error(e, context)
            except Exception:
                logger.exception(f"on_error hook of node '{self.id}' raised")
            result = ExecutionResult(
                node_id=self.id,
                status=NodeExecutionStatus.FAILED,
                input=resolved,
                error=e,
                start_time=start,
                end_time=end,
            )
            context.add_execution_result(result)
            set_trace_context(node_id=previous_node)
            if raise_on_failure:
                raise e
            return result

        end = time.time()
        result = ExecutionResult(
            node_id=self.id,
            status=NodeExecutionStatus.COMPLETED,
            input=resolved,
            output=output,
            start_time=start,
            end_time=end,
        )
        context.add_execution_result(result)
        logger.info(
            f"✓ {self.type} node '{self.id}' completed",
            extra={"node_type": self.type, "latency_ms": result.duration_ms},
        )
        set_trace_context(node_id=previous_node)
        return result

    def resolve_input(self, context: ExecutionContext) -> dict[str, Any]:
        """Build the input record from the context data store."""
        descriptor = self.descriptor
        if not descriptor.init_params and not descriptor.input_fields:
            inputs = context.data()
            for key, source in descriptor.input_mapping.items():
                if context.has(source):
                    inputs[key] = context.get(source)
            return inputs

        inputs = {}
        for key in descriptor.init_params:
            if context.has(key):
                inputs[key] = context.get(key)
        for key in descriptor.input_fields:
            source = descriptor.input_mapping.get(key, key)
            if context.has(source):
                inputs[key] = context.get(source)
        return inputs

    # ------------------------------------------------------------------
    # Helpers for subclasses
    # ------------------------------------------------------------------

    def resolve_operation(self, inputs: dict[str, Any]) -> str:
        """Pick the operation: input value, then param, then the kind's default."""
        operation = (
            inputs.get("operation") or self.params.get("operation") or self.default_operation
        )
        if self.operations and operation not in self.operations:
            raise UnsupportedOperationError(str(operation), list(self.operations), self.type)
        return operation

    def param(self, inputs: dict[str, Any], key: str, default: Any = None) -> Any:
        """Input value overriding the configured param of the same name."""
        value = inputs.get(key)
        if value is None:
            value = self.params.get(key, default)
        return value

    @staticmethod
    def require(
        inputs: dict[str, Any], key: str, label: str | None = None, operation: str | None = None
    ) -> Any:
        value = inputs.get(key)
        if value is None or value == "":
            raise MissingInputError(key, label, operation)
        return value

    async def execute_tool(self, name: str, *args: Any, **kwargs: Any) -> Any:
        if self.tool_executor is None:
            raise NodeConfigurationError(f"no tool executor injected to run '{name}'", self.id)
        return await self.tool_executor.execute_tool(name, *args, **kwargs)

    def to_descriptor(self) -> NodeDescriptor:
        return self.descriptor

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id!r}, type={self.type!r})"


OperateFunc = Callable[[dict[str, Any], dict[str, Any]], Awaitable[dict[str, Any]] | dict[str, Any]]
HookFunc = Callable[[Any, ExecutionContext], Awaitable[None] | None]


class FunctionNode(Node):
    """
    A node composed from plain functions.

    For ad-hoc, deterministic steps that don't warrant a node class. The
    operate function may be sync or async; optional ``before`` and ``after``
    hooks run in addition to the default pipeline stages.

    Example:
        FunctionNode(
            NodeDescriptor(id="shout", type="function", next=["out"]),
            operate=lambda inputs, config: {"text": inputs["text"].upper()},
        )
    """

    node_type = "function"

    def __init__(
        self,
        descriptor: NodeDescriptor,
        operate: OperateFunc,
        before: HookFunc | None = None,
        after: HookFunc | None = None,
        tool_executor: ToolExecutor | None = None,
    ):
        super().__init__(descriptor, tool_executor)
        self._operate = operate
        self._before = before
        self._after = after

    async def before_execute(self, inputs: dict[str, Any], context: ExecutionContext) -> None:
        await super().before_execute(inputs, context)
        if self._before is not None:
            await _maybe_await(self._before(inputs, context))

    async def operate(self, inputs: dict[str, Any], config: dict[str, Any]) -> dict[str, Any]:
        return await _maybe_await(self._operate(inputs, config))

    async def after_execute(self, output: dict[str, Any], context: ExecutionContext) -> None:
        await super().after_execute(output, context)
        if self._after is not None:
            await _maybe_await(self._after(output, context))


async def _maybe_await(value: Any) -> Any:
    if asyncio.iscoroutine(value) or isinstance(value, asyncio.Future):
        return await value
    return value
