"""
Workflow Executor - runs a workflow graph batch by batch.

The executor:
1. Resolves every node descriptor through the registry (all-or-nothing)
2. Validates the graph: dangling successor references, cycles and, when
   enabled, overlapping writes between nodes of the same batch
3. Runs all entry nodes concurrently as the first batch
4. Computes the next batch from the successors of the batch just finished
5. Repeats until no batch remains, or stops at the first failure

Nodes of one batch run concurrently on the event loop and the whole batch is
drained before the next one is computed, so a node never starts before the
batch that discovered it has finished.
"""

import asyncio
import logging
import time
import uuid
from collections.abc import AsyncIterator
from typing import Any

from nodeflow.graph.context import RUN_ID, WORKFLOW_RESULT, ExecutionContext
from nodeflow.graph.errors import (
    CycleDetectedError,
    DanglingReferenceError,
    GraphValidationError,
    WorkflowCancelledError,
    WriteConflictError,
)
from nodeflow.graph.node import Node
from nodeflow.graph.registry import NodeRegistry, default_registry
from nodeflow.graph.spec import WorkflowDescriptor, find_cycle
from nodeflow.graph.types import (
    BatchResult,
    ExecutionResult,
    NodeExecutionStatus,
    SchedulingMode,
    WorkflowExecutionResult,
)
from nodeflow.observability.logging import set_trace_context
from nodeflow.runner.tool_registry import ToolExecutor

logger = logging.getLogger(__name__)


class WorkflowExecutor:
    """
    Executes workflow graphs.

    Example:
        executor = WorkflowExecutor(
            workflow=build_dialogue_workflow(),
            tool_executor=tools,
        )
        result = await executor.execute({"userInput": "hi", "ownerId": "c-1"})
        if result.success:
            print(result.output)
    """

    def __init__(
        self,
        workflow: WorkflowDescriptor | dict[str, Any],
        registry: NodeRegistry | None = None,
        context: ExecutionContext | None = None,
        tool_executor: ToolExecutor | None = None,
        *,
        scheduling: SchedulingMode = SchedulingMode.ALL_PREDECESSORS,
        node_timeout: float | None = None,
        enforce_disjoint_writes: bool = False,
    ):
        """
        Initialize the executor.

        Args:
            workflow: Workflow descriptor (or its dict form)
            registry: Node kinds; defaults to the built-in dialogue kinds
            context: Context used by runs that don't pass their own
            tool_executor: Executor injected into every node
            scheduling: Readiness rule for successors
            node_timeout: Seconds allowed per node execution
            enforce_disjoint_writes: Reject batches whose nodes declare
                overlapping output fields
        """
        if isinstance(workflow, dict):
            workflow = WorkflowDescriptor.model_validate(workflow)
        self.workflow = workflow
        self.registry = registry or default_registry()
        self.context = context
        self.tool_executor = tool_executor
        self.scheduling = SchedulingMode(scheduling)
        self.node_timeout = node_timeout
        self.enforce_disjoint_writes = enforce_disjoint_writes
        self.last_result: WorkflowExecutionResult | None = None
        self.logger = logger

        self.registry.ensure_resolvable(workflow)
        self.nodes: dict[str, Node] = {}
        for descriptor in workflow.nodes:
            self.nodes[descriptor.id] = self.registry.create(descriptor, tool_executor)

        self._initialized = False

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------

    def get_node(self, node_id: str) -> Node | None:
        return self.nodes.get(node_id)

    def get_entry_nodes(self) -> list[Node]:
        """Nodes in the ENTRY category; if none, nodes that no node lists as a successor."""
        entries = [node for node in self.nodes.values() if node.is_entry()]
        if entries:
            return entries

        targets = {t for node in self.nodes.values() for t in node.get_next()}
        return [node for node_id, node in self.nodes.items() if node_id not in targets]

    def _successor_map(self) -> dict[str, list[str]]:
        return {node_id: node.get_next() for node_id, node in self.nodes.items()}

    def _reachable_from(self, start: list[str]) -> set[str]:
        successors = self._successor_map()
        seen: set[str] = set()
        stack = list(start)
        while stack:
            node_id = stack.pop()
            if node_id in seen or node_id not in successors:
                continue
            seen.add(node_id)
            stack.extend(successors[node_id])
        return seen

    def _predecessor_map(self) -> dict[str, list[str]]:
        preds: dict[str, list[str]] = {node_id: [] for node_id in self.nodes}
        for node_id, node in self.nodes.items():
            for target in node.get_next():
                if target in preds:
                    preds[target].append(node_id)
        return preds

    def _next_batch(
        self,
        finished: list[str],
        processed: set[str],
        reachable: set[str],
        preds: dict[str, list[str]],
    ) -> list[str]:
        batch: list[str] = []
        for node_id in finished:
            for target in self.nodes[node_id].get_next():
                if target in processed or target in batch or target not in self.nodes:
                    continue
                if self.scheduling == SchedulingMode.ALL_PREDECESSORS:
                    waiting = [p for p in preds[target] if p in reachable and p not in processed]
                    if waiting:
                        continue
                batch.append(target)
        return batch

    def plan_batches(self) -> list[list[str]]:
        """Simulate scheduling of a fully successful run and return the batches."""
        entries = [node.id for node in self.get_entry_nodes()]
        reachable = self._reachable_from(entries)
        preds = self._predecessor_map()
        batches = []
        processed: set[str] = set()
        batch = entries
        while batch:
            batches.append(batch)
            processed.update(batch)
            batch = self._next_batch(batch, processed, reachable, preds)
        return batches

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self) -> bool:
        """
        Validate the graph before running it.

        Raises:
            DanglingReferenceError: a successor id does not exist
            CycleDetectedError: the successor relation has a cycle
            WriteConflictError: nodes of one batch declare the same output
                field (only with ``enforce_disjoint_writes``)
        """
        for node_id, node in self.nodes.items():
            for target in node.get_next():
                if target not in self.nodes:
                    raise DanglingReferenceError(node_id, target)

        entries = [node.id for node in self.get_entry_nodes()]
        cycle = find_cycle(self._successor_map(), entries)
        if cycle:
            raise CycleDetectedError(cycle)

        for warning in self.workflow.check_dataflow():
            self.logger.warning(f"⚠ {warning}")

        if self.enforce_disjoint_writes:
            self._check_disjoint_writes()

        return True

    def _check_disjoint_writes(self) -> None:
        for batch in self.plan_batches():
            if len(batch) < 2:
                continue
            writers: dict[str, list[str]] = {}
            for node_id in batch:
                for key in self.nodes[node_id].descriptor.output_fields:
                    writers.setdefault(key, []).append(node_id)
            conflicts = {key: ids for key, ids in writers.items() if len(ids) > 1}
            if conflicts:
                raise WriteConflictError(batch, conflicts)

    async def initialize(self) -> None:
        """Run every node's one-time setup concurrently. Configuration errors propagate."""
        if self._initialized:
            return
        await asyncio.gather(*(node.initialize() for node in self.nodes.values()))
        self._initialized = True

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(
        self,
        initial_input: dict[str, Any] | None = None,
        context: ExecutionContext | None = None,
    ) -> WorkflowExecutionResult:
        """
        Execute the workflow once.

        Never raises for node or validation failures: the returned result
        carries status FAILED and the original exception.

        Args:
            initial_input: Values copied into the context data store first
            context: Context for this run; defaults to the executor's context
                or a fresh one

        Returns:
            WorkflowExecutionResult for this run
        """
        run = self._run(initial_input, context)
        async for _ in run:
            pass
        return self.last_result

    async def stream(
        self,
        initial_input: dict[str, Any] | None = None,
        context: ExecutionContext | None = None,
    ) -> AsyncIterator[BatchResult]:
        """
        Execute the workflow, yielding each batch as soon as it has finished.

        The final WorkflowExecutionResult is available as ``last_result``
        once the iterator is exhausted.
        """
        async for batch in self._run(initial_input, context):
            yield batch

    async def _run(
        self,
        initial_input: dict[str, Any] | None,
        context: ExecutionContext | None,
    ) -> AsyncIterator[BatchResult]:
        ctx = context or self.context or ExecutionContext()
        run_id = uuid.uuid4().hex
        set_trace_context(workflow_id=self.workflow.id, run_id=run_id)
        ctx.set_metadata(RUN_ID, run_id)

        result = WorkflowExecutionResult(
            workflow_id=self.workflow.id,
            status=NodeExecutionStatus.RUNNING,
        )
        self.last_result = result
        processed: set[str] = set()

        self.logger.info(f"🚀 Starting workflow '{self.workflow.id}' ({len(self.nodes)} nodes)")

        try:
            for key, value in (initial_input or {}).items():
                ctx.set(key, value)

            await self.initialize()
            self.validate()

            entries = [node.id for node in self.get_entry_nodes()]
            if not entries:
                raise GraphValidationError("No entry nodes found in workflow")

            reachable = self._reachable_from(entries)
            preds = self._predecessor_map()

            batch = entries
            index = 0
            while batch:
                ctx.raise_if_cancelled()
                self.logger.info(f"   ⑂ Batch {index}: {batch}")

                batch_results = await self._execute_batch(batch, ctx)
                result.batches.append(list(batch))
                result.processed.extend(batch)
                result.results.extend(batch_results)
                processed.update(batch)

                yield BatchResult(index=index, node_ids=list(batch), results=batch_results)

                failed = [r for r in batch_results if r.status == NodeExecutionStatus.FAILED]
                if failed:
                    raise failed[0].error or RuntimeError(f"Node '{failed[0].node_id}' failed")

                batch = self._next_batch(batch, processed, reachable, preds)
                index += 1

            result.output = ctx.get(WORKFLOW_RESULT)
            result.status = NodeExecutionStatus.COMPLETED
            ctx.mark_complete(result.output)
            self.logger.info(f"✓ Workflow '{self.workflow.id}' completed")

        except Exception as e:
            result.status = NodeExecutionStatus.FAILED
            result.error = e
            ctx.mark_failed(e)
            self.logger.error(f"✗ Workflow '{self.workflow.id}' failed: {e}")

        finally:
            if result.status == NodeExecutionStatus.RUNNING:
                # The consumer closed the stream before the last batch
                result.status = NodeExecutionStatus.FAILED
                result.error = WorkflowCancelledError("stream closed early")
                ctx.mark_failed(result.error)
                self.logger.warning(f"⚠ Workflow '{self.workflow.id}' stopped early")
            self._record_skipped(processed, ctx, result)
            result.end_time = time.time()

    async def _execute_batch(
        self, batch: list[str], ctx: ExecutionContext
    ) -> list[ExecutionResult]:
        """Run one batch concurrently and wait for every node to finish."""
        nodes = [self.nodes[node_id] for node_id in batch]
        outcomes = await asyncio.gather(
            *(
                node.execute(ctx, raise_on_failure=False, timeout=self.node_timeout)
                for node in nodes
            ),
            return_exceptions=True,
        )

        results = []
        for node, outcome in zip(nodes, outcomes, strict=True):
            if isinstance(outcome, ExecutionResult):
                results.append(outcome)
                continue
            # execute() records its own failures; this covers errors escaping its hooks
            failure = ExecutionResult(
                node_id=node.id,
                status=NodeExecutionStatus.FAILED,
                error=outcome,
                end_time=time.time(),
            )
            ctx.add_execution_result(failure)
            results.append(failure)
        return results

    def _record_skipped(
        self, processed: set[str], ctx: ExecutionContext, result: WorkflowExecutionResult
    ) -> None:
        now = time.time()
        for node_id in self.nodes:
            if node_id in processed:
                continue
            skipped = ExecutionResult(
                node_id=node_id,
                status=NodeExecutionStatus.SKIPPED,
                start_time=now,
                end_time=now,
            )
            ctx.add_execution_result(skipped)
            result.results.append(skipped)
