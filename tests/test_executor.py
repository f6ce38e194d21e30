"""
Tests for WorkflowExecutor scheduling, validation and failure handling.
Nodes are FunctionNodes so each test controls exactly what runs.
"""

import asyncio

import pytest

from nodeflow.graph.context import WORKFLOW_RESULT, ExecutionContext
from nodeflow.graph.errors import (
    CycleDetectedError,
    DanglingReferenceError,
    UnknownNodeTypeError,
    WorkflowCancelledError,
    WriteConflictError,
)
from nodeflow.graph.executor import WorkflowExecutor
from nodeflow.graph.node import FunctionNode
from nodeflow.graph.registry import NodeRegistry
from nodeflow.graph.spec import NodeDescriptor, WorkflowDescriptor
from nodeflow.graph.types import NodeCategory, NodeExecutionStatus, SchedulingMode

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class Recorder:
    """Builds FunctionNode operations that log when they start and finish."""

    def __init__(self):
        self.log: list[str] = []

    def step(self, node_id: str, output: dict | None = None, delay: float = 0):
        async def operate(inputs, config):
            self.log.append(f"start:{node_id}")
            if delay:
                await asyncio.sleep(delay)
            self.log.append(f"end:{node_id}")
            return output if output is not None else {f"{node_id}_done": True}

        return operate

    def failing(self, node_id: str, error: Exception):
        async def operate(inputs, config):
            self.log.append(f"start:{node_id}")
            raise error

        return operate

    def ran(self) -> list[str]:
        return [entry.split(":", 1)[1] for entry in self.log if entry.startswith("start:")]


def make_registry(operations: dict) -> NodeRegistry:
    registry = NodeRegistry()
    registry.register(
        "fn",
        lambda descriptor, tools: FunctionNode(
            descriptor, operations[descriptor.id], tool_executor=tools
        ),
    )
    return registry


def make_workflow(*nodes: dict) -> WorkflowDescriptor:
    descriptors = [NodeDescriptor(type="fn", **node) for node in nodes]
    return WorkflowDescriptor(id="wf-test", nodes=descriptors)


def executor_for(workflow: WorkflowDescriptor, operations: dict, **kwargs) -> WorkflowExecutor:
    return WorkflowExecutor(workflow, registry=make_registry(operations), **kwargs)


# ===================================================================
# Scheduling
# ===================================================================


class TestScheduling:
    @pytest.mark.asyncio
    async def test_linear_workflow(self):
        rec = Recorder()
        wf = make_workflow(
            {"id": "a", "category": NodeCategory.ENTRY, "next": ["b"]},
            {"id": "b", "next": ["c"]},
            {"id": "c", "category": NodeCategory.EXIT},
        )
        ops = {
            "a": rec.step("a"),
            "b": rec.step("b"),
            "c": rec.step("c", {WORKFLOW_RESULT: "done"}),
        }

        result = await executor_for(wf, ops).execute()

        assert result.success
        assert result.batches == [["a"], ["b"], ["c"]]
        assert result.processed == ["a", "b", "c"]
        assert result.output == "done"
        assert [r.status for r in result.results] == [NodeExecutionStatus.COMPLETED] * 3

    @pytest.mark.asyncio
    async def test_join_waits_for_whole_batch(self):
        rec = Recorder()
        wf = make_workflow(
            {"id": "a", "category": NodeCategory.ENTRY, "next": ["c"]},
            {"id": "b", "category": NodeCategory.ENTRY, "next": ["c"]},
            {"id": "c"},
        )
        seen = {}

        async def join(inputs, config):
            rec.log.append("start:c")
            seen.update(inputs)
            return {}

        ops = {"a": rec.step("a", {"x": 1}, delay=0.02), "b": rec.step("b", {"y": 2}), "c": join}

        result = await executor_for(wf, ops).execute()

        assert result.batches == [["a", "b"], ["c"]]
        assert rec.log.index("start:c") > rec.log.index("end:a")
        assert rec.log.index("start:c") > rec.log.index("end:b")
        assert seen == {"x": 1, "y": 2}

    @pytest.mark.asyncio
    async def test_batch_runs_concurrently(self):
        rec = Recorder()
        wf = make_workflow(
            {"id": "a", "category": NodeCategory.ENTRY},
            {"id": "b", "category": NodeCategory.ENTRY},
        )
        ops = {"a": rec.step("a", delay=0.02), "b": rec.step("b", delay=0.02)}

        await executor_for(wf, ops).execute()

        # both started before either finished
        assert rec.log[:2] == ["start:a", "start:b"]

    @pytest.mark.asyncio
    async def test_roots_are_entries_when_no_entry_category(self):
        rec = Recorder()
        wf = make_workflow({"id": "a", "next": ["b"]}, {"id": "b"})
        executor = executor_for(wf, {"a": rec.step("a"), "b": rec.step("b")})
        assert [n.id for n in executor.get_entry_nodes()] == ["a"]
        assert (await executor.execute()).success

    def test_all_predecessors_vs_first_discovery(self):
        wf = make_workflow(
            {"id": "a", "category": NodeCategory.ENTRY, "next": ["b", "d"]},
            {"id": "b", "next": ["d"]},
            {"id": "d"},
        )
        ops = {node_id: Recorder().step(node_id) for node_id in "abd"}

        strict = executor_for(wf, ops)
        eager = executor_for(wf, ops, scheduling=SchedulingMode.FIRST_DISCOVERY)

        assert strict.plan_batches() == [["a"], ["b"], ["d"]]
        assert eager.plan_batches() == [["a"], ["b", "d"]]

    @pytest.mark.asyncio
    async def test_each_node_runs_once_per_run(self):
        rec = Recorder()
        wf = make_workflow(
            {"id": "a", "category": NodeCategory.ENTRY, "next": ["b", "d"]},
            {"id": "b", "next": ["d"]},
            {"id": "d"},
        )
        ops = {node_id: rec.step(node_id) for node_id in "abd"}

        result = await executor_for(wf, ops, scheduling=SchedulingMode.FIRST_DISCOVERY).execute()

        assert sorted(rec.ran()) == ["a", "b", "d"]
        assert len(result.results) == 3

    @pytest.mark.asyncio
    async def test_stream_yields_batches(self):
        rec = Recorder()
        wf = make_workflow(
            {"id": "a", "category": NodeCategory.ENTRY, "next": ["b"]},
            {"id": "b"},
        )
        executor = executor_for(wf, {"a": rec.step("a", {"v": 1}), "b": rec.step("b", {"w": 2})})

        batches = [batch async for batch in executor.stream()]

        assert [b.node_ids for b in batches] == [["a"], ["b"]]
        assert batches[0].outputs == {"a": {"v": 1}}
        assert executor.last_result.success

    @pytest.mark.asyncio
    async def test_stream_closed_early_ends_in_terminal_status(self):
        rec = Recorder()
        wf = make_workflow(
            {"id": "a", "category": NodeCategory.ENTRY, "next": ["b"]},
            {"id": "b"},
        )
        executor = executor_for(wf, {"a": rec.step("a"), "b": rec.step("b")})
        ctx = ExecutionContext()

        batches = executor.stream(context=ctx)
        first = await anext(batches)
        await batches.aclose()

        result = executor.last_result
        assert first.node_ids == ["a"]
        assert result.status == NodeExecutionStatus.FAILED
        assert isinstance(result.error, WorkflowCancelledError)
        assert result.get_result("b").status == NodeExecutionStatus.SKIPPED
        assert ctx.is_failed()


# ===================================================================
# Validation
# ===================================================================


class TestValidation:
    @pytest.mark.asyncio
    async def test_cycle_fails_before_any_node_runs(self):
        rec = Recorder()
        wf = make_workflow(
            {"id": "a", "category": NodeCategory.ENTRY, "next": ["b"]},
            {"id": "b", "next": ["c"]},
            {"id": "c", "next": ["b"]},
        )
        ctx = ExecutionContext()

        result = await executor_for(wf, {n: rec.step(n) for n in "abc"}).execute(context=ctx)

        assert result.status == NodeExecutionStatus.FAILED
        assert isinstance(result.error, CycleDetectedError)
        assert result.error.cycle == ["b", "c", "b"]
        assert rec.log == []
        assert {r.status for r in ctx.get_execution_history()} == {NodeExecutionStatus.SKIPPED}
        assert ctx.is_failed()

    @pytest.mark.asyncio
    async def test_dangling_reference(self):
        rec = Recorder()
        wf = make_workflow({"id": "a", "category": NodeCategory.ENTRY, "next": ["ghost"]})

        result = await executor_for(wf, {"a": rec.step("a")}).execute()

        assert isinstance(result.error, DanglingReferenceError)
        assert "ghost" in str(result.error)
        assert rec.log == []

    def test_unknown_type_is_rejected_at_construction(self):
        wf = WorkflowDescriptor(id="wf", nodes=[NodeDescriptor(id="a", type="mystery")])
        with pytest.raises(UnknownNodeTypeError):
            WorkflowExecutor(wf, registry=NodeRegistry())

    @pytest.mark.asyncio
    async def test_disjoint_writes(self):
        wf = make_workflow(
            {"id": "a", "category": NodeCategory.ENTRY, "output_fields": ["x"]},
            {"id": "b", "category": NodeCategory.ENTRY, "output_fields": ["x"]},
        )
        ops = {"a": Recorder().step("a", {"x": 1}), "b": Recorder().step("b", {"x": 2})}

        relaxed = await executor_for(wf, ops).execute()
        strict = await executor_for(wf, ops, enforce_disjoint_writes=True).execute()

        assert relaxed.success
        assert isinstance(strict.error, WriteConflictError)
        assert strict.error.conflicts == {"x": ["a", "b"]}

    def test_descriptor_dict_is_accepted(self):
        executor = WorkflowExecutor(
            {"id": "wf", "nodes": [{"id": "a", "type": "fn"}]},
            registry=make_registry({"a": Recorder().step("a")}),
        )
        assert executor.validate() is True


# ===================================================================
# Failure handling
# ===================================================================


class TestFailures:
    @pytest.mark.asyncio
    async def test_failure_preserves_error_and_skips_rest(self):
        rec = Recorder()
        boom = ValueError("boom")
        wf = make_workflow(
            {"id": "a", "category": NodeCategory.ENTRY, "next": ["b"]},
            {"id": "b", "next": ["c"]},
            {"id": "c"},
        )
        ops = {"a": rec.step("a"), "b": rec.failing("b", boom), "c": rec.step("c")}
        ctx = ExecutionContext()

        result = await executor_for(wf, ops).execute(context=ctx)

        assert result.status == NodeExecutionStatus.FAILED
        assert result.error is boom
        assert rec.ran() == ["a", "b"]
        assert result.get_result("b").status == NodeExecutionStatus.FAILED
        assert result.get_result("c").status == NodeExecutionStatus.SKIPPED
        assert [r.node_id for r in ctx.get_execution_history()] == ["a", "b", "c"]
        assert ctx.is_failed()

    @pytest.mark.asyncio
    async def test_sibling_in_failing_batch_still_finishes(self):
        rec = Recorder()
        wf = make_workflow(
            {"id": "a", "category": NodeCategory.ENTRY},
            {"id": "b", "category": NodeCategory.ENTRY},
        )
        ops = {"a": rec.failing("a", RuntimeError("x")), "b": rec.step("b", delay=0.01)}

        result = await executor_for(wf, ops).execute()

        assert not result.success
        assert "end:b" in rec.log
        assert result.get_result("b").status == NodeExecutionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_node_timeout(self):
        rec = Recorder()
        wf = make_workflow({"id": "a", "category": NodeCategory.ENTRY})

        result = await executor_for(wf, {"a": rec.step("a", delay=1)}, node_timeout=0.01).execute()

        assert isinstance(result.error, TimeoutError)
        assert "'a'" in str(result.error)

    @pytest.mark.asyncio
    async def test_cancellation_between_batches(self):
        ctx = ExecutionContext()
        rec = Recorder()

        async def cancel_run(inputs, config):
            config["context"].cancel("enough")
            return {}

        wf = make_workflow(
            {"id": "a", "category": NodeCategory.ENTRY, "next": ["b"]},
            {"id": "b"},
        )
        result = await executor_for(wf, {"a": cancel_run, "b": rec.step("b")}).execute(context=ctx)

        assert isinstance(result.error, WorkflowCancelledError)
        assert rec.log == []
        assert result.get_result("b").status == NodeExecutionStatus.SKIPPED

    @pytest.mark.asyncio
    async def test_initial_input_is_copied_into_context(self):
        seen = {}

        def capture(inputs, config):
            seen.update(inputs)
            return {WORKFLOW_RESULT: inputs["userInput"]}

        wf = make_workflow({"id": "a", "category": NodeCategory.ENTRY})
        ctx = ExecutionContext()

        result = await executor_for(wf, {"a": capture}).execute({"userInput": "hi"}, context=ctx)

        assert seen == {"userInput": "hi"}
        assert result.output == "hi"
        assert ctx.get_global(WORKFLOW_RESULT) == "hi"
        assert ctx.is_completed()
