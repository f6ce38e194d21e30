"""Tests for trace context propagation and log formatters."""

import json
import logging

import pytest

from nodeflow.graph.context import ExecutionContext
from nodeflow.graph.node import FunctionNode
from nodeflow.graph.spec import NodeDescriptor
from nodeflow.observability import get_trace_context, set_trace_context
from nodeflow.observability.logging import HumanReadableFormatter, StructuredFormatter


def make_record(message: str, **extra) -> logging.LogRecord:
    record = logging.LogRecord("nodeflow.test", logging.INFO, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestFormatters:
    def test_structured_includes_trace_and_extras(self):
        set_trace_context(run_id="run-123", workflow_id="dialogue")
        line = StructuredFormatter().format(make_record("\033[32mhello\033[0m", latency_ms=12))
        entry = json.loads(line)

        assert entry["message"] == "hello"
        assert entry["run_id"] == "run-123"
        assert entry["workflow_id"] == "dialogue"
        assert entry["latency_ms"] == 12
        assert entry["level"] == "info"

    def test_human_readable_prefix(self):
        set_trace_context(run_id="abcdefghijkl", workflow_id="dialogue", node_id="llm")
        line = HumanReadableFormatter().format(make_record("called", event="tool_call"))
        assert "[run:abcdefgh | workflow:dialogue | node:llm]" in line
        assert line.endswith("called [tool_call]")


class TestTraceContext:
    @pytest.mark.asyncio
    async def test_node_id_is_set_during_execution_and_restored(self):
        seen = {}

        def operate(inputs, config):
            seen.update(get_trace_context())
            return {}

        set_trace_context(workflow_id="wf")
        node = FunctionNode(NodeDescriptor(id="traced", type="function"), operate)
        await node.execute(ExecutionContext(), {})

        assert seen == {"workflow_id": "wf", "node_id": "traced"}
        assert get_trace_context().get("node_id") is None
