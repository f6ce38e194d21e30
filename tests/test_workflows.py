"""End-to-end tests: built-in workflows, the CLI and configuration."""

import json

import pytest

from nodeflow import (
    ExecutionContext,
    NodeDescriptor,
    NodeExecutionStatus,
    WorkflowDescriptor,
    WorkflowExecutor,
    build_dialogue_workflow,
    create_dialogue_executor,
    register_default_tools,
)
from nodeflow.cli import main
from nodeflow.config import RuntimeConfig, get_memory_length, get_preferred_model
from nodeflow.graph.context import WORKFLOW_RESULT
from nodeflow.llm.mock import MockLLMProvider
from nodeflow.toolkits import InMemoryDialogueStore

TAGGED_REPLY = (
    "<output>Hello, traveller.\n"
    "<next_prompts>\n- Ask about the road\n- Say goodbye\n</next_prompts>\n"
    "<events>[greeting]</events></output>"
)


# ===================================================================
# Ad-hoc workflows over the built-in node kinds
# ===================================================================


class TestBuiltinWorkflow:
    @pytest.mark.asyncio
    async def test_input_context_output(self, tools):
        wf = WorkflowDescriptor(
            id="mini",
            nodes=[
                NodeDescriptor(id="input", type="userInput", next=["context"]),
                NodeDescriptor(id="context", type="context", next=["output"]),
                NodeDescriptor(id="output", type="output"),
            ],
        )
        ctx = ExecutionContext()

        result = await WorkflowExecutor(wf, tool_executor=tools).execute({"userInput": "hi"}, ctx)

        assert result.success
        assert [r.status for r in result.results] == [NodeExecutionStatus.COMPLETED] * 3
        assert result.output["userInput"] == "hi"
        assert ctx.get(WORKFLOW_RESULT)["userInput"] == "hi"
        assert ctx.is_completed()

    @pytest.mark.asyncio
    async def test_missing_tool_executor_fails_cleanly(self):
        wf = WorkflowDescriptor(
            id="mini",
            nodes=[
                NodeDescriptor(id="input", type="userInput", next=["output"]),
                NodeDescriptor(id="output", type="output"),
            ],
        )

        result = await WorkflowExecutor(wf).execute({"userInput": "hi"})

        assert result.status == NodeExecutionStatus.FAILED
        assert "no tool executor" in str(result.error)
        assert {r.status for r in result.results} == {NodeExecutionStatus.SKIPPED}


# ===================================================================
# Dialogue workflow
# ===================================================================


class TestDialogueWorkflow:
    def test_descriptor_is_valid(self):
        wf = build_dialogue_workflow()
        assert wf.node_ids() == ["input", "context", "llm", "regex", "record", "output"]
        assert wf.validate() == []
        assert wf.check_dataflow() == []

    def test_plan(self, tools):
        executor = create_dialogue_executor(tools)
        assert executor.plan_batches() == [
            ["input"],
            ["context"],
            ["llm"],
            ["regex"],
            ["record"],
            ["output"],
        ]

    @pytest.mark.asyncio
    async def test_full_turn(self):
        provider = MockLLMProvider([TAGGED_REPLY])
        tools = register_default_tools(provider_factory=lambda config: provider)
        executor = create_dialogue_executor(tools, system_message="You are a guide.")

        result = await executor.execute({"userInput": "hi", "ownerId": "c-1"})

        assert result.success, result.error
        assert result.output == {
            "userInput": "hi",
            "screenContent": "Hello, traveller.",
            "nextPrompts": ["Ask about the road", "Say goodbye"],
            "event": "greeting",
            "model": "mock-model",
        }
        call = provider.calls[0]
        assert call["system"] == "You are a guide."
        assert call["messages"] == [{"role": "user", "content": "hi"}]

    @pytest.mark.asyncio
    async def test_history_reaches_the_model(self):
        store = InMemoryDialogueStore()
        store.append_turn("c-1", "Where am I?", "In the forest.")
        provider = MockLLMProvider()
        tools = register_default_tools(dialogue_store=store, provider_factory=lambda c: provider)
        executor = create_dialogue_executor(tools)

        result = await executor.execute({"userInput": "Which way?", "ownerId": "c-1"})

        assert result.success, result.error
        assert [m["content"] for m in provider.calls[0]["messages"]] == [
            "Where am I?",
            "In the forest.",
            "Which way?",
        ]
        assert result.output["screenContent"] == "echo: Which way?"

    @pytest.mark.asyncio
    async def test_reused_executor_remembers_previous_turn(self):
        provider = MockLLMProvider()
        tools = register_default_tools(provider_factory=lambda c: provider)
        executor = create_dialogue_executor(tools)

        first = await executor.execute({"userInput": "first"})
        second = await executor.execute({"userInput": "second"})

        assert first.success, first.error
        assert second.success, second.error
        assert [m["content"] for m in provider.calls[1]["messages"]] == [
            "first",
            "echo: first",
            "second",
        ]

    @pytest.mark.asyncio
    async def test_turn_is_stored_for_owner(self):
        store = InMemoryDialogueStore()
        tools = register_default_tools(
            dialogue_store=store, provider_factory=lambda c: MockLLMProvider()
        )

        executor = create_dialogue_executor(tools)
        result = await executor.execute({"userInput": "hi", "ownerId": "c-7"})

        assert result.success, result.error
        path = await store.get_dialogue_path("c-7")
        assert [(t.user_input, t.assistant_response) for t in path] == [("hi", "echo: hi")]

    @pytest.mark.asyncio
    async def test_model_failure_is_reported(self):
        def broken(messages, system):
            raise ConnectionError("backend down")

        tools = register_default_tools(provider_factory=lambda c: MockLLMProvider(broken))
        result = await create_dialogue_executor(tools).execute({"userInput": "hi"})

        assert result.status == NodeExecutionStatus.FAILED
        assert "backend down" in str(result.error)
        assert result.get_result("llm").status == NodeExecutionStatus.FAILED
        assert result.get_result("regex").status == NodeExecutionStatus.SKIPPED
        assert result.get_result("record").status == NodeExecutionStatus.SKIPPED


# ===================================================================
# CLI
# ===================================================================


@pytest.fixture
def workflow_file(tmp_path):
    path = tmp_path / "dialogue.json"
    path.write_text(json.dumps(build_dialogue_workflow().to_dict()))
    return path


class TestCLI:
    def test_validate_ok(self, workflow_file, capsys):
        assert main(["validate", str(workflow_file)]) == 0
        assert "is valid" in capsys.readouterr().out

    def test_validate_reports_errors(self, tmp_path, capsys):
        path = tmp_path / "broken.json"
        path.write_text(
            json.dumps({"id": "broken", "nodes": [{"id": "a", "type": "mystery", "next": ["b"]}]})
        )
        assert main(["validate", str(path)]) == 1
        out = capsys.readouterr().out
        assert "non-existent node 'b'" in out
        assert "unknown type 'mystery'" in out

    def test_missing_file(self, tmp_path, capsys):
        assert main(["info", str(tmp_path / "nope.json")]) == 1
        assert "not found" in capsys.readouterr().err

    def test_info(self, workflow_file, capsys):
        assert main(["info", str(workflow_file)]) == 0
        out = capsys.readouterr().out
        assert "Dialogue turn" in out
        assert "Roots: input" in out

    def test_plan(self, workflow_file, capsys):
        assert main(["plan", str(workflow_file)]) == 0
        out = capsys.readouterr().out
        assert "Batch 0: input" in out
        assert "Batch 5: output" in out


# ===================================================================
# Configuration
# ===================================================================


class TestConfig:
    def test_defaults_without_file(self):
        config = RuntimeConfig()
        assert config.model == "gpt-4o-mini"
        assert config.memory_length == 4
        assert config.api_key is None

    def test_values_from_file(self, isolated_config, monkeypatch):
        isolated_config.write_text(
            json.dumps(
                {
                    "llm": {"provider": "ollama", "model": "llama3", "api_key_env_var": "TEST_KEY"},
                    "dialogue": {"memory_length": 8},
                }
            )
        )
        monkeypatch.setenv("TEST_KEY", "secret")

        assert get_preferred_model() == "ollama/llama3"
        assert get_memory_length() == 8
        assert RuntimeConfig().api_key == "secret"

    def test_unreadable_file_is_ignored(self, isolated_config):
        isolated_config.write_text("{not json")
        assert get_preferred_model() == "gpt-4o-mini"
