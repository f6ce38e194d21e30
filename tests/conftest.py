"""Shared fixtures for the nodeflow test suite."""

import pytest

from nodeflow.graph.context import ExecutionContext
from nodeflow.llm.mock import MockLLMProvider
from nodeflow.observability import clear_trace_context
from nodeflow.toolkits import register_default_tools


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Point the config loader at a file that does not exist."""
    monkeypatch.setenv("NODEFLOW_CONFIG", str(tmp_path / "configuration.json"))
    yield tmp_path / "configuration.json"
    clear_trace_context()


@pytest.fixture
def context():
    return ExecutionContext(context_id="ctx-test")


@pytest.fixture
def mock_llm():
    return MockLLMProvider()


@pytest.fixture
def tools(mock_llm):
    return register_default_tools(provider_factory=lambda config: mock_llm)
