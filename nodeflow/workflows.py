"""Ready-made workflows."""

from typing import Any

from nodeflow.graph.context import WORKFLOW_RESULT, ExecutionContext
from nodeflow.graph.executor import WorkflowExecutor
from nodeflow.graph.spec import NodeDescriptor, WorkflowDescriptor
from nodeflow.graph.types import NodeCategory
from nodeflow.runner.tool_registry import ToolExecutor

DIALOGUE_WORKFLOW_ID = "dialogue-turn"
# Owner used when the caller does not name one, so every turn is stored
DEFAULT_OWNER = "default"


def build_dialogue_workflow(
    system_message: str | None = None,
    llm_params: dict[str, Any] | None = None,
    memory_length: int | None = None,
) -> WorkflowDescriptor:
    """
    One dialogue turn: input → context → llm → regex → record → output.

    The context node folds ``userInput`` into the owner's history, the LLM
    node continues the conversation, the regex node splits and cleans the
    tagged reply and the record node stores the exchange, so the next run
    sees it. The output node publishes the screen content, next prompts and
    event under ``workflowResult``. Without an ``ownerId`` turns are stored
    under ``DEFAULT_OWNER``.
    """
    context_params: dict[str, Any] = {}
    if system_message is not None:
        context_params["systemMessage"] = system_message
    if memory_length is not None:
        context_params["memoryLength"] = memory_length

    nodes = [
        NodeDescriptor(
            id="input",
            type="userInput",
            category=NodeCategory.ENTRY,
            next=["context"],
            params={"defaults": {"ownerId": DEFAULT_OWNER}},
            init_params=["userInput", "ownerId"],
            output_fields=["userInput", "ownerId"],
        ),
        NodeDescriptor(
            id="context",
            type="context",
            next=["llm"],
            params=context_params,
            input_fields=["userInput", "ownerId"],
            output_fields=[
                "userMessage",
                "systemMessage",
                "recentHistory",
                "compressedHistory",
                "messages",
            ],
        ),
        NodeDescriptor(
            id="llm",
            type="llm",
            next=["regex"],
            params={"operation": "chat", **(llm_params or {})},
            input_fields=["systemMessage", "messages"],
            output_fields=["llmResponse", "finishReason", "model"],
        ),
        NodeDescriptor(
            id="regex",
            type="regex",
            next=["record"],
            params={"mode": "response"},
            input_fields=["llmResponse", "ownerId"],
            output_fields=["screenContent", "nextPrompts", "event", "fullResponse"],
        ),
        NodeDescriptor(
            id="record",
            type="context",
            next=["output"],
            params={"operation": "record", **context_params},
            input_fields=["userInput", "ownerId", "llmResponse"],
            output_fields=["assistantResponse"],
        ),
        NodeDescriptor(
            id="output",
            type="output",
            category=NodeCategory.EXIT,
            params={"format": "json"},
            input_fields=["userInput", "screenContent", "nextPrompts", "event", "model"],
            output_fields=[WORKFLOW_RESULT],
        ),
    ]
    return WorkflowDescriptor(
        id=DIALOGUE_WORKFLOW_ID,
        name="Dialogue turn",
        description="Builds context, calls the model and post-processes its reply",
        nodes=nodes,
    )


def create_dialogue_executor(
    tool_registry: ToolExecutor,
    context: ExecutionContext | None = None,
    **workflow_options: Any,
) -> WorkflowExecutor:
    """Executor for ``build_dialogue_workflow`` with the built-in node kinds."""
    return WorkflowExecutor(
        build_dialogue_workflow(**workflow_options),
        context=context,
        tool_executor=tool_registry,
    )
