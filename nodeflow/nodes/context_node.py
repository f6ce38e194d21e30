"""Context node: keeps the conversation stories and renders history for the model."""

import logging
from typing import Any

from nodeflow.config import get_language, get_memory_length
from nodeflow.graph.context import RUN_ID, ExecutionContext
from nodeflow.graph.errors import MissingInputError, NodeConfigurationError
from nodeflow.graph.node import Node
from nodeflow.toolkits.dialogue import DialogueStory

logger = logging.getLogger(__name__)


class ContextNode(Node):
    """
    Maintains recent and compressed dialogue stories for one owner.

    Operations:
        add: append ``userMessage`` (or ``userInput``) and/or
            ``assistantResponse`` to both stories
        record: append the finished exchange, the user message plus
            ``assistantResponse`` (or ``llmResponse``), and save it to the
            owner's stored dialogue
        clear: empty both stories
        initializeHistory: reload both stories from storage

    Stories are loaded from storage on first use, when the ``ownerId``
    changes and, for an owner, at the start of every executor run. Every
    operation returns the rendered history: recentHistory,
    compressedHistory, systemMessage and messages.
    """

    node_type = "context"
    description = "Assembles chat history and system messages"
    operations = ("add", "record", "clear", "initializeHistory")
    default_operation = "add"

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.recent_story: DialogueStory | None = None
        self.history_story: DialogueStory | None = None
        self.system_message = ""
        self._loaded_owner: str | None = None
        self._loaded_run: str | None = None
        self._history_loaded = False

    async def setup(self) -> None:
        memory_length = self.params.get("memoryLength", get_memory_length())
        if not isinstance(memory_length, int) or memory_length < 1:
            raise NodeConfigurationError("memoryLength must be a positive integer", self.id)

    def _owner(self, inputs: dict[str, Any]) -> str | None:
        return self.param(inputs, "ownerId")

    @staticmethod
    def _user_message(inputs: dict[str, Any]) -> str | None:
        message = inputs.get("userMessage") or inputs.get("userInput")
        if message is not None and not isinstance(message, str):
            message = str(message)
        return message

    async def load_history(self, inputs: dict[str, Any]) -> None:
        owner_id = self._owner(inputs)
        loaded = await self.execute_tool(
            "load_and_initialize_history",
            owner_id,
            self.param(inputs, "language", get_language()),
            self.param(inputs, "systemMessage"),
        )
        self.recent_story = loaded["recentStory"]
        self.history_story = loaded["historyStory"]
        self.system_message = loaded["systemMessage"]
        self._loaded_owner = owner_id
        self._history_loaded = True

    async def before_execute(self, inputs: dict[str, Any], context: ExecutionContext) -> None:
        await super().before_execute(inputs, context)
        owner_id = self._owner(inputs)
        run_id = context.get_metadata(RUN_ID)
        # Stored dialogue may have grown since the previous run
        new_run = owner_id is not None and run_id is not None and run_id != self._loaded_run
        if not self._history_loaded or owner_id != self._loaded_owner or new_run:
            await self.load_history(inputs)
        self._loaded_run = run_id

    async def operate(self, inputs: dict[str, Any], config: dict[str, Any]) -> dict[str, Any]:
        operation = self.resolve_operation(inputs)
        output: dict[str, Any] = {}

        if operation == "initializeHistory":
            await self.load_history(inputs)

        elif operation == "clear":
            await self.execute_tool("clear_dialogue", self.recent_story)
            await self.execute_tool("clear_dialogue", self.history_story)

        elif operation == "record":
            output.update(await self._record(inputs, operation))

        else:
            user_message = self._user_message(inputs)
            response = inputs.get("assistantResponse")
            if user_message or response:
                for story in (self.recent_story, self.history_story):
                    await self.execute_tool("add_to_dialogue", story, user_message, response)
            if user_message:
                output["userMessage"] = user_message
            if response:
                output["assistantResponse"] = response

        window = self.param(inputs, "memoryLength", get_memory_length())
        output["recentHistory"] = await self.execute_tool(
            "get_recent_history", self.recent_story, window
        )
        output["compressedHistory"] = await self.execute_tool(
            "get_compressed_history", self.history_story, window
        )
        output["systemMessage"] = await self.execute_tool(
            "get_system_message", self.param(inputs, "systemMessage", self.system_message)
        )
        output["messages"] = await self.execute_tool("get_messages", self.recent_story)
        return output

    async def _record(self, inputs: dict[str, Any], operation: str) -> dict[str, Any]:
        user_message = self._user_message(inputs) or ""
        response = inputs.get("assistantResponse") or inputs.get("llmResponse")
        if not response:
            raise MissingInputError("assistantResponse", "Assistant response", operation)

        for story in (self.recent_story, self.history_story):
            await self.execute_tool("add_to_dialogue", story, user_message, response)

        owner_id = self._owner(inputs)
        if owner_id is not None:
            await self.execute_tool("save_dialogue_turn", owner_id, user_message, response)
        else:
            logger.warning(f"Node '{self.id}': no ownerId, exchange kept in memory only")
        return {"assistantResponse": response}

    async def after_execute(self, output: dict[str, Any], context: ExecutionContext) -> None:
        await super().after_execute(output, context)
        if output.get("userMessage"):
            context.add_message(
                {"role": "user", "content": output["userMessage"], "metadata": {"nodeId": self.id}}
            )
