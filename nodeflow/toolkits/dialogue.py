"""
Dialogue history toolkit used by the context node.

A DialogueStory holds the accumulated turns of a conversation as two
parallel lists (user inputs and character responses). The context node keeps
two stories per owner: a recent story with the full responses and a history
story whose responses are the compressed versions when the store has them.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from nodeflow.runner.tool_registry import tool_method

logger = logging.getLogger(__name__)

ROOT_NODE_ID = "root"
USER_LABEL = "User"
ASSISTANT_LABEL = "Character"


@dataclass
class DialogueStory:
    """Accumulated dialogue turns in one language."""

    language: str = "en"
    user_input: list[str] = field(default_factory=list)
    responses: list[str] = field(default_factory=list)

    def get_story(self, start: int | None = None, end: int | None = None) -> str:
        """Render turns ``start``..``end`` as "User: ..." / "Character: ..." lines.

        Out-of-range bounds are clamped, so a negative start behaves like 0.
        """
        start = 0 if start is None else max(start, 0)
        end = len(self.responses) if end is None else end

        lines = []
        for i in range(start, end):
            user_input = self.user_input[i] if i < len(self.user_input) else ""
            response = self.responses[i] if i < len(self.responses) else ""
            if user_input:
                lines.append(f"{USER_LABEL}: {user_input}")
            if response:
                lines.append(f"{ASSISTANT_LABEL}: {response}")
        return "\n".join(lines).strip()

    def is_empty(self) -> bool:
        return not self.user_input and not self.responses

    def __len__(self) -> int:
        return max(len(self.user_input), len(self.responses))


@dataclass
class DialogueTurn:
    """One stored exchange on the path from the dialogue root to the current node."""

    node_id: str
    parent_node_id: str
    user_input: str = ""
    assistant_response: str = ""
    compressed_content: str | None = None


@runtime_checkable
class DialogueStore(Protocol):
    """Storage of dialogue trees, owned by the surrounding application."""

    async def get_dialogue_path(self, owner_id: str) -> list[DialogueTurn] | None: ...

    async def save_turn(
        self, owner_id: str, user_input: str, assistant_response: str
    ) -> DialogueTurn: ...


class InMemoryDialogueStore:
    """DialogueStore keeping one linear path of turns per owner."""

    def __init__(self, paths: dict[str, list[DialogueTurn]] | None = None):
        self._paths: dict[str, list[DialogueTurn]] = {k: list(v) for k, v in (paths or {}).items()}

    async def get_dialogue_path(self, owner_id: str) -> list[DialogueTurn] | None:
        path = self._paths.get(owner_id)
        return list(path) if path is not None else None

    def set_opening(self, owner_id: str, message: str) -> None:
        """Store the opening message; it becomes the system message on load."""
        path = self._paths.setdefault(owner_id, [])
        opening = DialogueTurn(
            node_id="opening", parent_node_id=ROOT_NODE_ID, assistant_response=message
        )
        if path and path[0].parent_node_id == ROOT_NODE_ID:
            path[0] = opening
        else:
            path.insert(0, opening)

    def append_turn(
        self,
        owner_id: str,
        user_input: str,
        assistant_response: str,
        compressed_content: str | None = None,
    ) -> DialogueTurn:
        path = self._paths.setdefault(owner_id, [])
        parent = path[-1].node_id if path else ROOT_NODE_ID
        turn = DialogueTurn(
            node_id=f"{owner_id}-{len(path)}",
            parent_node_id=parent,
            user_input=user_input,
            assistant_response=assistant_response,
            compressed_content=compressed_content,
        )
        path.append(turn)
        return turn

    async def save_turn(
        self, owner_id: str, user_input: str, assistant_response: str
    ) -> DialogueTurn:
        return self.append_turn(owner_id, user_input, assistant_response)


class DialogueToolkit:
    """Tools for assembling dialogue history, backed by a DialogueStore."""

    def __init__(self, store: DialogueStore | None = None):
        self.store = store or InMemoryDialogueStore()

    @tool_method(description="Create a new, empty dialogue story")
    def create_dialogue_story(self, language: str = "en") -> DialogueStory:
        return DialogueStory(language=language)

    @tool_method(description="Load stored dialogue and build the recent and history stories")
    async def load_and_initialize_history(
        self,
        owner_id: str | None,
        language: str = "en",
        system_message: str | None = None,
    ) -> dict[str, Any]:
        recent = DialogueStory(language=language)
        history = DialogueStory(language=language)
        current_system_message = system_message or ""

        path = await self.store.get_dialogue_path(owner_id) if owner_id else None
        if not path:
            if owner_id:
                logger.info(f"No stored dialogue for owner '{owner_id}', starting empty")
            return {
                "systemMessage": current_system_message,
                "recentStory": recent,
                "historyStory": history,
            }

        for turn in path:
            # The opening message hangs directly off the root and acts as the system message
            is_opening = turn.parent_node_id == ROOT_NODE_ID and not turn.user_input
            if is_opening and turn.assistant_response:
                current_system_message = turn.assistant_response
                continue
            if turn.user_input:
                recent.user_input.append(turn.user_input)
                history.user_input.append(turn.user_input)
            if turn.assistant_response:
                recent.responses.append(turn.assistant_response)
                history.responses.append(turn.compressed_content or turn.assistant_response)

        logger.debug(f"Loaded {len(recent)} dialogue turns for owner '{owner_id}'")
        return {
            "systemMessage": current_system_message,
            "recentStory": recent,
            "historyStory": history,
        }

    @tool_method(description="Append a user message and/or an assistant response to a story")
    def add_to_dialogue(
        self,
        story: DialogueStory,
        user_message: str | None = None,
        assistant_response: str | None = None,
    ) -> DialogueStory:
        if user_message:
            story.user_input.append(user_message)
        if assistant_response:
            story.responses.append(assistant_response)
        return story

    @tool_method(description="Persist a completed exchange to the owner's stored dialogue")
    async def save_dialogue_turn(
        self, owner_id: str, user_message: str, assistant_response: str
    ) -> DialogueTurn:
        turn = await self.store.save_turn(owner_id, user_message, assistant_response)
        logger.debug(f"Saved dialogue turn '{turn.node_id}' for owner '{owner_id}'")
        return turn

    @tool_method(description="Remove every turn from a story")
    def clear_dialogue(self, story: DialogueStory) -> DialogueStory:
        story.user_input = []
        story.responses = []
        return story

    @tool_method(description="Render the most recent turns within the memory window")
    def get_recent_history(self, story: DialogueStory, window: int) -> str:
        return story.get_story(len(story.user_input) - window, len(story.responses))

    @tool_method(description="Render the turns older than the memory window")
    def get_compressed_history(self, story: DialogueStory, window: int) -> str:
        return story.get_story(0, len(story.responses) - window)

    @tool_method(description="Resolve the system message")
    def get_system_message(self, system_message: str | None) -> str:
        return (system_message or "").strip()

    @tool_method(description="Convert a story into a user/assistant message list")
    def get_messages(self, story: DialogueStory) -> list[dict[str, Any]]:
        messages: list[dict[str, Any]] = []
        paired = min(len(story.user_input), len(story.responses))

        for i in range(paired):
            if story.user_input[i]:
                messages.append({"role": "user", "content": story.user_input[i], "id": i * 2})
            if story.responses[i]:
                messages.append(
                    {"role": "assistant", "content": story.responses[i], "id": i * 2 + 1}
                )

        # A user message still waiting for its response
        if len(story.user_input) > len(story.responses):
            messages.append({"role": "user", "content": story.user_input[-1], "id": len(messages)})

        return messages
