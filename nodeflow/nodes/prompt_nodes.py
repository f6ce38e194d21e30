"""Nodes that turn a character's stored prompts and world book into model input."""

from typing import Any

from nodeflow.config import get_language
from nodeflow.graph.node import Node


class BasePromptNode(Node):
    """
    Builds the character's base system prompt and the user message.

    Requires ``characterId`` and ``userInput``. The rendered history, the
    system message, ``promptType`` and the target length (``number``) are
    passed through to the ``build_character_prompts`` tool.
    """

    node_type = "basePrompt"
    description = "Retrieves the character's base system prompt"

    async def operate(self, inputs: dict[str, Any], config: dict[str, Any]) -> dict[str, Any]:
        character_id = self.require(inputs, "characterId", "Character ID", self.node_type)
        user_input = self.require(inputs, "userInput", "User input", self.node_type)
        language = self.param(inputs, "language", get_language())
        username = self.param(inputs, "username")

        result = await self.execute_tool(
            "build_character_prompts",
            character_id,
            language,
            user_input,
            self.param(inputs, "promptType", "EXPLICIT"),
            self.param(inputs, "number", 200),
            inputs.get("systemMessage") or "",
            inputs.get("recentHistory") or "",
            inputs.get("compressedHistory") or "",
            username,
        )
        return {
            "baseSystemMessage": result["baseSystemMessage"],
            "userMessage": result["userMessage"],
            "characterId": character_id,
            "language": language,
            "username": username,
        }


class WorldBookNode(Node):
    """Adds the character's matching world-book entries to the base prompts."""

    node_type = "worldBook"
    description = "Integrates world-book content into the prompts"

    async def operate(self, inputs: dict[str, Any], config: dict[str, Any]) -> dict[str, Any]:
        base_system_message = self.require(
            inputs, "baseSystemMessage", "Base system message", self.node_type
        )
        user_message = self.require(inputs, "userMessage", "User message", self.node_type)
        character_id = self.require(inputs, "characterId", "Character ID", self.node_type)
        language = self.param(inputs, "language", get_language())
        username = self.param(inputs, "username")
        char_name = self.param(inputs, "charName")

        result = await self.execute_tool(
            "assemble_prompt_with_world_book",
            character_id,
            base_system_message,
            user_message,
            inputs.get("chatHistory") or [],
            inputs.get("userInput"),
            language,
            self.param(inputs, "contextWindow", 5),
            username,
            char_name,
        )
        return {
            "systemMessage": result["systemMessage"],
            "enhancedUserMessage": result["userMessage"],
            "baseSystemMessage": base_system_message,
            "originalUserMessage": user_message,
            "characterId": character_id,
            "language": language,
            "username": username,
            "charName": char_name,
        }
