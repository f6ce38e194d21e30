"""
Character prompt toolkit used by the basePrompt and worldBook nodes.

Prompt text and world-book entries belong to the surrounding application.
It supplies them through a PromptSource; the toolkit only forwards the
calls and checks the shape of what comes back.
"""

import logging
from typing import Any, Protocol, runtime_checkable

from nodeflow.runner.tool_registry import tool_method

logger = logging.getLogger(__name__)


@runtime_checkable
class PromptSource(Protocol):
    """Builds character prompts, owned by the surrounding application."""

    async def build_character_prompts(
        self,
        character_id: str,
        language: str,
        user_input: str,
        prompt_type: str,
        number: int,
        system_message: str,
        recent_history: str,
        compressed_history: str,
        username: str | None,
    ) -> dict[str, Any]: ...

    async def assemble_prompt_with_world_book(
        self,
        character_id: str,
        base_system_message: str,
        user_message: str,
        chat_history: list[dict[str, Any]],
        current_user_input: str | None,
        language: str,
        context_window: int,
        username: str | None,
        char_name: str | None,
    ) -> dict[str, Any]: ...


def _checked(result: Any, keys: tuple[str, ...], source: str) -> dict[str, Any]:
    if not isinstance(result, dict):
        raise TypeError(f"{source} returned {type(result).__name__}, expected a dict")
    missing = [key for key in keys if key not in result]
    if missing:
        raise ValueError(f"{source} result is missing {missing}")
    return result


class PromptToolkit:
    """Tools delegating character prompt assembly to a PromptSource."""

    def __init__(self, source: PromptSource):
        self.source = source

    @tool_method(description="Build the base system prompt and user message for a character")
    async def build_character_prompts(
        self,
        character_id: str,
        language: str,
        user_input: str,
        prompt_type: str = "EXPLICIT",
        number: int = 200,
        system_message: str = "",
        recent_history: str = "",
        compressed_history: str = "",
        username: str | None = None,
    ) -> dict[str, Any]:
        result = await self.source.build_character_prompts(
            character_id,
            language,
            user_input,
            prompt_type,
            number,
            system_message,
            recent_history,
            compressed_history,
            username,
        )
        logger.debug(f"Built {prompt_type} prompts for character '{character_id}'")
        return _checked(result, ("baseSystemMessage", "userMessage"), "build_character_prompts")

    @tool_method(description="Merge matching world-book entries into the prompts")
    async def assemble_prompt_with_world_book(
        self,
        character_id: str,
        base_system_message: str,
        user_message: str,
        chat_history: list[dict[str, Any]] | None = None,
        current_user_input: str | None = None,
        language: str = "en",
        context_window: int = 5,
        username: str | None = None,
        char_name: str | None = None,
    ) -> dict[str, Any]:
        result = await self.source.assemble_prompt_with_world_book(
            character_id,
            base_system_message,
            user_message,
            list(chat_history or []),
            current_user_input,
            language,
            context_window,
            username,
            char_name,
        )
        return _checked(
            result, ("systemMessage", "userMessage"), "assemble_prompt_with_world_book"
        )
