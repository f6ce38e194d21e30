"""Regex node: applies an owner's find/replace scripts to text."""

from typing import Any

from nodeflow.graph.errors import MissingInputError
from nodeflow.graph.node import Node

GLOBAL_OWNER = "global"


class RegexNode(Node):
    """
    Post-processes text with the owner's regex scripts.

    Modes (selected by ``mode`` or ``operation``):
        context: free text from ``text`` or ``llmResponse``
        message: every message in ``messages``
        system: ``systemPrompt``
        user: ``userMessage``
        conversation: system prompt, user message and messages together
        response: a tagged model response in ``llmResponse``, split into
            screen content, next prompts and event before processing
    """

    node_type = "regex"
    description = "Applies regex find/replace scripts"
    operations = ("context", "message", "system", "user", "conversation", "response")
    default_operation = "context"

    def resolve_operation(self, inputs: dict[str, Any]) -> str:
        mode = inputs.get("mode") or self.params.get("mode")
        if mode:
            inputs = {**inputs, "operation": mode}
        return super().resolve_operation(inputs)

    async def operate(self, inputs: dict[str, Any], config: dict[str, Any]) -> dict[str, Any]:
        mode = self.resolve_operation(inputs)
        owner_id = self.param(inputs, "ownerId") or GLOBAL_OWNER

        if mode == "context":
            text = inputs.get("text") or inputs.get("llmResponse")
            if not text:
                raise MissingInputError("text", "Text", mode)
            result = await self.execute_tool("process_full_context", text, owner_id)
            return {
                "replacedText": result["replacedText"],
                "appliedScripts": result["appliedScripts"],
            }

        if mode == "message":
            messages = self.require(inputs, "messages", "Messages", mode)
            messages = await self.execute_tool("process_chat_messages", messages, owner_id)
            return {"messages": messages}

        if mode == "system":
            prompt = self.require(inputs, "systemPrompt", "System prompt", mode)
            prompt = await self.execute_tool("process_system_prompt", prompt, owner_id)
            return {"systemPrompt": prompt}

        if mode == "user":
            message = self.require(inputs, "userMessage", "User message", mode)
            message = await self.execute_tool("process_user_message", message, owner_id)
            return {"userMessage": message}

        if mode == "conversation":
            prompt = self.require(inputs, "systemPrompt", "System prompt", mode)
            message = self.require(inputs, "userMessage", "User message", mode)
            messages = self.require(inputs, "messages", "Messages", mode)
            return await self.execute_tool(
                "process_conversation", prompt, message, messages, owner_id
            )

        response = self.require(inputs, "llmResponse", "LLM response", mode)
        parsed = await self.execute_tool("parse_llm_response", response)
        result = await self.execute_tool("process_response", parsed["mainContent"], owner_id)
        return {
            "replacedText": result["replacedText"],
            "screenContent": result["replacedText"],
            "nextPrompts": parsed["nextPrompts"],
            "event": parsed["event"],
            "fullResponse": response,
        }
