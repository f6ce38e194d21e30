"""LLM node: invokes a language model through the LLM toolkit."""

import logging
import time
from typing import Any

from nodeflow.config import RuntimeConfig
from nodeflow.graph.context import ExecutionContext, Message
from nodeflow.graph.errors import MissingInputError, NodeConfigurationError
from nodeflow.graph.node import Node

logger = logging.getLogger(__name__)

DEFAULT_LLM_TYPE = "litellm"

# Per-call overrides that may come from inputs or params
_OVERRIDE_KEYS = ("temperature", "maxTokens", "topP", "stopSequences", "maxRetries")

# Input keys naming a model to use instead of the configured one
_MODEL_KEYS = ("model", "modelName")


class LLMNode(Node):
    """
    Calls a model and publishes its reply.

    Operations:
        generate: system message + user message
        chat: a message list, optionally prefixed by the system message
        complete: a raw prompt
        stream: not streamed yet; runs as generate

    The model is configured once in ``setup`` from the node params
    (llmType, model, apiKey, baseUrl, temperature, topP, maxTokens,
    maxRetries), with missing values taken from the runtime configuration.
    A ``model`` or ``modelName`` input switches the model for one call.
    Set ``systemMessageEnabled`` to False for models without a system role.
    """

    node_type = "llm"
    description = "Generates a reply with a language model"
    operations = ("generate", "chat", "complete", "stream")
    default_operation = "generate"

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.llm = None
        self.chain = None
        self.system_enabled = bool(self.params.get("systemMessageEnabled", True))
        self.llm_config: dict[str, Any] = {}

    def build_llm_config(self) -> dict[str, Any]:
        runtime = RuntimeConfig()
        config = {
            "llmType": self.params.get("llmType", DEFAULT_LLM_TYPE),
            "model": self.params.get("model") or self.params.get("modelName") or runtime.model,
            "apiKey": self.params.get("apiKey") or runtime.api_key,
            "baseUrl": self.params.get("baseUrl") or runtime.api_base,
            "temperature": self.params.get("temperature", runtime.temperature),
            "maxTokens": self.params.get("maxTokens", runtime.max_tokens),
            "topP": self.params.get("topP"),
            "maxRetries": self.params.get("maxRetries"),
        }
        return {key: value for key, value in config.items() if value is not None}

    async def setup(self) -> None:
        self.llm_config = self.build_llm_config()
        validation = await self.execute_tool("validate_llm_config", self.llm_config)
        if not validation["isValid"]:
            raise NodeConfigurationError(
                "invalid LLM configuration", self.id, errors=validation["errors"]
            )
        self.llm = await self.execute_tool("create_llm_instance", self.llm_config)
        self.chain = await self.execute_tool("create_chat_chain", self.llm, self.system_enabled)

    def _overrides(self, inputs: dict[str, Any]) -> dict[str, Any]:
        overrides = {key: self.param(inputs, key) for key in _OVERRIDE_KEYS}
        overrides["model"] = next((inputs[k] for k in _MODEL_KEYS if inputs.get(k)), None)
        return {key: value for key, value in overrides.items() if value is not None}

    def _system_message(self, inputs: dict[str, Any], operation: str) -> str:
        system = inputs.get("systemMessage") or self.params.get("systemMessage") or ""
        if self.system_enabled and not system:
            raise MissingInputError("systemMessage", "System message", operation)
        return system

    async def operate(self, inputs: dict[str, Any], config: dict[str, Any]) -> dict[str, Any]:
        operation = self.resolve_operation(inputs)
        if operation == "stream":
            logger.info(f"Node '{self.id}': streaming not supported, falling back to generate")
        overrides = self._overrides(inputs)
        start = time.time()

        if operation in ("generate", "stream"):
            system = self._system_message(inputs, operation)
            user = self.require(inputs, "userMessage", "User message", operation)
            result = await self.execute_tool(
                "generate_with_messages", self.chain, system, user, overrides
            )

        elif operation == "chat":
            messages = [
                m.to_llm_dict() if isinstance(m, Message) else dict(m)
                for m in inputs.get("messages") or []
            ]
            system = inputs.get("systemMessage") or self.params.get("systemMessage")
            if system and self.system_enabled:
                messages.insert(0, {"role": "system", "content": system})
            if not any(m.get("role") in ("user", "assistant") for m in messages):
                raise MissingInputError("messages", "At least one message", operation)
            result = await self.execute_tool("chat_with_messages", self.chain, messages, overrides)

        else:
            prompt = self.require(inputs, "prompt", "Prompt", operation)
            result = await self.execute_tool("complete_prompt", self.chain, prompt, overrides)

        text = result["text"] if "text" in result else result["content"]
        output = {
            "llmResponse": text,
            "response": result.get("content", text),
            "finishReason": result.get("finishReason", "stop"),
            "model": (
                result.get("model") or overrides.get("model") or self.llm_config.get("model")
            ),
            "temperature": overrides.get("temperature", self.llm_config.get("temperature")),
            "maxTokens": overrides.get("maxTokens", self.llm_config.get("maxTokens")),
            "processingTime": int((time.time() - start) * 1000),
        }
        if result.get("usage"):
            output["usage"] = result["usage"]
        return output

    async def after_execute(self, output: dict[str, Any], context: ExecutionContext) -> None:
        await super().after_execute(output, context)
        context.add_message(
            {
                "role": "assistant",
                "content": output["llmResponse"],
                "metadata": {"nodeId": self.id, "model": output.get("model")},
            }
        )
