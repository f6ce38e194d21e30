"""Model-invocation toolkit used by the LLM node."""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from nodeflow.config import DEFAULT_MAX_TOKENS
from nodeflow.llm.litellm import LiteLLMProvider
from nodeflow.llm.provider import LLMProvider, LLMResponse
from nodeflow.runner.tool_registry import tool_method

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[dict[str, Any]], LLMProvider]

DEFAULT_OLLAMA_BASE = "http://localhost:11434"

# Context window and output limits for well-known model families
_CAPABILITIES = {
    "openai": {
        "gpt-4o": {"maxTokens": 16384, "contextWindow": 128000, "supportsFunctions": True},
        "gpt-4": {"maxTokens": 8192, "contextWindow": 8192, "supportsFunctions": True},
        "gpt-3.5": {"maxTokens": 4096, "contextWindow": 16384, "supportsFunctions": True},
    },
    "ollama": {
        "": {"maxTokens": 2048, "contextWindow": 2048, "supportsFunctions": False},
    },
}


def default_provider_factory(config: dict[str, Any]) -> LLMProvider:
    """Build a LiteLLMProvider from a node's LLM configuration."""
    llm_type = config.get("llmType", "")
    model = config["model"].strip()
    api_base = (config.get("baseUrl") or "").strip() or None

    if llm_type == "ollama":
        api_base = api_base or DEFAULT_OLLAMA_BASE
    if llm_type in ("ollama", "anthropic") and "/" not in model:
        model = f"{llm_type}/{model}"

    return LiteLLMProvider(
        model=model,
        api_key=config.get("apiKey"),
        api_base=api_base,
        temperature=config.get("temperature"),
        num_retries=config.get("maxRetries", 2),
    )


@dataclass
class ChatChain:
    """A provider bound to a role layout: optional system message, then user message."""

    provider: LLMProvider
    system_enabled: bool = True

    @property
    def model(self) -> str:
        return self.provider.model


def _result(response: LLMResponse) -> dict[str, Any]:
    return {
        "text": response.content,
        "content": response.content,
        "usage": response.usage,
        "finishReason": response.stop_reason or "stop",
        "model": response.model,
    }


def _provider(llm: ChatChain | LLMProvider) -> LLMProvider:
    return llm.provider if isinstance(llm, ChatChain) else llm


class LLMToolkit:
    """
    Tools for validating LLM configuration and invoking a model.

    The toolkit keeps the most recently created instance so that
    ``get_llm_instance`` can hand it to nodes created later.
    """

    def __init__(self, provider_factory: ProviderFactory | None = None):
        self.provider_factory = provider_factory or default_provider_factory
        self._instance: LLMProvider | None = None

    @tool_method(description="Validate an LLM configuration")
    def validate_llm_config(self, config: dict[str, Any]) -> dict[str, Any]:
        errors = []
        if not config.get("llmType"):
            errors.append("llmType is required")
        if not (config.get("model") or "").strip():
            errors.append("model is required")
        if config.get("llmType") == "openai" and not config.get("apiKey"):
            errors.append("apiKey is required for OpenAI")

        temperature = config.get("temperature")
        if temperature is not None and not 0 <= temperature <= 2:
            errors.append("temperature must be between 0 and 2")
        top_p = config.get("topP")
        if top_p is not None and not 0 <= top_p <= 1:
            errors.append("topP must be between 0 and 1")
        max_tokens = config.get("maxTokens")
        if max_tokens is not None and (not isinstance(max_tokens, int) or max_tokens <= 0):
            errors.append("maxTokens must be a positive integer")
        max_retries = config.get("maxRetries")
        if max_retries is not None and (not isinstance(max_retries, int) or max_retries < 0):
            errors.append("maxRetries must be a non-negative integer")

        return {"isValid": not errors, "errors": errors}

    @tool_method(description="Create an LLM instance from a configuration")
    def create_llm_instance(self, config: dict[str, Any]) -> LLMProvider:
        self._instance = self.provider_factory(config)
        logger.info(f"LLM instance created: {config.get('llmType')}/{self._instance.model}")
        return self._instance

    @tool_method(description="Return the most recently created LLM instance")
    def get_llm_instance(self) -> LLMProvider:
        if self._instance is None:
            raise RuntimeError("LLM instance not created. Call create_llm_instance first.")
        return self._instance

    @tool_method(description="Bind an LLM instance to a system/user role layout")
    def create_chat_chain(self, llm: LLMProvider, system_enabled: bool = True) -> ChatChain:
        return ChatChain(provider=llm, system_enabled=system_enabled)

    @tool_method(description="Generate a reply to a system message and a user message")
    async def generate_with_messages(
        self,
        llm: ChatChain | LLMProvider,
        system_message: str,
        user_message: str,
        overrides: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        system_enabled = llm.system_enabled if isinstance(llm, ChatChain) else True
        response = await self._invoke(
            llm,
            [{"role": "user", "content": user_message}],
            system=system_message if system_enabled else "",
            overrides=overrides,
        )
        return _result(response)

    @tool_method(description="Continue a conversation given its message list")
    async def chat_with_messages(
        self,
        llm: ChatChain | LLMProvider,
        messages: list[dict[str, Any]],
        overrides: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        system = "\n\n".join(m["content"] for m in messages if m.get("role") == "system")
        conversation = [
            {"role": m["role"], "content": m["content"]}
            for m in messages
            if m.get("role") in ("user", "assistant")
        ]
        response = await self._invoke(llm, conversation, system=system, overrides=overrides)
        return _result(response)

    @tool_method(description="Complete a raw prompt")
    async def complete_prompt(
        self,
        llm: ChatChain | LLMProvider,
        prompt: str,
        overrides: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        messages = [{"role": "user", "content": prompt}]
        response = await self._invoke(llm, messages, overrides=overrides)
        return _result(response)

    @tool_method(description="Report output limits and features of a model")
    def get_llm_capabilities(self, llm_type: str, model: str) -> dict[str, Any]:
        capabilities = {
            "maxTokens": DEFAULT_MAX_TOKENS,
            "contextWindow": DEFAULT_MAX_TOKENS,
            "supportsFunctions": False,
            "supportsStreaming": False,
        }
        for prefix, values in _CAPABILITIES.get(llm_type, {}).items():
            if prefix in model:
                capabilities.update(values)
                break
        return capabilities

    async def _invoke(
        self,
        llm: ChatChain | LLMProvider,
        messages: list[dict[str, Any]],
        system: str = "",
        overrides: dict[str, Any] | None = None,
    ) -> LLMResponse:
        overrides = overrides or {}
        provider = _provider(llm)
        return await provider.acomplete(
            messages,
            system=system,
            max_tokens=overrides.get("maxTokens") or DEFAULT_MAX_TOKENS,
            temperature=overrides.get("temperature"),
            top_p=overrides.get("topP"),
            stop=overrides.get("stopSequences"),
            max_retries=overrides.get("maxRetries"),
            model=overrides.get("model"),
        )
