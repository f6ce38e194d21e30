"""LiteLLM-backed provider: one interface over OpenAI, Anthropic, Ollama and others."""

import logging
from typing import Any

import litellm

from nodeflow.llm.provider import LLMProvider, LLMResponse

logger = logging.getLogger(__name__)

DEFAULT_NUM_RETRIES = 2


class LiteLLMProvider(LLMProvider):
    """
    LLM provider that routes requests through LiteLLM.

    The model string selects the backend, e.g. "gpt-4o-mini",
    "anthropic/claude-3-5-haiku-latest" or "ollama/llama3".

    Example:
        llm = LiteLLMProvider(model="gpt-4o-mini", api_key=os.environ["OPENAI_API_KEY"])
        response = await llm.acomplete([{"role": "user", "content": "Hello"}])
    """

    def __init__(
        self,
        model: str,
        api_key: str | None = None,
        api_base: str | None = None,
        temperature: float | None = None,
        num_retries: int = DEFAULT_NUM_RETRIES,
        **extra_kwargs: Any,
    ):
        self.model = model
        self.api_key = api_key
        self.api_base = api_base
        self.temperature = temperature
        self.num_retries = num_retries
        self.extra_kwargs = extra_kwargs

    async def acomplete(
        self,
        messages: list[dict[str, Any]],
        system: str = "",
        max_tokens: int = 1024,
        temperature: float | None = None,
        top_p: float | None = None,
        stop: list[str] | None = None,
        max_retries: int | None = None,
        model: str | None = None,
    ) -> LLMResponse:
        full_messages = list(messages)
        if system:
            full_messages.insert(0, {"role": "system", "content": system})

        model = model or self.model
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": full_messages,
            "max_tokens": max_tokens,
            "num_retries": self.num_retries if max_retries is None else max_retries,
            **self.extra_kwargs,
        }
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base
        temperature = self.temperature if temperature is None else temperature
        if temperature is not None:
            kwargs["temperature"] = temperature
        if top_p is not None:
            kwargs["top_p"] = top_p
        if stop:
            kwargs["stop"] = stop

        logger.debug(f"LiteLLM request to {model} ({len(full_messages)} messages)")
        response = await litellm.acompletion(**kwargs)

        choice = response.choices[0]
        usage = getattr(response, "usage", None)
        return LLMResponse(
            content=choice.message.content or "",
            model=getattr(response, "model", None) or model,
            input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(usage, "completion_tokens", 0) or 0,
            stop_reason=choice.finish_reason or "",
            raw_response=response,
        )
