"""Mock LLM provider for tests and offline runs."""

from collections.abc import Callable
from typing import Any

from nodeflow.llm.provider import LLMProvider, LLMResponse


class MockLLMProvider(LLMProvider):
    """
    Returns scripted responses and records every call.

    With no script, echoes the last user message prefixed with "echo: ".
    A callable script receives the messages and system prompt.
    """

    def __init__(
        self,
        responses: list[str] | Callable[[list[dict[str, Any]], str], str] | None = None,
        model: str = "mock-model",
    ):
        self.model = model
        self._responses = responses
        self.calls: list[dict[str, Any]] = []

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
        self.calls.append(
            {
                "messages": list(messages),
                "system": system,
                "max_tokens": max_tokens,
                "temperature": temperature,
                "top_p": top_p,
                "max_retries": max_retries,
                "model": model,
            }
        )

        if callable(self._responses):
            content = self._responses(messages, system)
        elif self._responses:
            content = self._responses[min(len(self.calls), len(self._responses)) - 1]
        else:
            last_user = next(
                (m["content"] for m in reversed(messages) if m.get("role") == "user"), ""
            )
            content = f"echo: {last_user}"

        return LLMResponse(
            content=content,
            model=model or self.model,
            input_tokens=sum(len(str(m.get("content", "")).split()) for m in messages),
            output_tokens=len(content.split()),
            stop_reason="stop",
        )
