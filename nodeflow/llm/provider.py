"""LLM Provider abstraction for pluggable LLM backends."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


@dataclass
class LLMResponse:
    """Response from an LLM call."""

    content: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    stop_reason: str = ""
    raw_response: Any = None

    @property
    def usage(self) -> dict[str, int]:
        return {
            "promptTokens": self.input_tokens,
            "completionTokens": self.output_tokens,
            "totalTokens": self.input_tokens + self.output_tokens,
        }


@dataclass
class Tool:
    """Description of a callable tool, derived from its signature."""

    name: str
    description: str
    parameters: dict[str, Any] = field(default_factory=dict)


class LLMProvider(ABC):
    """
    Abstract LLM provider - plug in any LLM backend.

    Implementations should handle:
    - API authentication
    - Request/response formatting
    - Token counting
    - Retries on transient failures (``max_retries``)
    """

    model: str = ""

    @abstractmethod
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
        """
        Generate a completion from the LLM.

        Args:
            messages: Conversation history [{role: "user"|"assistant", content: str}]
            system: System prompt, sent ahead of the messages when non-empty
            max_tokens: Maximum tokens to generate
            temperature: Sampling temperature; None uses the provider default
            top_p: Nucleus sampling cutoff; None uses the provider default
            stop: Stop sequences
            max_retries: Override retry count. None uses the provider default.
            model: Model to call instead of the provider's own, for this call only

        Returns:
            LLMResponse with content and metadata
        """
        pass
