"""LLM provider abstraction."""

from nodeflow.llm.litellm import LiteLLMProvider
from nodeflow.llm.mock import MockLLMProvider
from nodeflow.llm.provider import LLMProvider, LLMResponse, Tool

__all__ = [
    "LLMProvider",
    "LLMResponse",
    "Tool",
    "LiteLLMProvider",
    "MockLLMProvider",
]
