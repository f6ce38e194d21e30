"""Default implementations of the tools the built-in nodes call."""

from nodeflow.runner.tool_registry import ToolRegistry
from nodeflow.toolkits.dialogue import (
    DialogueStore,
    DialogueStory,
    DialogueToolkit,
    DialogueTurn,
    InMemoryDialogueStore,
)
from nodeflow.toolkits.llm import ChatChain, LLMToolkit, ProviderFactory
from nodeflow.toolkits.output import OutputToolkit
from nodeflow.toolkits.prompt import PromptSource, PromptToolkit
from nodeflow.toolkits.regex import (
    InMemoryRegexScriptStore,
    RegexProcessor,
    RegexScript,
    RegexScriptStore,
    RegexSettings,
    RegexToolkit,
)


def register_default_tools(
    registry: ToolRegistry | None = None,
    *,
    dialogue_store: DialogueStore | None = None,
    regex_store: RegexScriptStore | None = None,
    provider_factory: ProviderFactory | None = None,
    prompt_source: PromptSource | None = None,
) -> ToolRegistry:
    """
    Register the dialogue, LLM, regex and output toolkits.

    Args:
        registry: Registry to fill; a new one is created when omitted
        dialogue_store: Storage for dialogue history (in-memory by default)
        regex_store: Storage for regex scripts (in-memory by default)
        provider_factory: Builds an LLMProvider from a node's LLM config
            (LiteLLM by default)
        prompt_source: Character prompt builder for the basePrompt and
            worldBook nodes; their tools are registered only when given

    Returns:
        The registry
    """
    registry = registry or ToolRegistry()
    registry.register_toolkit(DialogueToolkit(dialogue_store))
    registry.register_toolkit(LLMToolkit(provider_factory))
    registry.register_toolkit(RegexToolkit(regex_store))
    registry.register_toolkit(OutputToolkit())
    if prompt_source is not None:
        registry.register_toolkit(PromptToolkit(prompt_source))
    return registry


__all__ = [
    "ChatChain",
    "DialogueStore",
    "DialogueStory",
    "DialogueToolkit",
    "DialogueTurn",
    "InMemoryDialogueStore",
    "InMemoryRegexScriptStore",
    "LLMToolkit",
    "OutputToolkit",
    "PromptSource",
    "PromptToolkit",
    "ProviderFactory",
    "RegexProcessor",
    "RegexScript",
    "RegexScriptStore",
    "RegexSettings",
    "RegexToolkit",
    "register_default_tools",
]
