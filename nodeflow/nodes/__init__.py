"""Built-in node kinds for a dialogue turn."""

from nodeflow.graph.registry import NodeRegistry
from nodeflow.nodes.context_node import ContextNode
from nodeflow.nodes.llm_node import LLMNode
from nodeflow.nodes.output_node import OutputNode
from nodeflow.nodes.prompt_nodes import BasePromptNode, WorldBookNode
from nodeflow.nodes.regex_node import RegexNode
from nodeflow.nodes.user_input import UserInputNode

BUILTIN_NODES = {
    "userInput": (UserInputNode, "⌨"),
    "context": (ContextNode, "🗂"),
    "basePrompt": (BasePromptNode, "📝"),
    "worldBook": (WorldBookNode, "📖"),
    "llm": (LLMNode, "🤖"),
    "regex": (RegexNode, "✂"),
    "output": (OutputNode, "📤"),
}


def register_builtin_nodes(registry: NodeRegistry) -> NodeRegistry:
    for type_name, (node_class, icon) in BUILTIN_NODES.items():
        registry.register(type_name, node_class, icon=icon)
    return registry


__all__ = [
    "BUILTIN_NODES",
    "BasePromptNode",
    "ContextNode",
    "LLMNode",
    "OutputNode",
    "RegexNode",
    "UserInputNode",
    "WorldBookNode",
    "register_builtin_nodes",
]
