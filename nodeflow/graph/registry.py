"""Node type registry: maps descriptor type names to node implementations."""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from nodeflow.graph.errors import UnknownNodeTypeError
from nodeflow.graph.node import Node
from nodeflow.graph.spec import NodeDescriptor, WorkflowDescriptor
from nodeflow.graph.types import NodeCategory
from nodeflow.runner.tool_registry import ToolExecutor

logger = logging.getLogger(__name__)

NodeFactory = Callable[[NodeDescriptor, ToolExecutor | None], Node]


@dataclass
class NodeRegistryEntry:
    """A registered node kind plus display metadata."""

    node_class: type[Node] | NodeFactory
    description: str = ""
    category: NodeCategory | None = None
    icon: str | None = None

    def create(self, descriptor: NodeDescriptor, tool_executor: ToolExecutor | None) -> Node:
        return self.node_class(descriptor, tool_executor)


class NodeRegistry:
    """
    Registry of node kinds keyed by type name.

    Example:
        registry = NodeRegistry()

        @registry.node("uppercase")
        class UppercaseNode(Node):
            ...

        node = registry.create(NodeDescriptor(id="u1", type="uppercase"))
    """

    def __init__(self):
        self._entries: dict[str, NodeRegistryEntry] = {}

    def register(
        self,
        type_name: str,
        node_class: type[Node] | NodeFactory,
        description: str | None = None,
        category: NodeCategory | None = None,
        icon: str | None = None,
    ) -> NodeRegistryEntry:
        if description is None:
            description = getattr(node_class, "description", "") or ""
        if category is None:
            category = getattr(node_class, "default_category", None)
        entry = NodeRegistryEntry(
            node_class=node_class, description=description, category=category, icon=icon
        )
        if type_name in self._entries:
            logger.debug(f"Replacing node registration for type '{type_name}'")
        self._entries[type_name] = entry
        return entry

    def node(self, type_name: str, **kwargs: Any) -> Callable[[type[Node]], type[Node]]:
        """Class decorator form of ``register``."""

        def decorator(cls: type[Node]) -> type[Node]:
            self.register(type_name, cls, **kwargs)
            return cls

        return decorator

    def get(self, type_name: str) -> NodeRegistryEntry | None:
        return self._entries.get(type_name)

    def types(self) -> list[str]:
        return list(self._entries)

    def __contains__(self, type_name: object) -> bool:
        return type_name in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def ensure_resolvable(self, workflow: WorkflowDescriptor) -> None:
        """Raise UnknownNodeTypeError naming every descriptor whose type is not registered."""
        unknown = {node.id: node.type for node in workflow.nodes if node.type not in self._entries}
        if unknown:
            raise UnknownNodeTypeError(unknown, self.types())

    def create(self, descriptor: NodeDescriptor, tool_executor: ToolExecutor | None = None) -> Node:
        entry = self._entries.get(descriptor.type)
        if entry is None:
            raise UnknownNodeTypeError({descriptor.id: descriptor.type}, self.types())
        return entry.create(descriptor, tool_executor)


def default_registry() -> NodeRegistry:
    """Registry with the built-in dialogue node kinds."""
    from nodeflow.nodes import register_builtin_nodes

    registry = NodeRegistry()
    register_builtin_nodes(registry)
    return registry
