"""Entry node capturing the caller's input."""

from typing import Any

from nodeflow.graph.node import RESERVED_KEYS, Node
from nodeflow.graph.types import NodeCategory


class UserInputNode(Node):
    """
    Merges predefined parameters with the caller's input and publishes the result.

    Predefined values come from ``params["defaults"]`` or, when absent, from
    the params themselves. Caller values win on key collision. When the
    descriptor declares ``init_params`` or ``output_fields``, only those keys
    are kept.
    """

    node_type = "userInput"
    default_category = NodeCategory.ENTRY
    description = "Captures the caller's input and predefined parameters"

    def defaults(self) -> dict[str, Any]:
        if "defaults" in self.params:
            return dict(self.params["defaults"] or {})
        return {k: v for k, v in self.params.items() if k not in RESERVED_KEYS}

    async def operate(self, inputs: dict[str, Any], config: dict[str, Any]) -> dict[str, Any]:
        merged = {**self.defaults(), **inputs}

        allowed = list(self.descriptor.init_params) + list(self.descriptor.output_fields)
        if allowed:
            merged = {key: value for key, value in merged.items() if key in allowed}
        return merged
