"""
Declarative workflow descriptors.

A workflow is described as an ordered list of node descriptors. Each
descriptor names a registered node type and the ids of its successors; the
successor lists are the only edges in the graph. Descriptors are plain data
and can be loaded from JSON:

    WorkflowDescriptor.from_json('''
    {
      "id": "dialogue",
      "name": "Dialogue turn",
      "nodes": [
        {"id": "input", "type": "userInput", "next": ["output"]},
        {"id": "output", "type": "output"}
      ]
    }
    ''')
"""

import json
import logging
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, model_validator

from nodeflow.graph.types import NodeCategory

logger = logging.getLogger(__name__)


class NodeDescriptor(BaseModel):
    """
    Declarative definition of one node.

    Example:
        NodeDescriptor(
            id="llm-1",
            type="llm",
            next=["regex-1"],
            params={"model": "gpt-4o-mini", "temperature": 0.7},
            input_fields=["systemMessage", "userMessage"],
            output_fields=["llmResponse"],
        )
    """

    id: str
    type: str = Field(description="Registry key of the node kind")
    name: str = Field(default="", description="Human-readable name, defaults to the id")
    category: NodeCategory | None = Field(
        default=None, description="Structural role; falls back to the kind's default"
    )
    next: list[str] = Field(default_factory=list, description="Successor node ids")
    params: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)

    # Data flow
    init_params: list[str] = Field(
        default_factory=list,
        alias="initParams",
        description="Keys an entry node captures from the caller's initial input",
    )
    input_fields: list[str] = Field(
        default_factory=list,
        alias="inputFields",
        description="Context data keys this node reads",
    )
    output_fields: list[str] = Field(
        default_factory=list,
        alias="outputFields",
        description="Output keys this node publishes into the context data store",
    )
    input_mapping: dict[str, str] = Field(
        default_factory=dict,
        alias="inputMapping",
        description="Maps node input keys to the context keys they are read from",
    )

    model_config = {"extra": "allow", "populate_by_name": True, "frozen": True}

    @model_validator(mode="before")
    @classmethod
    def _fill_defaults(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        # Older configs name the registry key "name" and leave "type" out
        if not data.get("type") and data.get("name"):
            data["type"] = data["name"]
        if not data.get("name"):
            data["name"] = data.get("id", "")
        return data

    def reads(self) -> list[str]:
        """Context keys this node reads, in declaration order."""
        keys = list(self.init_params)
        for key in self.input_fields:
            key = self.input_mapping.get(key, key)
            if key not in keys:
                keys.append(key)
        return keys


class WorkflowDescriptor(BaseModel):
    """
    Complete description of a workflow graph.

    Contains the nodes in declaration order. Edges are implied by each
    node's ``next`` list.
    """

    id: str
    name: str = ""
    description: str = ""
    version: str = "1.0.0"
    nodes: list[NodeDescriptor] = Field(default_factory=list)

    model_config = {"extra": "allow"}

    # ------------------------------------------------------------------
    # Lookup helpers
    # ------------------------------------------------------------------

    def get_node(self, node_id: str) -> NodeDescriptor | None:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def node_ids(self) -> list[str]:
        return [node.id for node in self.nodes]

    def predecessors(self) -> dict[str, list[str]]:
        """Map every node id to the ids of the nodes that list it as a successor."""
        preds: dict[str, list[str]] = {node.id: [] for node in self.nodes}
        for node in self.nodes:
            for target in node.next:
                if target in preds and node.id not in preds[target]:
                    preds[target].append(node.id)
        return preds

    def roots(self) -> list[str]:
        """Ids that no node lists as a successor, in declaration order."""
        targets = {t for node in self.nodes for t in node.next}
        return [node.id for node in self.nodes if node.id not in targets]

    def ancestors(self, node_id: str) -> set[str]:
        preds = self.predecessors()
        seen: set[str] = set()
        stack = list(preds.get(node_id, []))
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            stack.extend(preds.get(current, []))
        return seen

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self) -> list[str]:
        """Validate the graph structure. Returns a list of errors, empty when valid."""
        errors = []

        seen: set[str] = set()
        for node in self.nodes:
            if node.id in seen:
                errors.append(f"Duplicate node id '{node.id}'")
            seen.add(node.id)

        for node in self.nodes:
            for target in node.next:
                if target not in seen:
                    errors.append(f"Node '{node.id}' references non-existent node '{target}'")
                elif target == node.id:
                    errors.append(f"Node '{node.id}' lists itself as a successor")

        if not errors:
            cycle = self.find_cycle()
            if cycle:
                errors.append(f"Cycle detected in workflow: {' -> '.join(cycle)}")

        return errors

    def successors(self) -> dict[str, list[str]]:
        return {node.id: list(node.next) for node in self.nodes}

    def find_cycle(self, start: list[str] | None = None) -> list[str] | None:
        """Find a cycle in the successor relation, starting from the roots by default."""
        return find_cycle(self.successors(), self.roots() if start is None else start)

    def check_dataflow(self) -> list[str]:
        """
        Check declared data flow between nodes.

        Returns warnings (never raises):
        - a root node that declares input fields
        - an input field that no ancestor produces
        - a node explicitly marked EXIT that declares successors
        """
        warnings = []
        preds = self.predecessors()

        for node in self.nodes:
            if node.category == NodeCategory.EXIT and node.next:
                warnings.append(f"Exit node '{node.id}' declares successors {node.next}")

            if not node.input_fields:
                continue

            if not preds.get(node.id):
                warnings.append(
                    f"Node '{node.id}' has no predecessors but declares input fields "
                    f"{node.input_fields}"
                )
                continue

            available: set[str] = set()
            for ancestor_id in self.ancestors(node.id):
                ancestor = self.get_node(ancestor_id)
                if ancestor is not None:
                    available.update(ancestor.init_params)
                    available.update(ancestor.output_fields)

            for key in node.input_fields:
                source = node.input_mapping.get(key, key)
                if source not in available:
                    warnings.append(
                        f"Node '{node.id}' reads '{source}' which no upstream node produces"
                    )

        return warnings

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    @classmethod
    def from_json(cls, text: str) -> "WorkflowDescriptor":
        return cls.model_validate(json.loads(text))

    @classmethod
    def from_file(cls, path: str | Path) -> "WorkflowDescriptor":
        path = Path(path)
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        logger.debug(f"Loaded workflow descriptor from {path}")
        return cls.model_validate(data)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=False)


def find_cycle(
    successors: dict[str, list[str]], start: list[str] | None = None
) -> list[str] | None:
    """
    Depth-first search for a cycle, tracking the current recursion stack.

    Visits ``start`` first, then every node not yet visited so that cycles
    unreachable from the start nodes are also found. Returns the cycle path
    (first node repeated at the end) or None. Unknown successor ids are ignored.
    """
    visited: set[str] = set()
    path: list[str] = []
    on_path: set[str] = set()

    def visit(node_id: str) -> list[str] | None:
        visited.add(node_id)
        path.append(node_id)
        on_path.add(node_id)
        for target in successors[node_id]:
            if target not in successors:
                continue
            if target in on_path:
                return path[path.index(target) :] + [target]
            if target not in visited:
                found = visit(target)
                if found:
                    return found
        path.pop()
        on_path.discard(node_id)
        return None

    order = list(start or [])
    order += [node_id for node_id in successors if node_id not in order]
    for node_id in order:
        if node_id in successors and node_id not in visited:
            cycle = visit(node_id)
            if cycle:
                return cycle
    return None
