"""
Error taxonomy for nodeflow.

Every error raised by the engine derives from NodeflowError so callers can
catch engine failures without catching unrelated exceptions. Node authors
raise the NodeOperationError family from ``operate``; the scheduler raises
the GraphValidationError family before any node runs.
"""


class NodeflowError(Exception):
    """Base class for all nodeflow errors."""


class NodeConfigurationError(NodeflowError):
    """A node's configuration is invalid or a required collaborator is missing."""

    def __init__(self, message: str, node_id: str | None = None, errors: list[str] | None = None):
        self.node_id = node_id
        self.errors = list(errors or [])
        if node_id:
            message = f"Node '{node_id}': {message}"
        if self.errors:
            message = f"{message} ({'; '.join(self.errors)})"
        super().__init__(message)


class UnknownNodeTypeError(NodeflowError):
    """One or more node descriptors name a type the registry cannot resolve."""

    def __init__(self, unknown: dict[str, str], known: list[str] | None = None):
        # unknown maps node id -> unresolved type name
        self.unknown = dict(unknown)
        self.known = sorted(known or [])
        details = ", ".join(f"'{nid}' (type '{t}')" for nid, t in self.unknown.items())
        message = f"Unknown node type for {details}"
        if self.known:
            message += f". Registered types: {self.known}"
        super().__init__(message)


# ---------------------------------------------------------------------------
# Graph validation
# ---------------------------------------------------------------------------


class GraphValidationError(NodeflowError):
    """The workflow graph is structurally invalid."""


class DanglingReferenceError(GraphValidationError):
    """A node lists a successor id that does not exist in the workflow."""

    def __init__(self, node_id: str, reference: str):
        self.node_id = node_id
        self.reference = reference
        super().__init__(f"Node '{node_id}' references non-existent node '{reference}'")


class CycleDetectedError(GraphValidationError):
    """The successor relation contains a cycle."""

    def __init__(self, cycle: list[str]):
        self.cycle = list(cycle)
        super().__init__(f"Cycle detected in workflow: {' -> '.join(self.cycle)}")


class WriteConflictError(GraphValidationError):
    """Two nodes scheduled in the same batch declare overlapping output fields."""

    def __init__(self, batch: list[str], conflicts: dict[str, list[str]]):
        self.batch = list(batch)
        self.conflicts = {k: list(v) for k, v in conflicts.items()}
        details = ", ".join(f"'{key}' by {nodes}" for key, nodes in self.conflicts.items())
        super().__init__(f"Concurrent writes in batch {self.batch}: {details}")


# ---------------------------------------------------------------------------
# Node operations
# ---------------------------------------------------------------------------


class NodeOperationError(NodeflowError):
    """A node's unit of work failed."""


class MissingInputError(NodeOperationError):
    """A required input field was absent or empty."""

    def __init__(self, field: str, label: str | None = None, operation: str | None = None):
        self.field = field
        self.operation = operation
        label = label or field
        message = f"{label} is required"
        if operation:
            message += f" for {operation} operation"
        super().__init__(message)


class UnsupportedOperationError(NodeOperationError):
    """The requested operation is not one the node kind supports."""

    def __init__(self, operation: str, supported: list[str], node_type: str | None = None):
        self.operation = operation
        self.supported = list(supported)
        owner = f" by {node_type} node" if node_type else ""
        super().__init__(
            f"Unsupported operation '{operation}'{owner}. Supported: {', '.join(self.supported)}"
        )


class ToolExecutionError(NodeOperationError):
    """A named tool call failed."""

    def __init__(self, tool_name: str, message: str):
        self.tool_name = tool_name
        super().__init__(f"Tool '{tool_name}' failed: {message}")


class ToolNotFoundError(ToolExecutionError):
    """No tool is registered under the requested name."""

    def __init__(self, tool_name: str):
        self.tool_name = tool_name
        NodeOperationError.__init__(self, f"Tool '{tool_name}' is not registered")


class WorkflowCancelledError(NodeflowError):
    """The run was cancelled through its execution context."""

    def __init__(self, reason: str | None = None):
        self.reason = reason
        super().__init__(f"Workflow cancelled: {reason}" if reason else "Workflow cancelled")
