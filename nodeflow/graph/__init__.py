"""Graph structures: descriptors, nodes, context and the batch executor."""

from nodeflow.graph.context import ExecutionContext, Message, NodeOutputRecord, NodeStateRecord
from nodeflow.graph.errors import (
    CycleDetectedError,
    DanglingReferenceError,
    GraphValidationError,
    MissingInputError,
    NodeConfigurationError,
    NodeflowError,
    NodeOperationError,
    ToolExecutionError,
    ToolNotFoundError,
    UnknownNodeTypeError,
    UnsupportedOperationError,
    WorkflowCancelledError,
    WriteConflictError,
)
from nodeflow.graph.executor import WorkflowExecutor
from nodeflow.graph.node import FunctionNode, Node
from nodeflow.graph.registry import NodeRegistry, NodeRegistryEntry, default_registry
from nodeflow.graph.spec import NodeDescriptor, WorkflowDescriptor
from nodeflow.graph.types import (
    BatchResult,
    ExecutionResult,
    NodeCategory,
    NodeExecutionStatus,
    SchedulingMode,
    WorkflowExecutionResult,
)

__all__ = [
    # Descriptors
    "NodeDescriptor",
    "WorkflowDescriptor",
    # Types
    "NodeCategory",
    "NodeExecutionStatus",
    "SchedulingMode",
    "ExecutionResult",
    "BatchResult",
    "WorkflowExecutionResult",
    # Context
    "ExecutionContext",
    "Message",
    "NodeOutputRecord",
    "NodeStateRecord",
    # Nodes
    "Node",
    "FunctionNode",
    "NodeRegistry",
    "NodeRegistryEntry",
    "default_registry",
    # Executor
    "WorkflowExecutor",
    # Errors
    "NodeflowError",
    "NodeConfigurationError",
    "UnknownNodeTypeError",
    "GraphValidationError",
    "DanglingReferenceError",
    "CycleDetectedError",
    "WriteConflictError",
    "NodeOperationError",
    "MissingInputError",
    "UnsupportedOperationError",
    "ToolExecutionError",
    "ToolNotFoundError",
    "WorkflowCancelledError",
]
