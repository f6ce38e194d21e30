"""
Nodeflow - a node-graph workflow engine for AI dialogue turns.

Quick start:
    from nodeflow import create_dialogue_executor, register_default_tools

    tools = register_default_tools()
    executor = create_dialogue_executor(tools)
    result = await executor.execute({"userInput": "hi", "ownerId": "c-1"})
"""

from nodeflow.graph import (
    ExecutionContext,
    ExecutionResult,
    FunctionNode,
    Node,
    NodeCategory,
    NodeDescriptor,
    NodeExecutionStatus,
    NodeRegistry,
    SchedulingMode,
    WorkflowDescriptor,
    WorkflowExecutionResult,
    WorkflowExecutor,
    default_registry,
)
from nodeflow.runner import ToolExecutor, ToolRegistry
from nodeflow.toolkits import register_default_tools
from nodeflow.workflows import build_dialogue_workflow, create_dialogue_executor

__all__ = [
    "ExecutionContext",
    "ExecutionResult",
    "FunctionNode",
    "Node",
    "NodeCategory",
    "NodeDescriptor",
    "NodeExecutionStatus",
    "NodeRegistry",
    "SchedulingMode",
    "ToolExecutor",
    "ToolRegistry",
    "WorkflowDescriptor",
    "WorkflowExecutionResult",
    "WorkflowExecutor",
    "build_dialogue_workflow",
    "create_dialogue_executor",
    "default_registry",
    "register_default_tools",
]
