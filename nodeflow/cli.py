"""
Command-line interface for Nodeflow.

Usage:
    nodeflow validate workflows/dialogue.json
    nodeflow info workflows/dialogue.json
    nodeflow plan workflows/dialogue.json --scheduling first_discovery
"""

import argparse
import json
import sys

from pydantic import ValidationError

from nodeflow.graph.errors import NodeflowError
from nodeflow.graph.executor import WorkflowExecutor
from nodeflow.graph.registry import default_registry
from nodeflow.graph.spec import WorkflowDescriptor
from nodeflow.graph.types import SchedulingMode
from nodeflow.observability import configure_logging


def _load(path: str) -> WorkflowDescriptor | None:
    try:
        return WorkflowDescriptor.from_file(path)
    except FileNotFoundError:
        print(f"Error: workflow file not found: {path}", file=sys.stderr)
    except (json.JSONDecodeError, ValidationError) as e:
        print(f"Error: invalid workflow file {path}: {e}", file=sys.stderr)
    return None


def cmd_validate(args: argparse.Namespace) -> int:
    workflow = _load(args.workflow)
    if workflow is None:
        return 1

    errors = workflow.validate()
    registry = default_registry()
    for node in workflow.nodes:
        if node.type not in registry:
            errors.append(f"Node '{node.id}' has unknown type '{node.type}'")

    warnings = workflow.check_dataflow()

    if errors:
        print(f"✗ {workflow.id}: {len(errors)} error(s)")
        for error in errors:
            print(f"  - {error}")
    else:
        print(f"✓ {workflow.id} is valid")
    for warning in warnings:
        print(f"  ⚠ {warning}")
    return 1 if errors else 0


def cmd_info(args: argparse.Namespace) -> int:
    workflow = _load(args.workflow)
    if workflow is None:
        return 1

    registry = default_registry()
    if args.json:
        print(json.dumps(workflow.to_dict(), indent=2))
        return 0

    print(f"Workflow: {workflow.name or workflow.id}")
    if workflow.description:
        print(f"  {workflow.description}")
    print(f"Nodes ({len(workflow.nodes)}):")
    for node in workflow.nodes:
        entry = registry.get(node.type)
        category = node.category or (entry.category if entry else None) or "?"
        icon = f"{entry.icon} " if entry and entry.icon else ""
        arrow = f" → {', '.join(node.next)}" if node.next else ""
        print(f"  {icon}{node.id} [{node.type}, {category}]{arrow}")
    print(f"Roots: {', '.join(workflow.roots()) or '(none)'}")
    return 0


def cmd_plan(args: argparse.Namespace) -> int:
    workflow = _load(args.workflow)
    if workflow is None:
        return 1

    try:
        executor = WorkflowExecutor(workflow, scheduling=SchedulingMode(args.scheduling))
        executor.validate()
    except NodeflowError as e:
        print(f"✗ {e}", file=sys.stderr)
        return 1

    entries = [node.id for node in executor.get_entry_nodes()]
    print(f"Entry nodes: {', '.join(entries)}")
    for index, batch in enumerate(executor.plan_batches()):
        print(f"  Batch {index}: {', '.join(batch)}")
    return 0


def register_commands(subparsers: argparse._SubParsersAction) -> None:
    validate_parser = subparsers.add_parser("validate", help="Validate a workflow file")
    validate_parser.add_argument("workflow", help="Path to the workflow JSON file")
    validate_parser.set_defaults(func=cmd_validate)

    info_parser = subparsers.add_parser("info", help="Show workflow nodes and structure")
    info_parser.add_argument("workflow", help="Path to the workflow JSON file")
    info_parser.add_argument("--json", action="store_true", help="Print the descriptor as JSON")
    info_parser.set_defaults(func=cmd_info)

    plan_parser = subparsers.add_parser("plan", help="Show the batches a run would execute")
    plan_parser.add_argument("workflow", help="Path to the workflow JSON file")
    plan_parser.add_argument(
        "--scheduling",
        choices=[mode.value for mode in SchedulingMode],
        default=SchedulingMode.ALL_PREDECESSORS.value,
        help="Readiness rule for successors",
    )
    plan_parser.set_defaults(func=cmd_plan)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="nodeflow",
        description="Nodeflow - inspect and validate dialogue workflow graphs",
    )
    parser.add_argument("--log-level", default="WARNING", help="Log level")

    subparsers = parser.add_subparsers(dest="command", required=True)
    register_commands(subparsers)

    args = parser.parse_args(argv)
    configure_logging(level=args.log_level)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
