"""Output extraction and formatting toolkit used by the output node."""

import logging
from datetime import UTC, datetime
from typing import Any

from nodeflow.graph.context import ExecutionContext
from nodeflow.graph.types import NodeExecutionStatus
from nodeflow.runner.tool_registry import tool_method

logger = logging.getLogger(__name__)

OUTPUT_FORMATS = ("json", "text", "custom")
CUSTOM_FORMAT_TYPES = ("summary", "report", "flat")
REPORT_VERSION = "1.0.0"


def flatten(data: dict[str, Any], prefix: str = "") -> dict[str, Any]:
    """Flatten nested dicts into dotted keys. Lists are kept as values."""
    flat: dict[str, Any] = {}
    for key, value in data.items():
        name = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(value, dict):
            flat.update(flatten(value, name))
        else:
            flat[name] = value
    return flat


class OutputToolkit:
    """Tools reading results out of an ExecutionContext."""

    @tool_method(description="Look up a field in the context data, globals or node outputs")
    def extract_context_field(self, context: ExecutionContext, key: str) -> Any:
        if context.has(key):
            return context.get(key)

        marker = object()
        value = context.get_global(key, marker)
        if value is not marker:
            return value

        # "nodeId.outputKey" addresses one key of a node's output
        if "." in key:
            node_id, output_key = key.split(".", 1)
            output = context.get_node_output(node_id)
            if isinstance(output, dict) and output_key in output:
                return output[output_key]

        return None

    @tool_method(description="Collect all user-visible data from the context")
    def extract_all_context_data(self, context: ExecutionContext) -> dict[str, Any]:
        return {key: value for key, value in context.data().items() if not key.startswith("_")}

    @tool_method(description="Summarize node executions recorded in the context")
    def generate_execution_summary(self, context: ExecutionContext) -> dict[str, Any]:
        history = context.get_execution_history()
        if not history:
            return {
                "totalNodes": 0,
                "executionTime": 0,
                "status": "no_execution",
                "successfulNodes": 0,
                "failedNodes": 0,
                "nodeDetails": [],
            }

        successful = sum(1 for r in history if r.status == NodeExecutionStatus.COMPLETED)
        failed = sum(1 for r in history if r.status == NodeExecutionStatus.FAILED)
        details = [
            {"nodeId": r.node_id, "status": str(r.status), "executionTime": r.duration_ms or 0}
            for r in history
        ]

        status = "completed"
        if failed:
            status = "failed" if successful == 0 else "partial_failure"

        return {
            "totalNodes": len(history),
            "executionTime": sum(d["executionTime"] for d in details),
            "status": status,
            "successfulNodes": successful,
            "failedNodes": failed,
            "nodeDetails": details,
        }

    @tool_method(description="Format data as a summary, a report or a flat record")
    def custom_format(
        self, data: dict[str, Any], format_config: dict[str, Any] | None = None
    ) -> Any:
        format_type = (format_config or {}).get("type")
        if format_type == "summary":
            summary: dict[str, Any] = {}
            if "workflowResult" in data:
                summary["result"] = data["workflowResult"]
            execution = data.get("executionSummary")
            if execution:
                summary["execution"] = {
                    "totalTime": execution.get("executionTime"),
                    "status": execution.get("status"),
                    "nodeCount": execution.get("totalNodes"),
                }
            reserved = ("workflowResult", "executionSummary")
            rest = {k: v for k, v in data.items() if k not in reserved}
            if rest:
                summary["contextData"] = rest
            return summary
        if format_type == "report":
            return {
                "header": {
                    "timestamp": datetime.now(UTC).isoformat(),
                    "workflow": "Workflow Execution Report",
                },
                "results": data,
                "footer": {"generated": "output", "version": REPORT_VERSION},
            }
        if format_type == "flat":
            return flatten(data)
        if format_type is not None:
            logger.warning(f"Unknown custom format type '{format_type}', returning data unchanged")
        return data

    @tool_method(description="List the supported output formats")
    def get_available_formats(self) -> list[str]:
        return list(OUTPUT_FORMATS)

    @tool_method(description="Validate an output node configuration")
    def validate_output_config(self, config: dict[str, Any]) -> dict[str, Any]:
        errors = []
        output_format = config.get("format", "json")
        if output_format not in OUTPUT_FORMATS:
            errors.append(f"format must be one of {', '.join(OUTPUT_FORMATS)}")
        fields = config.get("fields")
        if fields is not None and (
            not isinstance(fields, list) or not all(isinstance(f, str) for f in fields)
        ):
            errors.append("fields must be a list of strings")
        template = config.get("template")
        if template is not None and not isinstance(template, str):
            errors.append("template must be a string")
        format_config = config.get("formatConfig")
        if output_format == "custom" and format_config is not None:
            if format_config.get("type") not in CUSTOM_FORMAT_TYPES:
                errors.append(f"formatConfig.type must be one of {', '.join(CUSTOM_FORMAT_TYPES)}")
        return {"isValid": not errors, "errors": errors}
