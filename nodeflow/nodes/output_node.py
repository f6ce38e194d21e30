"""Exit node that shapes the workflow's final result."""

import logging
import re
from typing import Any

from nodeflow.graph.context import WORKFLOW_RESULT, ExecutionContext
from nodeflow.graph.errors import NodeConfigurationError
from nodeflow.graph.node import Node
from nodeflow.graph.types import NodeCategory

logger = logging.getLogger(__name__)

_TEMPLATE_FIELD = re.compile(r"\{\{\s*([\w.]+)\s*\}\}")


def render_template(template: str, record: dict[str, Any]) -> str:
    """Replace ``{{field}}`` placeholders with record values; unknown fields render empty."""

    def value(match: re.Match) -> str:
        found = record.get(match.group(1))
        return "" if found is None else str(found)

    return _TEMPLATE_FIELD.sub(value, template)


class OutputNode(Node):
    """
    Collects the workflow's result and writes it under ``outputKey``.

    The record is an explicit ``output`` input when one is supplied,
    otherwise the fields listed in ``params["fields"]`` (falling back to the
    descriptor's input fields, then to all data) extracted from the context.

    Formats:
        json: the record as-is
        text: ``key: value`` lines, or ``params["template"]`` with
            ``{{field}}`` placeholders
        custom: ``custom_format`` with ``params["formatConfig"]``

    ``includeSummary`` adds the execution summary under ``executionSummary``.
    """

    node_type = "output"
    default_category = NodeCategory.EXIT
    description = "Formats and publishes the workflow result"

    @property
    def output_key(self) -> str:
        return self.params.get("outputKey") or WORKFLOW_RESULT

    async def setup(self) -> None:
        validation = await self.execute_tool("validate_output_config", self.params)
        if not validation["isValid"]:
            raise NodeConfigurationError(
                "invalid output configuration", self.id, errors=validation["errors"]
            )

    async def collect(self, inputs: dict[str, Any], context: ExecutionContext) -> dict[str, Any]:
        explicit = inputs.get("output")
        if isinstance(explicit, dict):
            return dict(explicit)

        fields = self.params.get("fields") or list(self.descriptor.input_fields)
        if fields:
            return {
                field: await self.execute_tool("extract_context_field", context, field)
                for field in fields
            }

        record = await self.execute_tool("extract_all_context_data", context)
        record.pop(self.output_key, None)
        return record

    async def operate(self, inputs: dict[str, Any], config: dict[str, Any]) -> dict[str, Any]:
        context = config["context"]
        record = await self.collect(inputs, context)
        output_format = self.param(inputs, "format", "json")

        summary = None
        if self.param(inputs, "includeSummary", False):
            summary = await self.execute_tool("generate_execution_summary", context)
            record["executionSummary"] = summary

        if output_format == "text":
            template = self.param(inputs, "template")
            if template:
                formatted: Any = render_template(template, record)
            else:
                formatted = "\n".join(f"{key}: {value}" for key, value in record.items())
        elif output_format == "custom":
            formatted = await self.execute_tool(
                "custom_format", record, self.param(inputs, "formatConfig")
            )
        else:
            formatted = record

        logger.debug(f"Output node '{self.id}' produced {output_format} result")
        output: dict[str, Any] = {self.output_key: formatted}
        if summary is not None:
            output["executionSummary"] = summary
        return output
