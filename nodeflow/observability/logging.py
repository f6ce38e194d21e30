"""
Structured logging with automatic run context propagation.

Standard ``logger.info()`` calls pick up the identifiers of the current
workflow run without any ids being passed around:

    WorkflowExecutor.execute() → sets run_id and workflow_id
        ↓ (propagated via ContextVar)
    Node.execute() → adds node_id
        ↓ (propagated via ContextVar)
    Tool code → logger.info("message") → carries all three

Two output modes: JSON lines for production, colorized text for development.
"""

import json
import logging
import os
import re
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

# ContextVar is task-local, so concurrent nodes in one batch keep their own node_id
trace_context: ContextVar[dict[str, Any] | None] = ContextVar("trace_context", default=None)

_ANSI_CODE = re.compile(r"\x1b\[[0-9;]*m")

# Extra fields copied from log records into JSON output when present
_EXTRA_FIELDS = ("event", "latency_ms", "node_id", "node_type", "tool", "model", "tokens_used")


def strip_ansi_codes(text: str) -> str:
    """Drop terminal color sequences so JSON fields stay plain text."""
    return _ANSI_CODE.sub("", text)


class StructuredFormatter(logging.Formatter):
    """
    One JSON object per record.

    Each entry carries the standard fields (timestamp, level, logger,
    message), the current run context and any known ``extra`` fields.
    """

    def format(self, record: logging.LogRecord) -> str:
        context = trace_context.get() or {}

        log_entry = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": strip_ansi_codes(record.getMessage()),
        }
        log_entry.update(context)

        for name in _EXTRA_FIELDS:
            value = getattr(record, name, None)
            if value is None:
                continue
            log_entry[name] = strip_ansi_codes(value) if isinstance(value, str) else value

        if record.exc_info:
            log_entry["exception"] = strip_ansi_codes(self.formatException(record.exc_info))

        return json.dumps(log_entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """
    Colored single-line output for local runs.

    Prefixes each line with the short run id, workflow and node so that
    interleaved output from one batch stays readable.
    """

    COLORS = {
        "DEBUG": "\x1b[36m",
        "INFO": "\x1b[32m",
        "WARNING": "\x1b[33m",
        "ERROR": "\x1b[31m",
        "CRITICAL": "\x1b[35m",
    }
    RESET = "\x1b[0m"

    def format(self, record: logging.LogRecord) -> str:
        context = trace_context.get() or {}
        parts = [
            f"{label}:{context[key]}"
            for key, label in (("workflow_id", "workflow"), ("node_id", "node"))
            if context.get(key)
        ]
        if context.get("run_id"):
            parts.insert(0, f"run:{str(context['run_id'])[:8]}")
        context_prefix = "[" + " | ".join(parts) + "] " if parts else ""

        color = self.COLORS.get(record.levelname, "")
        level = record.levelname.ljust(8)

        event = getattr(record, "event", None)
        suffix = f" [{event}]" if event is not None else ""

        line = f"{color}[{level}]{self.RESET} {context_prefix}{record.getMessage()}{suffix}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(
    level: str = "INFO",
    format: str = "auto",  # "json", "human", or "auto"
) -> None:
    """
    Configure logging for the application.

    Call once at startup (CLI entry point, service bootstrap, test fixture).

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format: Output format:
            - "json": Machine-parseable JSON lines
            - "human": Colorized text
            - "auto": JSON if LOG_FORMAT=json or ENV=production, else human
    """
    if format == "auto":
        log_format_env = os.getenv("LOG_FORMAT", "").lower()
        env = os.getenv("ENV", "development").lower()
        format = "json" if log_format_env == "json" or env == "production" else "human"

    if format == "json":
        formatter: logging.Formatter = StructuredFormatter()
        _disable_third_party_colors()
    else:
        formatter = HumanReadableFormatter()

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level.upper())

    if format == "json":
        # Route LiteLLM and its HTTP stack through the root JSON handler
        for logger_name in ("LiteLLM", "httpcore", "httpx", "openai"):
            third_party = logging.getLogger(logger_name)
            third_party.handlers.clear()
            third_party.propagate = True


def _disable_third_party_colors() -> None:
    """Ask libraries that honour NO_COLOR to emit plain output."""
    os.environ["NO_COLOR"] = "1"
    os.environ["FORCE_COLOR"] = "0"

    import litellm

    litellm.suppress_debug_info = True


def set_trace_context(**kwargs: Any) -> None:
    """
    Add fields to the run context of the current task.

    Called by the framework: the executor sets ``workflow_id`` and
    ``run_id``, each node execution sets ``node_id``. Values propagate to
    every log record emitted in the same asyncio task and its children.
    """
    current = trace_context.get() or {}
    trace_context.set({**current, **kwargs})


def get_trace_context() -> dict:
    """Return a copy of the current run context (empty dict if unset)."""
    context = trace_context.get() or {}
    return context.copy()


def clear_trace_context() -> None:
    """Clear the run context, e.g. between test runs."""
    trace_context.set(None)
