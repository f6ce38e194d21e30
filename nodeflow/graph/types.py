"""Core enums and execution records shared by nodes, context and scheduler."""

import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class NodeCategory(StrEnum):
    """Structural role of a node in a workflow."""

    ENTRY = "entry"
    MIDDLE = "middle"
    EXIT = "exit"


class NodeExecutionStatus(StrEnum):
    """Lifecycle status of a node execution or a whole run."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class SchedulingMode(StrEnum):
    """How the scheduler decides that a successor is ready to run.

    FIRST_DISCOVERY schedules a successor as soon as any predecessor has
    finished. ALL_PREDECESSORS waits until every predecessor reachable from
    the entry nodes has been processed, so join nodes see all upstream writes.
    """

    FIRST_DISCOVERY = "first_discovery"
    ALL_PREDECESSORS = "all_predecessors"


class RecordedError(Exception):
    """An error restored from a serialized execution record."""

    def __init__(self, error_type: str, message: str):
        self.error_type = error_type
        super().__init__(message)

    def __repr__(self) -> str:
        return f"RecordedError({self.error_type}: {self})"


def _error_to_dict(error: BaseException | None) -> dict[str, str] | None:
    if error is None:
        return None
    error_type = error.error_type if isinstance(error, RecordedError) else type(error).__name__
    return {"type": error_type, "message": str(error)}


def _error_from_dict(data: dict[str, str] | str | None) -> BaseException | None:
    if data is None:
        return None
    if isinstance(data, str):
        return RecordedError("Error", data)
    return RecordedError(data.get("type", "Error"), data.get("message", ""))


@dataclass(frozen=True)
class ExecutionResult:
    """Immutable record of one node execution.

    Exactly one record is appended to the context's execution history for
    every node execution, whether it completed, failed or was skipped.
    """

    node_id: str
    status: NodeExecutionStatus
    input: dict[str, Any] = field(default_factory=dict)
    output: dict[str, Any] | None = None
    error: BaseException | None = None
    start_time: float = field(default_factory=time.time)
    end_time: float | None = None

    @property
    def duration_ms(self) -> int | None:
        if self.end_time is None:
            return None
        return int((self.end_time - self.start_time) * 1000)

    @property
    def success(self) -> bool:
        return self.status == NodeExecutionStatus.COMPLETED

    def to_dict(self) -> dict[str, Any]:
        return {
            "node_id": self.node_id,
            "status": str(self.status),
            "input": self.input,
            "output": self.output,
            "error": _error_to_dict(self.error),
            "start_time": self.start_time,
            "end_time": self.end_time,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ExecutionResult":
        return cls(
            node_id=data["node_id"],
            status=NodeExecutionStatus(data["status"]),
            input=data.get("input") or {},
            output=data.get("output"),
            error=_error_from_dict(data.get("error")),
            start_time=data.get("start_time", 0.0),
            end_time=data.get("end_time"),
        )


@dataclass
class BatchResult:
    """Results of one concurrently-executed batch, yielded by ``stream``."""

    index: int
    node_ids: list[str]
    results: list[ExecutionResult] = field(default_factory=list)

    @property
    def outputs(self) -> dict[str, dict[str, Any] | None]:
        return {r.node_id: r.output for r in self.results}


@dataclass
class WorkflowExecutionResult:
    """Outcome of a whole workflow run."""

    workflow_id: str
    status: NodeExecutionStatus
    results: list[ExecutionResult] = field(default_factory=list)
    batches: list[list[str]] = field(default_factory=list)
    processed: list[str] = field(default_factory=list)
    error: BaseException | None = None
    output: Any = None
    start_time: float = field(default_factory=time.time)
    end_time: float | None = None

    @property
    def success(self) -> bool:
        return self.status == NodeExecutionStatus.COMPLETED

    @property
    def duration_ms(self) -> int | None:
        if self.end_time is None:
            return None
        return int((self.end_time - self.start_time) * 1000)

    def get_result(self, node_id: str) -> ExecutionResult | None:
        for result in self.results:
            if result.node_id == node_id:
                return result
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "workflow_id": self.workflow_id,
            "status": str(self.status),
            "results": [r.to_dict() for r in self.results],
            "batches": [list(b) for b in self.batches],
            "processed": list(self.processed),
            "error": _error_to_dict(self.error),
            "output": self.output,
            "start_time": self.start_time,
            "end_time": self.end_time,
        }
