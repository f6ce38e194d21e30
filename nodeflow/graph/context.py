"""
Execution Context - the shared state of one workflow run.

The context is the only channel through which nodes exchange data. It holds
six independent stores:

- data: generic key/value data (the dataflow channel between nodes)
- node outputs: latest output of every node, with timestamp
- node state: per-node scratch state
- globals: run-wide values, including the reserved workflow status keys
- execution history: append-only ExecutionResult records
- messages: append-only conversation messages

plus free-form metadata. The whole context serializes to a plain dict and
back, which is also how snapshots and clones are produced.
"""

import asyncio
import copy
import json
import logging
import time
import traceback
import uuid
from dataclasses import dataclass, field
from typing import Any, Literal

from nodeflow.graph.errors import WorkflowCancelledError
from nodeflow.graph.types import ExecutionResult

logger = logging.getLogger(__name__)

# Reserved global keys written by mark_complete / mark_failed
WORKFLOW_STATUS = "workflowStatus"
WORKFLOW_RESULT = "workflowResult"
COMPLETED_AT = "completedAt"
FAILED_AT = "failedAt"
ERROR = "error"
ERROR_STACK = "errorStack"

# Metadata key holding the id of the executor run currently using the context
RUN_ID = "runId"


@dataclass
class Message:
    """A single message in the conversation log.

    Attributes:
        seq: Monotonic sequence number within the context.
        role: One of "system", "user" or "assistant".
        content: Message text.
        metadata: Free-form annotations (source node, model, ...).
    """

    seq: int
    role: Literal["system", "user", "assistant"]
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: float = field(default_factory=time.time)

    def to_llm_dict(self) -> dict[str, Any]:
        """Convert to OpenAI-format message dict."""
        return {"role": self.role, "content": self.content}

    def to_storage_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "seq": self.seq,
            "role": self.role,
            "content": self.content,
            "created_at": self.created_at,
        }
        if self.metadata:
            d["metadata"] = self.metadata
        return d

    @classmethod
    def from_storage_dict(cls, data: dict[str, Any]) -> "Message":
        return cls(
            seq=data.get("seq", 0),
            role=data["role"],
            content=data.get("content", ""),
            metadata=data.get("metadata") or {},
            created_at=data.get("created_at", time.time()),
        )


@dataclass
class NodeOutputRecord:
    """Latest output published by a node."""

    node_id: str
    value: Any
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {"node_id": self.node_id, "value": self.value, "timestamp": self.timestamp}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "NodeOutputRecord":
        return cls(
            node_id=data["node_id"],
            value=data.get("value"),
            timestamp=data.get("timestamp", time.time()),
        )


@dataclass
class NodeStateRecord:
    """Arbitrary per-node state and the time it last changed."""

    value: Any
    updated_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {"value": self.value, "updated_at": self.updated_at}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "NodeStateRecord":
        return cls(value=data.get("value"), updated_at=data.get("updated_at", time.time()))


class ExecutionContext:
    """
    Shared, serializable state of one workflow run.

    All operations are synchronous and never yield to the event loop, so a
    single call is atomic with respect to other nodes of the same batch.
    Callers that need read-modify-write atomicity across awaits use
    ``set_async``, which serializes writers per key.

    Example:
        context = ExecutionContext()
        context.set("userInput", "hi")
        context.set_node_output("input-1", {"userInput": "hi"})
        clone = ExecutionContext.from_dict(context.to_dict())
    """

    def __init__(self, context_id: str | None = None, metadata: dict[str, Any] | None = None):
        self.id = context_id or uuid.uuid4().hex
        self.created_at = time.time()
        self._data: dict[str, Any] = {}
        self._node_outputs: dict[str, NodeOutputRecord] = {}
        self._last_output_node: str | None = None
        self._node_state: dict[str, NodeStateRecord] = {}
        self._globals: dict[str, Any] = {}
        self._history: list[ExecutionResult] = []
        self._messages: list[Message] = []
        self._metadata: dict[str, Any] = dict(metadata or {})

        # Runtime-only state, never serialized
        self._key_locks: dict[str, asyncio.Lock] = {}
        self._cancelled = False
        self._cancel_reason: str | None = None

    # === DATA STORE ===

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    # Aliases used by node code that distinguishes the data store explicitly
    get_data = get
    set_data = set

    def has(self, key: str) -> bool:
        return key in self._data

    def delete(self, key: str) -> bool:
        return self._data.pop(key, _MISSING) is not _MISSING

    def keys(self) -> list[str]:
        return list(self._data)

    def data(self) -> dict[str, Any]:
        """Shallow snapshot of the data store."""
        return dict(self._data)

    def update(self, values: dict[str, Any]) -> None:
        self._data.update(values)

    async def set_async(self, key: str, value: Any) -> None:
        """Write under a per-key lock so concurrent writers to one key are serialized."""
        async with self._get_lock(key):
            self._data[key] = value

    def _get_lock(self, key: str) -> asyncio.Lock:
        if key not in self._key_locks:
            self._key_locks[key] = asyncio.Lock()
        return self._key_locks[key]

    def clear(self) -> None:
        """Clear every store and the metadata. The context id is kept."""
        self._data.clear()
        self._node_outputs.clear()
        self._last_output_node = None
        self._node_state.clear()
        self._globals.clear()
        self._history.clear()
        self._messages.clear()
        self._metadata.clear()

    # === NODE OUTPUTS ===

    def set_node_output(self, node_id: str, value: Any) -> None:
        self._node_outputs[node_id] = NodeOutputRecord(node_id=node_id, value=value)
        self._last_output_node = node_id

    def get_node_output(self, node_id: str, default: Any = None) -> Any:
        record = self._node_outputs.get(node_id)
        return record.value if record is not None else default

    def get_node_output_record(self, node_id: str) -> NodeOutputRecord | None:
        return self._node_outputs.get(node_id)

    def get_last_node_output(self) -> NodeOutputRecord | None:
        if self._last_output_node is None:
            return None
        return self._node_outputs.get(self._last_output_node)

    def get_all_node_outputs(self) -> dict[str, Any]:
        return {node_id: record.value for node_id, record in self._node_outputs.items()}

    # === NODE STATE ===

    def set_node_state(self, node_id: str, value: Any) -> None:
        self._node_state[node_id] = NodeStateRecord(value=value)

    def get_node_state(self, node_id: str, default: Any = None) -> Any:
        record = self._node_state.get(node_id)
        return copy.copy(record.value) if record is not None else default

    def get_node_state_record(self, node_id: str) -> NodeStateRecord | None:
        return self._node_state.get(node_id)

    def update_node_state(self, node_id: str, updates: dict[str, Any]) -> None:
        """Merge ``updates`` into a dict state; any other state is replaced."""
        record = self._node_state.get(node_id)
        current = record.value if record is not None and isinstance(record.value, dict) else {}
        self._node_state[node_id] = NodeStateRecord(value={**current, **updates})

    # === GLOBALS ===

    def set_global(self, key: str, value: Any) -> None:
        self._globals[key] = value

    def get_global(self, key: str, default: Any = None) -> Any:
        return self._globals.get(key, default)

    # === EXECUTION HISTORY ===

    def add_execution_result(self, result: ExecutionResult) -> None:
        self._history.append(result)

    def get_execution_history(self) -> list[ExecutionResult]:
        return list(self._history)

    def get_last_execution_result(self) -> ExecutionResult | None:
        return self._history[-1] if self._history else None

    def get_node_history(self, node_id: str) -> list[ExecutionResult]:
        return [r for r in self._history if r.node_id == node_id]

    # === MESSAGES ===

    def add_message(self, message: Message | dict[str, Any]) -> Message:
        if isinstance(message, dict):
            message = Message(
                seq=len(self._messages),
                role=message["role"],
                content=message.get("content", ""),
                metadata=message.get("metadata") or {},
            )
        self._messages.append(message)
        return message

    def get_messages(self) -> list[Message]:
        return list(self._messages)

    def get_recent_messages(self, count: int) -> list[Message]:
        if count <= 0:
            return []
        return self._messages[-count:]

    def clear_messages(self) -> None:
        self._messages.clear()

    # === METADATA ===

    def set_metadata(self, key: str, value: Any) -> None:
        self._metadata[key] = value

    def get_metadata(self, key: str | None = None, default: Any = None) -> Any:
        if key is None:
            return dict(self._metadata)
        return self._metadata.get(key, default)

    # === LIFECYCLE ===

    def mark_complete(self, result: Any = None) -> None:
        self._globals[WORKFLOW_STATUS] = "completed"
        self._globals[COMPLETED_AT] = time.time()
        if result is not None:
            self._globals[WORKFLOW_RESULT] = result

    def mark_failed(self, error: BaseException | str) -> None:
        self._globals[WORKFLOW_STATUS] = "failed"
        self._globals[FAILED_AT] = time.time()
        self._globals[ERROR] = str(error)
        if isinstance(error, BaseException):
            self._globals[ERROR_STACK] = "".join(traceback.format_exception(error))
        else:
            self._globals[ERROR_STACK] = None

    def is_completed(self) -> bool:
        return self._globals.get(WORKFLOW_STATUS) == "completed"

    def is_failed(self) -> bool:
        return self._globals.get(WORKFLOW_STATUS) == "failed"

    # === CANCELLATION ===

    def cancel(self, reason: str | None = None) -> None:
        """Request cancellation. Takes effect before the next node starts."""
        self._cancelled = True
        self._cancel_reason = reason
        logger.info(f"Cancellation requested for context {self.id}: {reason or 'no reason'}")

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise WorkflowCancelledError(self._cancel_reason)

    # === SERIALIZATION ===

    def to_dict(self) -> dict[str, Any]:
        """Serialize every store. The result shares no mutable state with the context."""
        return copy.deepcopy(
            {
                "id": self.id,
                "created_at": self.created_at,
                "data": self._data,
                "node_outputs": {k: r.to_dict() for k, r in self._node_outputs.items()},
                "last_output_node": self._last_output_node,
                "node_state": {k: r.to_dict() for k, r in self._node_state.items()},
                "globals": self._globals,
                "execution_history": [r.to_dict() for r in self._history],
                "messages": [m.to_storage_dict() for m in self._messages],
                "metadata": self._metadata,
            }
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ExecutionContext":
        context = cls(context_id=data.get("id"))
        context._load(data)
        return context

    def _load(self, data: dict[str, Any]) -> None:
        data = copy.deepcopy(data)
        self.created_at = data.get("created_at", self.created_at)
        self._data = data.get("data") or {}
        self._node_outputs = {
            k: NodeOutputRecord.from_dict(v) for k, v in (data.get("node_outputs") or {}).items()
        }
        self._last_output_node = data.get("last_output_node")
        self._node_state = {
            k: NodeStateRecord.from_dict(v) for k, v in (data.get("node_state") or {}).items()
        }
        self._globals = data.get("globals") or {}
        self._history = [ExecutionResult.from_dict(r) for r in data.get("execution_history") or []]
        self._messages = [Message.from_storage_dict(m) for m in data.get("messages") or []]
        self._metadata = data.get("metadata") or {}

    def to_json(self, indent: int | None = None) -> str:
        return json.dumps(self.to_dict(), indent=indent, default=str)

    @classmethod
    def from_json(cls, text: str) -> "ExecutionContext":
        return cls.from_dict(json.loads(text))

    def snapshot(self) -> dict[str, Any]:
        return self.to_dict()

    def restore(self, snapshot: dict[str, Any]) -> None:
        """Replace every store with the contents of a snapshot."""
        self.id = snapshot.get("id", self.id)
        self._load(snapshot)

    def clone(self) -> "ExecutionContext":
        """Deep, independent copy with the same id."""
        return ExecutionContext.from_dict(self.to_dict())

    def merge(self, other: "ExecutionContext") -> "ExecutionContext":
        """
        Merge another context into this one.

        Keyed stores are unioned with ``other`` winning on collisions;
        execution history and messages are concatenated. Returns self.
        """
        incoming = other.to_dict()
        self._data.update(incoming["data"])
        for node_id, record in incoming["node_outputs"].items():
            self._node_outputs[node_id] = NodeOutputRecord.from_dict(record)
        if incoming["last_output_node"] is not None:
            self._last_output_node = incoming["last_output_node"]
        for node_id, record in incoming["node_state"].items():
            self._node_state[node_id] = NodeStateRecord.from_dict(record)
        self._globals.update(incoming["globals"])
        self._history.extend(other.get_execution_history())
        offset = len(self._messages)
        for i, message in enumerate(incoming["messages"]):
            restored = Message.from_storage_dict(message)
            restored.seq = offset + i
            self._messages.append(restored)
        self._metadata.update(incoming["metadata"])
        return self

    def get_summary(self) -> dict[str, Any]:
        last = self.get_last_execution_result()
        return {
            "id": self.id,
            "status": self._globals.get(WORKFLOW_STATUS, "running"),
            "data_keys": len(self._data),
            "node_outputs": len(self._node_outputs),
            "node_states": len(self._node_state),
            "globals": len(self._globals),
            "executions": len(self._history),
            "messages": len(self._messages),
            "last_node": last.node_id if last else None,
            "cancelled": self._cancelled,
        }

    def __repr__(self) -> str:
        return f"ExecutionContext(id={self.id!r}, data_keys={list(self._data)})"


_MISSING = object()
