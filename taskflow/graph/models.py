from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from collections.abc import Mapping
from typing import Any, Literal


EdgeCondition = Literal["always", "success", "error"]
Outcome = Literal["success", "error"]
RunStatus = Literal["running", "completed", "completed_with_errors", "failed"]

DEFAULT_TASK_TYPE = "aiTask"
DEFAULT_EDGE_CONDITION: EdgeCondition = "always"
EDGE_CONDITIONS = {"always", "success", "error"}
RUN_STATUSES = {"running", "completed", "completed_with_errors", "failed"}



def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _optional_int(value: object) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _optional_float(value: object) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True, slots=True)
class TaskParameters:
    prompt: str = ""
    model: str | None = None
    max_tokens: int | None = None
    temperature: float | None = None
    inject_context: bool | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any] | None) -> TaskParameters:
        if not raw:
            return cls()
        known = {"prompt", "model", "maxTokens", "max_tokens", "temperature", "injectContext", "inject_context"}
        inject = raw.get("injectContext", raw.get("inject_context"))
        return cls(
            prompt=str(raw.get("prompt") or ""),
            model=str(raw["model"]) if raw.get("model") else None,
            max_tokens=_optional_int(raw.get("maxTokens", raw.get("max_tokens"))),
            temperature=_optional_float(raw.get("temperature")),
            inject_context=inject if isinstance(inject, bool) else None,
            extra={key: value for key, value in raw.items() if key not in known},
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = dict(self.extra)
        payload["prompt"] = self.prompt
        if self.model is not None:
            payload["model"] = self.model
        if self.max_tokens is not None:
            payload["maxTokens"] = self.max_tokens
        if self.temperature is not None:
            payload["temperature"] = self.temperature
        if self.inject_context is not None:
            payload["injectContext"] = self.inject_context
        return payload


@dataclass(frozen=True, slots=True)
class Node:
    id: str
    type: str = DEFAULT_TASK_TYPE
    parameters: TaskParameters = field(default_factory=TaskParameters)
    label: str | None = None

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> Node:
        """Accepts both the flat shape and the editor's ``data``-nested shape."""
        data = raw.get("data") if isinstance(raw.get("data"), Mapping) else {}
        parameters = raw.get("parameters")
        if not isinstance(parameters, Mapping):
            parameters = data.get("parameters") if isinstance(data.get("parameters"), Mapping) else {}
        node_type = raw.get("type") or raw.get("kind") or DEFAULT_TASK_TYPE
        label = raw.get("label") or data.get("label")
        return cls(
            id=str(raw.get("id") or ""),
            type=str(node_type),
            parameters=TaskParameters.from_dict(parameters),
            label=str(label) if label else None,
        )

    @property
    def display_name(self) -> str:
        return self.label or self.id

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "type": self.type,
            "parameters": self.parameters.to_dict(),
        }
        if self.label:
            payload["label"] = self.label
        return payload


@dataclass(frozen=True, slots=True)
class Edge:
    id: str
    source: str
    target: str
    condition: str = DEFAULT_EDGE_CONDITION

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> Edge:
        data = raw.get("data") if isinstance(raw.get("data"), Mapping) else {}
        condition = raw.get("condition") or data.get("condition") or DEFAULT_EDGE_CONDITION
        source = str(raw.get("source") or "")
        target = str(raw.get("target") or "")
        return cls(
            id=str(raw.get("id") or f"{source}->{target}"),
            source=source,
            target=target,
            condition=str(condition),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "source": self.source,
            "target": self.target,
            "condition": self.condition,
        }


@dataclass(frozen=True, slots=True)
class TaskConfig:
    type: str
    node_id: str
    parameters: TaskParameters
    prompt: str = ""
    api_key: str | None = None


@dataclass(frozen=True, slots=True)
class TaskData:
    text: str
    tokens: int
    model: str


@dataclass(frozen=True, slots=True)
class TaskMetadata:
    node_id: str
    execution_id: str = ""
    timestamp: str = ""
    task_type: str | None = None
    prompt: str | None = None
    duration_ms: int | None = None


@dataclass(frozen=True, slots=True)
class TaskResult:
    success: bool
    metadata: TaskMetadata
    data: TaskData | None = None
    error: str | None = None

    @classmethod
    def ok(
        cls,
        *,
        node_id: str,
        text: str,
        tokens: int,
        model: str,
        task_type: str | None = None,
    ) -> TaskResult:
        return cls(
            success=True,
            data=TaskData(text=text, tokens=tokens, model=model),
            metadata=TaskMetadata(node_id=node_id, timestamp=utc_now_iso(), task_type=task_type),
        )

    @classmethod
    def failure(cls, *, node_id: str, error: str, task_type: str | None = None) -> TaskResult:
        return cls(
            success=False,
            error=error,
            metadata=TaskMetadata(node_id=node_id, timestamp=utc_now_iso(), task_type=task_type),
        )

    @property
    def outcome(self) -> Outcome:
        return "success" if self.success else "error"

    @property
    def text(self) -> str | None:
        return self.data.text if self.data is not None else None

    @property
    def summary(self) -> str:
        if self.data is not None and self.data.text:
            return self.data.text
        return self.error or ""

    def with_metadata(self, **changes: Any) -> TaskResult:
        return replace(self, metadata=replace(self.metadata, **changes))

    def to_dict(self) -> dict[str, Any]:
        metadata: dict[str, Any] = {
            "nodeId": self.metadata.node_id,
            "executionId": self.metadata.execution_id,
            "timestamp": self.metadata.timestamp,
        }
        if self.metadata.task_type is not None:
            metadata["taskType"] = self.metadata.task_type
        if self.metadata.prompt is not None:
            metadata["prompt"] = self.metadata.prompt
        if self.metadata.duration_ms is not None:
            metadata["durationMs"] = self.metadata.duration_ms

        payload: dict[str, Any] = {"success": self.success, "metadata": metadata}
        if self.data is not None:
            payload["data"] = {
                "text": self.data.text,
                "tokens": self.data.tokens,
                "model": self.data.model,
            }
        if self.error is not None:
            payload["error"] = self.error
        return payload

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> TaskResult:
        metadata_raw = raw.get("metadata") if isinstance(raw.get("metadata"), Mapping) else {}
        data_raw = raw.get("data") if isinstance(raw.get("data"), Mapping) else None
        data = None
        if data_raw is not None:
            data = TaskData(
                text=str(data_raw.get("text") or ""),
                tokens=_optional_int(data_raw.get("tokens")) or 0,
                model=str(data_raw.get("model") or ""),
            )
        error = raw.get("error")
        return cls(
            success=bool(raw.get("success")),
            data=data,
            error=str(error) if error else None,
            metadata=TaskMetadata(
                node_id=str(metadata_raw.get("nodeId") or ""),
                execution_id=str(metadata_raw.get("executionId") or ""),
                timestamp=str(metadata_raw.get("timestamp") or ""),
                task_type=metadata_raw.get("taskType"),
                prompt=metadata_raw.get("prompt"),
                duration_ms=_optional_int(metadata_raw.get("durationMs")),
            ),
        )


@dataclass(slots=True)
class ExecutionRun:
    execution_id: str
    workflow_id: str
    user_id: str
    start_time: str
    end_time: str | None = None
    status: RunStatus = "running"
    total_nodes: int = 0
    nodes_executed: int = 0
    success_count: int = 0
    error_count: int = 0
    error: str = ""
    summary: list[str] = field(default_factory=list)
    results: dict[str, TaskResult] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.status != "running"

    @property
    def partial(self) -> bool:
        return self.nodes_executed < self.total_nodes


@dataclass(slots=True)
class NodeResultRecord:
    execution_id: str
    workflow_id: str
    user_id: str
    node_id: str
    status: Outcome
    result: TaskResult
    summary: str
    error: str
    created_at: str | None = None
