from __future__ import annotations

import json
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from taskflow.graph.handlers import TaskHandlerRegistry, build_default_registry
from taskflow.graph.hooks import WorkflowHookRegistry
from taskflow.graph.models import Edge, Node
from taskflow.graph.record_store import (
    ExecutionRecordStore,
    InMemoryExecutionRecordStore,
    SQLiteExecutionRecordStore,
)
from taskflow.graph.scheduler import ExecutionOptions, WorkflowExecutionResult, WorkflowScheduler
from taskflow.llm_client import CompletionProvider, build_completion_provider
from taskflow.settings import AppSettings, load_settings



def build_record_store(settings: AppSettings, *, persist: bool = True) -> ExecutionRecordStore:
    if not persist:
        return InMemoryExecutionRecordStore()
    return SQLiteExecutionRecordStore(db_path=settings.sqlite_path)



def build_scheduler(
    settings: AppSettings | None = None,
    *,
    record_store: ExecutionRecordStore | None = None,
    provider: CompletionProvider | None = None,
    registry: TaskHandlerRegistry | None = None,
    hook_registry: WorkflowHookRegistry | None = None,
) -> WorkflowScheduler:
    active_settings = settings or load_settings()
    active_registry = registry or build_default_registry(
        provider or build_completion_provider(active_settings),
        active_settings,
    )
    return WorkflowScheduler(
        active_registry,
        record_store=record_store or build_record_store(active_settings),
        hook_registry=hook_registry,
        settings=active_settings,
    )



async def execute_workflow(
    nodes: Iterable[Node],
    edges: Iterable[Edge],
    options: ExecutionOptions | None = None,
    *,
    settings: AppSettings | None = None,
) -> WorkflowExecutionResult:
    scheduler = build_scheduler(settings)
    return await scheduler.execute_workflow(nodes, edges, options)



def load_workflow_document(path: Path) -> dict[str, Any]:
    payload = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError(f"Workflow file '{path}' must contain a JSON object with 'nodes' and 'edges'.")
    return payload
