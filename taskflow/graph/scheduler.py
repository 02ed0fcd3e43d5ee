from __future__ import annotations

import asyncio
import logging
import uuid
from collections import deque
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable

from taskflow.graph.conditions import ConditionEvaluator
from taskflow.graph.diagnostics import GraphDiagnostic, analyze_graph, render_diagnostics
from taskflow.graph.graph_model import GraphModel
from taskflow.graph.handlers import TaskHandlerRegistry
from taskflow.graph.hooks import WorkflowEvent, WorkflowHookRegistry
from taskflow.graph.models import Edge, ExecutionRun, Node, RunStatus, TaskResult, utc_now_iso
from taskflow.graph.prompt_context import PromptContextBuilder
from taskflow.graph.record_store import (
    ExecutionRecordStore,
    InMemoryExecutionRecordStore,
    PersistenceError,
)
from taskflow.graph.retry import PersistenceRetryPolicy
from taskflow.graph.schema import GraphValidationError, validate_graph_or_raise
from taskflow.graph.task_executor import TaskExecutor
from taskflow.settings import ALLOWED_JOIN_POLICIES, ALLOWED_START_POLICIES, AppSettings


LOGGER = logging.getLogger(__name__)

NO_START_NODE_ERROR = "No starting node found"
CANCELLED_ERROR = "Execution cancelled"
NODE_FAILURES_ERROR = "Some nodes failed to execute"


class WorkflowExecutionError(RuntimeError):
    """Raised when a workflow cannot be scheduled at all."""


@dataclass(slots=True)
class ExecutionOptions:
    completion_api_key: str | None = None
    user_id: str | None = None
    workflow_id: str | None = None
    cancel_event: asyncio.Event | None = None


@dataclass(slots=True)
class WorkflowExecutionResult:
    execution_id: str
    workflow_id: str
    status: RunStatus
    results: dict[str, TaskResult]
    run: ExecutionRun
    error: str | None = None
    skipped_nodes: list[str] = field(default_factory=list)
    diagnostics: list[GraphDiagnostic] = field(default_factory=list)

    @property
    def ran(self) -> bool:
        return self.status in {"completed", "completed_with_errors"}

    @property
    def partial(self) -> bool:
        return self.run.nodes_executed < self.run.total_nodes


class _RunState:
    """Per-run dependency bookkeeping.

    Each incoming edge of a node is pending (``None``), live (``True``: source
    finished and the edge condition matched) or dead (``False``: condition did
    not match, or the source was skipped). A node is ready once all incoming
    edges are resolved and one is live (join policy ``all``), or as soon as one
    is live (join policy ``first``). A node whose edges are all dead is skipped,
    which kills its own outgoing edges in turn.
    """

    def __init__(self, graph: GraphModel, join_policy: str) -> None:
        self.graph = graph
        self.join_policy = join_policy
        self.edges: tuple[Edge, ...] = tuple(
            edge for edge in graph.edges if edge.source in graph and edge.target in graph
        )
        self.edge_state: list[bool | None] = [None] * len(self.edges)
        self.incoming: dict[str, list[int]] = {}
        self.outgoing: dict[str, list[int]] = {}
        for index, edge in enumerate(self.edges):
            self.incoming.setdefault(edge.target, []).append(index)
            self.outgoing.setdefault(edge.source, []).append(index)

        self.ready: deque[str] = deque()
        self.enqueued: set[str] = set()
        self.executed: set[str] = set()
        self.skipped: list[str] = []
        self.results: dict[str, TaskResult] = {}

    def enqueue(self, node_id: str) -> None:
        if node_id in self.enqueued or node_id in self.executed:
            return
        self.enqueued.add(node_id)
        self.ready.append(node_id)

    def is_settled(self, node_id: str) -> bool:
        return node_id in self.enqueued or node_id in self.executed or node_id in self.skipped

    def skip(self, node_id: str) -> None:
        if self.is_settled(node_id):
            return
        self._evaluate_targets(self._mark_skipped(node_id))

    def resolve_outgoing(self, node_id: str, traversable: Callable[[Edge], bool]) -> None:
        targets: list[str] = []
        for index in self.outgoing.get(node_id, []):
            edge = self.edges[index]
            self.edge_state[index] = traversable(edge)
            targets.append(edge.target)
        self._evaluate_targets(targets)

    def release_blocked(self) -> str | None:
        """Release the first node with a live predecessor that waits on a cycle."""
        for node in self.graph.nodes:
            if self.is_settled(node.id):
                continue
            if any(self.edge_state[index] is True for index in self.incoming.get(node.id, [])):
                self.enqueue(node.id)
                return node.id
        return None

    def _classify(self, node_id: str) -> str:
        states = [self.edge_state[index] for index in self.incoming.get(node_id, [])]
        any_live = any(state is True for state in states)
        if self.join_policy == "first" and any_live:
            return "ready"
        if all(state is not None for state in states):
            return "ready" if any_live else "skip"
        return "wait"

    def _mark_skipped(self, node_id: str) -> list[str]:
        self.skipped.append(node_id)
        targets: list[str] = []
        for index in self.outgoing.get(node_id, []):
            self.edge_state[index] = False
            targets.append(self.edges[index].target)
        return targets

    def _evaluate_targets(self, targets: Iterable[str]) -> None:
        pending = list(targets)
        while pending:
            target = pending.pop(0)
            if self.is_settled(target):
                continue
            verdict = self._classify(target)
            if verdict == "ready":
                self.enqueue(target)
            elif verdict == "skip":
                pending.extend(self._mark_skipped(target))


class WorkflowScheduler:
    """Dependency-gated executor for node/edge workflows.

    Nodes run one at a time. Per-node failures are data that the graph routes
    through ``error`` edges; only graph-level and persistence failures end a run
    as ``failed``. ``execute_workflow`` never raises for either.
    """

    def __init__(
        self,
        registry: TaskHandlerRegistry,
        *,
        record_store: ExecutionRecordStore | None = None,
        task_executor: TaskExecutor | None = None,
        condition_evaluator: ConditionEvaluator | None = None,
        hook_registry: WorkflowHookRegistry | None = None,
        retry_policy: PersistenceRetryPolicy | None = None,
        settings: AppSettings | None = None,
        start_policy: str | None = None,
        join_policy: str | None = None,
    ) -> None:
        active_settings = settings or AppSettings()
        self._settings = active_settings
        self._registry = registry
        self._record_store: ExecutionRecordStore = record_store or InMemoryExecutionRecordStore()
        self._executor = task_executor or TaskExecutor(
            registry,
            prompt_builder=PromptContextBuilder(inject_context=active_settings.inject_context),
            timeout_seconds=active_settings.node_timeout_seconds,
        )
        self._conditions = condition_evaluator or ConditionEvaluator()
        self._hooks = hook_registry or WorkflowHookRegistry()
        self._retry_policy = retry_policy or PersistenceRetryPolicy(
            max_attempts=active_settings.persistence_retry_attempts,
            backoff_seconds=active_settings.persistence_retry_backoff_seconds,
        )
        self._start_policy = start_policy or active_settings.start_policy
        self._join_policy = join_policy or active_settings.join_policy
        if self._start_policy not in ALLOWED_START_POLICIES:
            raise ValueError(f"Unsupported start_policy '{self._start_policy}'. Use first or all.")
        if self._join_policy not in ALLOWED_JOIN_POLICIES:
            raise ValueError(f"Unsupported join_policy '{self._join_policy}'. Use all or first.")

    @property
    def hooks(self) -> WorkflowHookRegistry:
        return self._hooks

    @property
    def registry(self) -> TaskHandlerRegistry:
        return self._registry

    @property
    def record_store(self) -> ExecutionRecordStore:
        return self._record_store

    async def execute_document(
        self,
        document: Mapping[str, Any],
        options: ExecutionOptions | None = None,
    ) -> WorkflowExecutionResult:
        """Validate an editor-exported document, then execute it."""
        opts = options or ExecutionOptions()
        graph = GraphModel.from_document(document)
        try:
            validate_graph_or_raise(document)
        except GraphValidationError as exc:
            return await self._fail_before_start(
                graph=graph,
                options=opts,
                error=str(exc),
                diagnostics=[],
            )

        if opts.workflow_id is None and isinstance(document.get("id"), str) and document["id"]:
            opts = replace(opts, workflow_id=str(document["id"]))
        return await self.execute_workflow(graph.nodes, graph.edges, opts)

    async def execute_workflow(
        self,
        nodes: Iterable[Node],
        edges: Iterable[Edge],
        options: ExecutionOptions | None = None,
    ) -> WorkflowExecutionResult:
        opts = options or ExecutionOptions()
        graph = GraphModel(nodes, edges)

        diagnostics = analyze_graph(
            graph,
            registered_types=self._registry.task_types,
            start_policy=self._start_policy,
        )
        for item in diagnostics:
            if item.severity == "warning":
                LOGGER.warning("%s: %s", item.code, item.message)

        if graph.start_node() is None:
            return await self._fail_before_start(
                graph=graph,
                options=opts,
                error=NO_START_NODE_ERROR,
                diagnostics=diagnostics,
            )

        errors = [item for item in diagnostics if item.severity == "error"]
        if errors:
            return await self._fail_before_start(
                graph=graph,
                options=opts,
                error=f"Workflow graph is invalid:\n{render_diagnostics(errors)}",
                diagnostics=diagnostics,
            )

        return await self._execute(graph=graph, options=opts, diagnostics=diagnostics)

    async def fetch_results(self, execution_id: str) -> dict[str, TaskResult]:
        return await self._record_store.list_node_results(execution_id)

    def run(self, nodes: Iterable[Node], edges: Iterable[Edge], options: ExecutionOptions | None = None) -> WorkflowExecutionResult:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop and loop.is_running():
            raise RuntimeError(
                "WorkflowScheduler.run() cannot be called inside an active event loop. Use await execute_workflow()."
            )
        return asyncio.run(self.execute_workflow(nodes, edges, options))

    async def _execute(
        self,
        *,
        graph: GraphModel,
        options: ExecutionOptions,
        diagnostics: list[GraphDiagnostic],
    ) -> WorkflowExecutionResult:
        run = self._new_run(graph, options)
        state = _RunState(graph, self._join_policy)

        starts = graph.start_nodes()
        active = starts[:1] if self._start_policy == "first" else starts
        for node in active:
            state.enqueue(node.id)
        for node in starts[len(active):]:
            state.skip(node.id)

        LOGGER.info(
            "Starting workflow run %s (%s nodes, start: %s)",
            run.execution_id,
            len(graph),
            ", ".join(node.id for node in active),
        )
        await self._emit_hook(
            WorkflowEvent(
                event="before_run",
                execution_id=run.execution_id,
                workflow_id=run.workflow_id,
                status=run.status,
                details={
                    "user_id": run.user_id,
                    "total_nodes": run.total_nodes,
                    "start_nodes": [node.id for node in active],
                },
            )
        )

        try:
            await self._persist("create run record", self._record_store.create_run, run)

            while True:
                if options.cancel_event is not None and options.cancel_event.is_set():
                    LOGGER.info("Workflow run %s cancelled", run.execution_id)
                    run.error = CANCELLED_ERROR
                    break

                if not state.ready:
                    released = state.release_blocked()
                    if released is None:
                        break
                    LOGGER.warning(
                        "Node '%s' waits on a cyclic dependency; running it with the predecessors that finished.",
                        released,
                    )
                    continue

                node_id = state.ready.popleft()
                node = graph.node(node_id)
                if node is None:
                    raise WorkflowExecutionError(f"Node '{node_id}' was not found during execution.")

                await self._execute_node(node=node, run=run, state=state, options=options)

            run.end_time = utc_now_iso()
            self._apply_counts(run, state)
            if run.error == CANCELLED_ERROR:
                run.status = "failed"
            elif run.error_count == 0:
                run.status = "completed"
            else:
                run.status = "completed_with_errors"
                run.error = NODE_FAILURES_ERROR

            await self._persist("finalize run record", self._record_store.update_run, run.execution_id, self._final_patch(run))
        except Exception as exc:  # noqa: BLE001
            LOGGER.error("Workflow run %s failed: %s", run.execution_id, exc)
            run.end_time = utc_now_iso()
            self._apply_counts(run, state)
            run.status = "failed"
            run.error = str(exc) or exc.__class__.__name__
            await self._persist_failure(run)

        if run.nodes_executed < run.total_nodes and run.status != "failed":
            LOGGER.info(
                "Workflow run %s covered %s of %s nodes; skipped: %s",
                run.execution_id,
                run.nodes_executed,
                run.total_nodes,
                ", ".join(state.skipped) or "(none)",
            )

        LOGGER.info(
            "Workflow run %s finished with status %s (%s ok, %s failed)",
            run.execution_id,
            run.status,
            run.success_count,
            run.error_count,
        )
        await self._emit_hook(self._run_finished_event(run, state.skipped))

        return WorkflowExecutionResult(
            execution_id=run.execution_id,
            workflow_id=run.workflow_id,
            status=run.status,
            results=dict(state.results),
            run=run,
            error=run.error or None,
            skipped_nodes=list(state.skipped),
            diagnostics=diagnostics,
        )

    async def _execute_node(
        self,
        *,
        node: Node,
        run: ExecutionRun,
        state: _RunState,
        options: ExecutionOptions,
    ) -> None:
        LOGGER.info("Executing node: %s", node.display_name)
        await self._emit_hook(
            WorkflowEvent(
                event="before_node",
                execution_id=run.execution_id,
                workflow_id=run.workflow_id,
                node_id=node.id,
                label=node.display_name,
                details={"task_type": node.type},
            )
        )

        config = self._executor.build_config(node, api_key=options.completion_api_key)
        result = await self._executor.execute(config, state.results)
        result = result.with_metadata(execution_id=run.execution_id)

        state.results[node.id] = result
        state.executed.add(node.id)

        try:
            await self._persist(
                f"store result for node '{node.id}'",
                self._record_store.create_node_result,
                run.execution_id,
                node.id,
                result,
                workflow_id=run.workflow_id,
                user_id=run.user_id,
            )
        except PersistenceError as exc:
            # In-memory results stay authoritative for this run.
            LOGGER.error("%s", exc)

        self._apply_counts(run, state)
        try:
            await self._persist(
                "update run progress",
                self._record_store.update_run,
                run.execution_id,
                {
                    "nodes_executed": run.nodes_executed,
                    "success_count": run.success_count,
                    "error_count": run.error_count,
                },
            )
        except PersistenceError as exc:
            LOGGER.error("%s", exc)

        if not result.success:
            LOGGER.warning("Node '%s' failed: %s", node.id, result.error)
            await self._emit_hook(
                WorkflowEvent(
                    event="on_error",
                    execution_id=run.execution_id,
                    workflow_id=run.workflow_id,
                    node_id=node.id,
                    label=node.display_name,
                    status=result.outcome,
                    error=result.error,
                    result=result,
                )
            )

        await self._emit_hook(
            WorkflowEvent(
                event="after_node",
                execution_id=run.execution_id,
                workflow_id=run.workflow_id,
                node_id=node.id,
                label=node.display_name,
                status=result.outcome,
                error=result.error,
                result=result,
            )
        )

        outcome = result.outcome
        state.resolve_outgoing(node.id, lambda edge: self._conditions.is_traversable(edge, outcome))

    async def _fail_before_start(
        self,
        *,
        graph: GraphModel,
        options: ExecutionOptions,
        error: str,
        diagnostics: list[GraphDiagnostic],
    ) -> WorkflowExecutionResult:
        run = self._new_run(graph, options)
        run.status = "failed"
        run.error = error
        run.end_time = utc_now_iso()
        run.summary = ["Workflow execution failed"]
        LOGGER.error("Workflow run %s could not start: %s", run.execution_id, error)

        try:
            await self._persist("create run record", self._record_store.create_run, run)
        except PersistenceError as exc:
            LOGGER.error("%s", exc)

        await self._emit_hook(self._run_finished_event(run, []))
        return WorkflowExecutionResult(
            execution_id=run.execution_id,
            workflow_id=run.workflow_id,
            status=run.status,
            results={},
            run=run,
            error=error,
            diagnostics=diagnostics,
        )

    async def _persist_failure(self, run: ExecutionRun) -> None:
        run.summary = ["Workflow execution failed"]
        try:
            existing = await self._record_store.get_run(run.execution_id)
            if existing is None:
                await self._persist("create run record", self._record_store.create_run, run)
            else:
                await self._persist(
                    "record run failure",
                    self._record_store.update_run,
                    run.execution_id,
                    self._final_patch(run),
                )
        except Exception as exc:  # noqa: BLE001
            LOGGER.error("Failed to update workflow status: %s", exc)

    async def _persist(self, description: str, operation: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> Any:
        attempt = 0
        while True:
            attempt += 1
            try:
                return await operation(*args, **kwargs)
            except Exception as exc:  # noqa: BLE001
                decision = self._retry_policy.decide(error=exc, attempt=attempt)
                if decision.action == "retry":
                    LOGGER.warning("Could not %s (%s). %s", description, exc, decision.reason)
                    await asyncio.sleep(decision.delay_seconds)
                    continue
                raise PersistenceError(f"Could not {description}: {exc}") from exc

    async def _emit_hook(self, payload: WorkflowEvent) -> None:
        try:
            await self._hooks.emit(payload)
        except Exception:  # noqa: BLE001
            # Hooks should never break workflow execution.
            LOGGER.debug("Hook dispatch for %s raised", payload.event, exc_info=True)

    def _run_finished_event(self, run: ExecutionRun, skipped: list[str]) -> WorkflowEvent:
        return WorkflowEvent(
            event="after_run",
            execution_id=run.execution_id,
            workflow_id=run.workflow_id,
            status=run.status,
            error=run.error or None,
            details={
                "nodes_executed": run.nodes_executed,
                "total_nodes": run.total_nodes,
                "skipped_nodes": list(skipped),
            },
        )

    def _new_run(self, graph: GraphModel, options: ExecutionOptions) -> ExecutionRun:
        return ExecutionRun(
            execution_id=f"exec-{uuid.uuid4()}",
            workflow_id=options.workflow_id or f"wf-{uuid.uuid4()}",
            user_id=options.user_id or self._settings.default_user_id,
            start_time=utc_now_iso(),
            status="running",
            total_nodes=len(graph),
        )

    def _apply_counts(self, run: ExecutionRun, state: _RunState) -> None:
        run.results = dict(state.results)
        run.nodes_executed = len(state.executed)
        run.success_count = sum(1 for result in state.results.values() if result.success)
        run.error_count = sum(1 for result in state.results.values() if not result.success)
        run.summary = [result.summary for result in state.results.values()]

    def _final_patch(self, run: ExecutionRun) -> dict[str, object]:
        return {
            "end_time": run.end_time,
            "status": run.status,
            "results": run.results,
            "summary": run.summary,
            "nodes_executed": run.nodes_executed,
            "success_count": run.success_count,
            "error_count": run.error_count,
            "error": run.error,
        }
