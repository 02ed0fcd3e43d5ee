from taskflow.graph.conditions import ConditionEvaluator, normalize_condition
from taskflow.graph.diagnostics import GraphDiagnostic, analyze_graph, render_diagnostics
from taskflow.graph.graph_model import GraphModel
from taskflow.graph.handlers import AITaskHandler, TaskHandler, TaskHandlerRegistry, build_default_registry
from taskflow.graph.hooks import HOOK_EVENTS, WorkflowEvent, WorkflowHookRegistry
from taskflow.graph.models import (
    Edge,
    ExecutionRun,
    Node,
    NodeResultRecord,
    TaskConfig,
    TaskData,
    TaskMetadata,
    TaskParameters,
    TaskResult,
)
from taskflow.graph.prompt_context import PromptContextBuilder
from taskflow.graph.record_store import (
    ExecutionRecordStore,
    InMemoryExecutionRecordStore,
    PersistenceError,
    SQLiteExecutionRecordStore,
)
from taskflow.graph.retry import PersistenceRetryPolicy, RetryDecision
from taskflow.graph.scheduler import (
    ExecutionOptions,
    WorkflowExecutionError,
    WorkflowExecutionResult,
    WorkflowScheduler,
)
from taskflow.graph.schema import GraphValidationError, validate_graph_definition, validate_graph_or_raise
from taskflow.graph.task_executor import TaskExecutor

__all__ = [
    "AITaskHandler",
    "ConditionEvaluator",
    "Edge",
    "ExecutionOptions",
    "ExecutionRecordStore",
    "ExecutionRun",
    "GraphDiagnostic",
    "GraphModel",
    "GraphValidationError",
    "HOOK_EVENTS",
    "InMemoryExecutionRecordStore",
    "Node",
    "NodeResultRecord",
    "PersistenceError",
    "PersistenceRetryPolicy",
    "PromptContextBuilder",
    "RetryDecision",
    "SQLiteExecutionRecordStore",
    "TaskConfig",
    "TaskData",
    "TaskExecutor",
    "TaskHandler",
    "TaskHandlerRegistry",
    "TaskMetadata",
    "TaskParameters",
    "TaskResult",
    "WorkflowEvent",
    "WorkflowExecutionError",
    "WorkflowExecutionResult",
    "WorkflowHookRegistry",
    "WorkflowScheduler",
    "analyze_graph",
    "build_default_registry",
    "normalize_condition",
    "render_diagnostics",
    "validate_graph_definition",
    "validate_graph_or_raise",
]
