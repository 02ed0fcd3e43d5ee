from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Sequence

from rich.console import Console
from rich.table import Table

from taskflow.ai_models import AI_MODELS
from taskflow.engine import build_record_store, build_scheduler, load_workflow_document
from taskflow.graph.diagnostics import analyze_graph, has_errors, render_diagnostics
from taskflow.graph.graph_model import GraphModel
from taskflow.graph.models import DEFAULT_TASK_TYPE, ExecutionRun, TaskResult
from taskflow.graph.record_store import PersistenceError, SQLiteExecutionRecordStore
from taskflow.graph.scheduler import ExecutionOptions, WorkflowExecutionResult
from taskflow.graph.schema import validate_graph_definition
from taskflow.llm_client import OpenAIModelListError, list_openai_models
from taskflow.logging_utils import configure_logging
from taskflow.settings import ALLOWED_JOIN_POLICIES, ALLOWED_START_POLICIES, AppSettings, load_settings


LOGGER = logging.getLogger(__name__)

STATUS_STYLES = {
    "completed": "green",
    "completed_with_errors": "yellow",
    "failed": "red",
    "running": "cyan",
    "success": "green",
    "error": "red",
}


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="taskflow", description="Run AI task workflows.")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL for this invocation.")
    commands = parser.add_subparsers(dest="command", required=True)

    run_parser = commands.add_parser("run", help="Execute a workflow JSON file.")
    run_parser.add_argument("workflow", type=Path, help="Path to a JSON document with nodes and edges.")
    run_parser.add_argument("--user", default=None, help="User id recorded on the run.")
    run_parser.add_argument("--workflow-id", default=None, help="Workflow id recorded on the run.")
    run_parser.add_argument("--api-key", default=None, help="Completion API key for this run only.")
    run_parser.add_argument("--memory", action="store_true", help="Keep records in memory instead of SQLite.")
    run_parser.add_argument("--start-policy", choices=sorted(ALLOWED_START_POLICIES), default=None)
    run_parser.add_argument("--join-policy", choices=sorted(ALLOWED_JOIN_POLICIES), default=None)
    run_parser.add_argument("--json", action="store_true", help="Print the result map as JSON.")

    results_parser = commands.add_parser("results", help="Show stored node results for an execution.")
    results_parser.add_argument("execution_id")
    results_parser.add_argument("--json", action="store_true", help="Print the result map as JSON.")

    runs_parser = commands.add_parser("runs", help="List recent workflow runs.")
    runs_parser.add_argument("--workflow", default=None, help="Filter by workflow id.")
    runs_parser.add_argument("--user", default=None, help="Filter by user id.")
    runs_parser.add_argument("--limit", type=int, default=20)

    check_parser = commands.add_parser("check", help="Validate a workflow without running it.")
    check_parser.add_argument("workflow", type=Path)
    check_parser.add_argument("--start-policy", choices=sorted(ALLOWED_START_POLICIES), default=None)

    models_parser = commands.add_parser("models", help="List known model profiles.")
    models_parser.add_argument("--remote", action="store_true", help="Query the provider's model list.")
    return parser


def _status_text(status: str) -> str:
    style = STATUS_STYLES.get(status)
    return f"[{style}]{status}[/{style}]" if style else status


def _results_table(results: dict[str, TaskResult], *, title: str) -> Table:
    table = Table(title=title)
    table.add_column("Node")
    table.add_column("Status")
    table.add_column("Model")
    table.add_column("Tokens", justify="right")
    table.add_column("ms", justify="right")
    table.add_column("Output / error")
    for node_id, result in results.items():
        preview = result.text if result.success else result.error
        preview = (preview or "").replace("\n", " ")
        if len(preview) > 80:
            preview = preview[:77] + "..."
        table.add_row(
            node_id,
            _status_text(result.outcome),
            result.data.model if result.data else "-",
            str(result.data.tokens) if result.data else "-",
            str(result.metadata.duration_ms) if result.metadata.duration_ms is not None else "-",
            preview,
        )
    return table


def _print_run_result(console: Console, outcome: WorkflowExecutionResult) -> None:
    console.print(f"Execution: {outcome.execution_id}")
    console.print(f"Workflow:  {outcome.workflow_id}")
    console.print(f"Status:    {_status_text(outcome.status)}")
    if outcome.error:
        console.print(f"Error:     {outcome.error}")
    if outcome.results:
        console.print(_results_table(outcome.results, title="Node results"))
    if outcome.skipped_nodes:
        console.print(f"Skipped nodes: {', '.join(outcome.skipped_nodes)}")
    run = outcome.run
    console.print(
        f"{run.nodes_executed}/{run.total_nodes} nodes executed, "
        f"{run.success_count} succeeded, {run.error_count} failed."
    )


def _dump_results(results: dict[str, TaskResult]) -> str:
    return json.dumps({node_id: result.to_dict() for node_id, result in results.items()}, indent=2)


async def _cmd_run(args: argparse.Namespace, settings: AppSettings, console: Console) -> int:
    try:
        document = load_workflow_document(args.workflow)
    except (OSError, ValueError) as exc:
        console.print(f"[red]Could not read workflow:[/red] {exc}")
        return 2
    LOGGER.info("Loaded workflow from %s", args.workflow)

    overrides: dict[str, str] = {}
    if args.start_policy:
        overrides["start_policy"] = args.start_policy
    if args.join_policy:
        overrides["join_policy"] = args.join_policy
    active_settings = replace(settings, **overrides) if overrides else settings

    record_store = build_record_store(active_settings, persist=not args.memory)
    scheduler = build_scheduler(active_settings, record_store=record_store)
    outcome = await scheduler.execute_document(
        document,
        ExecutionOptions(
            completion_api_key=args.api_key,
            user_id=args.user,
            workflow_id=args.workflow_id,
        ),
    )

    if args.json:
        console.print_json(_dump_results(outcome.results))
    else:
        _print_run_result(console, outcome)
    if not outcome.ran:
        return 3
    return 0 if outcome.status == "completed" else 1


async def _cmd_results(args: argparse.Namespace, settings: AppSettings, console: Console) -> int:
    store = SQLiteExecutionRecordStore(db_path=settings.sqlite_path)
    try:
        run = await store.get_run(args.execution_id)
        results = await store.list_node_results(args.execution_id)
    except PersistenceError as exc:
        console.print(f"[red]{exc}[/red]")
        return 1

    if run is None and not results:
        console.print(f"No execution found with id '{args.execution_id}'.")
        return 1

    if args.json:
        console.print_json(_dump_results(results))
        return 0

    if run is not None:
        console.print(f"Workflow: {run.workflow_id}  User: {run.user_id}  Status: {_status_text(run.status)}")
        if run.error:
            console.print(f"Error: {run.error}")
        if not run.is_terminal:
            console.print("Run is still in progress; results may be incomplete.")
    if results:
        console.print(_results_table(results, title=f"Results for {args.execution_id}"))
    else:
        console.print("No node results were recorded.")
    return 0


def _runs_table(runs: list[ExecutionRun]) -> Table:
    table = Table(title="Workflow runs")
    table.add_column("Execution")
    table.add_column("Workflow")
    table.add_column("User")
    table.add_column("Status")
    table.add_column("Nodes", justify="right")
    table.add_column("Started")
    for run in runs:
        table.add_row(
            run.execution_id,
            run.workflow_id,
            run.user_id,
            _status_text(run.status),
            f"{run.nodes_executed}/{run.total_nodes}",
            run.start_time,
        )
    return table


async def _cmd_runs(args: argparse.Namespace, settings: AppSettings, console: Console) -> int:
    store = SQLiteExecutionRecordStore(db_path=settings.sqlite_path)
    try:
        runs = await store.list_runs(workflow_id=args.workflow, user_id=args.user, limit=max(1, args.limit))
    except PersistenceError as exc:
        console.print(f"[red]{exc}[/red]")
        return 1

    if not runs:
        console.print("No workflow runs recorded yet.")
        return 0
    console.print(_runs_table(runs))
    return 0


def _cmd_check(args: argparse.Namespace, settings: AppSettings, console: Console) -> int:
    try:
        document = load_workflow_document(args.workflow)
    except (OSError, ValueError) as exc:
        console.print(f"[red]Could not read workflow:[/red] {exc}")
        return 2

    errors = validate_graph_definition(document)
    if errors:
        console.print("[red]Workflow validation failed:[/red]")
        for item in errors:
            console.print(f"- {item}")
        return 1

    diagnostics = analyze_graph(
        GraphModel.from_document(document),
        registered_types=[DEFAULT_TASK_TYPE],
        start_policy=args.start_policy or settings.start_policy,
    )
    if not diagnostics:
        console.print("[green]Workflow looks good.[/green]")
        return 0
    console.print(render_diagnostics(diagnostics), markup=False)
    return 1 if has_errors(diagnostics) else 0


async def _cmd_models(args: argparse.Namespace, settings: AppSettings, console: Console) -> int:
    table = Table(title="Model profiles")
    table.add_column("Model")
    table.add_column("Label")
    table.add_column("Max tokens", justify="right")
    table.add_column("Temperature", justify="right")
    table.add_column("Description")
    for profile in AI_MODELS.values():
        table.add_row(
            profile.model_id,
            profile.label,
            str(profile.max_tokens),
            f"{profile.default_temperature:.1f}",
            profile.description,
        )
    console.print(table)

    if not args.remote:
        return 0
    if settings.provider == "ollama" or not settings.api_key:
        console.print("Remote model listing needs an OpenAI-compatible provider with an API key.")
        return 1
    try:
        remote = await list_openai_models(
            settings.api_key,
            base_url=settings.base_url,
            timeout_seconds=settings.llm_request_timeout_seconds,
        )
    except OpenAIModelListError as exc:
        console.print(f"[red]{exc}[/red]")
        return 1
    console.print("Available from provider:")
    for model_id in remote:
        console.print(f"- {model_id}")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    configure_logging(args.log_level)
    console = Console()

    try:
        settings = load_settings()
    except OSError as exc:
        console.print(f"[red]Could not prepare the data directory:[/red] {exc}")
        return 2

    if args.command == "check":
        return _cmd_check(args, settings, console)

    handlers = {
        "run": _cmd_run,
        "results": _cmd_results,
        "runs": _cmd_runs,
        "models": _cmd_models,
    }
    try:
        return asyncio.run(handlers[args.command](args, settings, console))
    except KeyboardInterrupt:
        console.print("\nInterrupted.")
        return 130


def run() -> None:
    sys.exit(main())
