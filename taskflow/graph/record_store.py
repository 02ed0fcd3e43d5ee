from __future__ import annotations

import asyncio
import json
import sqlite3
from collections.abc import Mapping
from dataclasses import fields, replace
from pathlib import Path
from typing import Protocol

from taskflow.graph.models import ExecutionRun, NodeResultRecord, TaskResult, utc_now_iso


RUN_PATCH_FIELDS = {
    item.name for item in fields(ExecutionRun) if item.name not in {"execution_id", "workflow_id", "user_id"}
}


class PersistenceError(RuntimeError):
    """Raised when the execution record store cannot complete a read or write."""


class ExecutionRecordStore(Protocol):
    async def create_run(self, run: ExecutionRun) -> None: ...

    async def update_run(self, execution_id: str, patch: Mapping[str, object]) -> None: ...

    async def create_node_result(
        self,
        execution_id: str,
        node_id: str,
        result: TaskResult,
        *,
        workflow_id: str,
        user_id: str,
    ) -> None: ...

    async def list_node_results(self, execution_id: str) -> dict[str, TaskResult]: ...

    async def get_run(self, execution_id: str) -> ExecutionRun | None: ...

    async def list_runs(
        self,
        *,
        workflow_id: str | None = None,
        user_id: str | None = None,
        limit: int = 50,
    ) -> list[ExecutionRun]: ...


def _check_patch(patch: Mapping[str, object]) -> None:
    unknown = sorted(set(patch) - RUN_PATCH_FIELDS)
    if unknown:
        raise ValueError(f"Unsupported run fields in patch: {', '.join(unknown)}.")


class InMemoryExecutionRecordStore:
    """Process-local record store, used for dry runs and tests."""

    def __init__(self) -> None:
        self._runs: dict[str, ExecutionRun] = {}
        self._node_results: list[NodeResultRecord] = []

    async def create_run(self, run: ExecutionRun) -> None:
        if run.execution_id in self._runs:
            raise PersistenceError(f"Run '{run.execution_id}' already exists.")
        self._runs[run.execution_id] = replace(run, summary=list(run.summary), results=dict(run.results))

    async def update_run(self, execution_id: str, patch: Mapping[str, object]) -> None:
        _check_patch(patch)
        run = self._runs.get(execution_id)
        if run is None:
            raise PersistenceError(f"Run '{execution_id}' was not found.")
        self._runs[execution_id] = replace(run, **dict(patch))

    async def create_node_result(
        self,
        execution_id: str,
        node_id: str,
        result: TaskResult,
        *,
        workflow_id: str,
        user_id: str,
    ) -> None:
        self._node_results.append(
            NodeResultRecord(
                execution_id=execution_id,
                workflow_id=workflow_id,
                user_id=user_id,
                node_id=node_id,
                status=result.outcome,
                result=result,
                summary=result.summary,
                error=result.error or "",
                created_at=utc_now_iso(),
            )
        )

    async def list_node_results(self, execution_id: str) -> dict[str, TaskResult]:
        return {
            record.node_id: record.result
            for record in self._node_results
            if record.execution_id == execution_id
        }

    async def get_run(self, execution_id: str) -> ExecutionRun | None:
        return self._runs.get(execution_id)

    async def list_runs(
        self,
        *,
        workflow_id: str | None = None,
        user_id: str | None = None,
        limit: int = 50,
    ) -> list[ExecutionRun]:
        runs = [
            run
            for run in self._runs.values()
            if (workflow_id is None or run.workflow_id == workflow_id)
            and (user_id is None or run.user_id == user_id)
        ]
        runs.sort(key=lambda run: run.start_time, reverse=True)
        return runs[: max(1, limit)]


class SQLiteExecutionRecordStore:
    """SQLite persistence for workflow runs and per-node results."""

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS workflow_runs (
                    execution_id TEXT PRIMARY KEY,
                    workflow_id TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    name TEXT,
                    start_time TEXT NOT NULL,
                    end_time TEXT,
                    status TEXT NOT NULL,
                    total_nodes INTEGER NOT NULL DEFAULT 0,
                    nodes_executed INTEGER NOT NULL DEFAULT 0,
                    success_count INTEGER NOT NULL DEFAULT 0,
                    error_count INTEGER NOT NULL DEFAULT 0,
                    error TEXT NOT NULL DEFAULT '',
                    results_json TEXT,
                    summary_json TEXT,
                    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
                )
                """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS node_results (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    execution_id TEXT NOT NULL,
                    workflow_id TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    node_id TEXT NOT NULL,
                    status TEXT NOT NULL,
                    result_json TEXT NOT NULL,
                    summary TEXT NOT NULL DEFAULT '',
                    error TEXT NOT NULL DEFAULT '',
                    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
                )
                """
            )

            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_workflow_runs_workflow_started
                ON workflow_runs(workflow_id, start_time DESC)
                """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_node_results_execution
                ON node_results(execution_id, id ASC)
                """
            )
            conn.commit()

    async def create_run(self, run: ExecutionRun) -> None:
        await self._call(self._create_run_sync, run)

    async def update_run(self, execution_id: str, patch: Mapping[str, object]) -> None:
        _check_patch(patch)
        await self._call(self._update_run_sync, execution_id, dict(patch))

    async def create_node_result(
        self,
        execution_id: str,
        node_id: str,
        result: TaskResult,
        *,
        workflow_id: str,
        user_id: str,
    ) -> None:
        await self._call(self._create_node_result_sync, execution_id, node_id, result, workflow_id, user_id)

    async def list_node_results(self, execution_id: str) -> dict[str, TaskResult]:
        records = await self._call(self._list_node_records_sync, execution_id)
        return {record.node_id: record.result for record in records}

    async def list_node_records(self, execution_id: str) -> list[NodeResultRecord]:
        return await self._call(self._list_node_records_sync, execution_id)

    async def get_run(self, execution_id: str) -> ExecutionRun | None:
        return await self._call(self._get_run_sync, execution_id)

    async def list_runs(
        self,
        *,
        workflow_id: str | None = None,
        user_id: str | None = None,
        limit: int = 50,
    ) -> list[ExecutionRun]:
        return await self._call(self._list_runs_sync, workflow_id, user_id, limit)

    async def _call(self, func, *args):
        try:
            return await asyncio.to_thread(func, *args)
        except sqlite3.Error as exc:
            raise PersistenceError(f"Record store operation failed: {exc}") from exc

    def _create_run_sync(self, run: ExecutionRun) -> None:
        with self._connect() as conn:
            try:
                conn.execute(
                    """
                    INSERT INTO workflow_runs (
                        execution_id, workflow_id, user_id, name, start_time, end_time, status,
                        total_nodes, nodes_executed, success_count, error_count, error,
                        results_json, summary_json
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        run.execution_id,
                        run.workflow_id,
                        run.user_id,
                        f"Workflow Execution {run.execution_id}",
                        run.start_time,
                        run.end_time,
                        run.status,
                        run.total_nodes,
                        run.nodes_executed,
                        run.success_count,
                        run.error_count,
                        run.error,
                        self._dump_results(run.results),
                        self._dump(run.summary),
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise PersistenceError(f"Run '{run.execution_id}' already exists.") from exc
            conn.commit()

    def _update_run_sync(self, execution_id: str, patch: dict[str, object]) -> None:
        if not patch:
            return
        assignments: list[str] = []
        values: list[object] = []
        for key, value in patch.items():
            if key == "results":
                assignments.append("results_json = ?")
                values.append(self._dump_results(value))
            elif key == "summary":
                assignments.append("summary_json = ?")
                values.append(self._dump(value))
            else:
                assignments.append(f"{key} = ?")
                values.append(value)
        assignments.append("updated_at = CURRENT_TIMESTAMP")
        values.append(execution_id)

        with self._connect() as conn:
            cursor = conn.execute(
                f"UPDATE workflow_runs SET {', '.join(assignments)} WHERE execution_id = ?",
                values,
            )
            if cursor.rowcount == 0:
                raise PersistenceError(f"Run '{execution_id}' was not found.")
            conn.commit()

    def _create_node_result_sync(
        self,
        execution_id: str,
        node_id: str,
        result: TaskResult,
        workflow_id: str,
        user_id: str,
    ) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO node_results (
                    execution_id, workflow_id, user_id, node_id, status, result_json, summary, error
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    execution_id,
                    workflow_id,
                    user_id,
                    node_id,
                    result.outcome,
                    self._dump(result.to_dict()),
                    result.summary,
                    result.error or "",
                ),
            )
            conn.commit()

    def _list_node_records_sync(self, execution_id: str) -> list[NodeResultRecord]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT execution_id, workflow_id, user_id, node_id, status, result_json,
                       summary, error, created_at
                FROM node_results
                WHERE execution_id = ?
                ORDER BY id ASC
                """,
                (execution_id,),
            ).fetchall()
        return [self._row_to_node_record(row) for row in rows]

    def _get_run_sync(self, execution_id: str) -> ExecutionRun | None:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT execution_id, workflow_id, user_id, start_time, end_time, status, total_nodes,
                       nodes_executed, success_count, error_count, error, results_json, summary_json
                FROM workflow_runs
                WHERE execution_id = ?
                """,
                (execution_id,),
            ).fetchone()
        if not row:
            return None
        return self._row_to_run(row)

    def _list_runs_sync(self, workflow_id: str | None, user_id: str | None, limit: int) -> list[ExecutionRun]:
        clauses: list[str] = []
        params: list[object] = []
        if workflow_id is not None:
            clauses.append("workflow_id = ?")
            params.append(workflow_id)
        if user_id is not None:
            clauses.append("user_id = ?")
            params.append(user_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(max(1, limit))

        with self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT execution_id, workflow_id, user_id, start_time, end_time, status, total_nodes,
                       nodes_executed, success_count, error_count, error, results_json, summary_json
                FROM workflow_runs
                {where}
                ORDER BY start_time DESC
                LIMIT ?
                """,
                params,
            ).fetchall()
        return [self._row_to_run(row) for row in rows]

    def _row_to_run(self, row: sqlite3.Row) -> ExecutionRun:
        raw_results = self._load(row["results_json"])
        results: dict[str, TaskResult] = {}
        if isinstance(raw_results, dict):
            results = {
                str(node_id): TaskResult.from_dict(payload)
                for node_id, payload in raw_results.items()
                if isinstance(payload, dict)
            }
        summary = self._load(row["summary_json"])
        return ExecutionRun(
            execution_id=row["execution_id"],
            workflow_id=row["workflow_id"],
            user_id=row["user_id"],
            start_time=row["start_time"],
            end_time=row["end_time"],
            status=row["status"],
            total_nodes=int(row["total_nodes"] or 0),
            nodes_executed=int(row["nodes_executed"] or 0),
            success_count=int(row["success_count"] or 0),
            error_count=int(row["error_count"] or 0),
            error=row["error"] or "",
            summary=[str(item) for item in summary] if isinstance(summary, list) else [],
            results=results,
        )

    def _row_to_node_record(self, row: sqlite3.Row) -> NodeResultRecord:
        payload = self._load(row["result_json"])
        return NodeResultRecord(
            execution_id=row["execution_id"],
            workflow_id=row["workflow_id"],
            user_id=row["user_id"],
            node_id=row["node_id"],
            status=row["status"],
            result=TaskResult.from_dict(payload if isinstance(payload, dict) else {}),
            summary=row["summary"],
            error=row["error"],
            created_at=row["created_at"],
        )

    def _dump_results(self, results: object) -> str:
        if isinstance(results, Mapping):
            return self._dump(
                {
                    str(node_id): result.to_dict() if isinstance(result, TaskResult) else result
                    for node_id, result in results.items()
                }
            )
        return self._dump({})

    def _dump(self, value: object) -> str:
        return json.dumps(value, ensure_ascii=False)

    def _load(self, value: str | None) -> object:
        if value is None:
            return None
        return json.loads(value)
