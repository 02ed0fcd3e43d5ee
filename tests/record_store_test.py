from __future__ import annotations

import asyncio
import unittest
from pathlib import Path
from tempfile import TemporaryDirectory

from taskflow.graph.models import ExecutionRun, TaskResult
from taskflow.graph.record_store import (
    InMemoryExecutionRecordStore,
    PersistenceError,
    SQLiteExecutionRecordStore,
)


def _run(execution_id: str, *, workflow_id: str = "wf-1", user_id: str = "u1", start_time: str) -> ExecutionRun:
    return ExecutionRun(
        execution_id=execution_id,
        workflow_id=workflow_id,
        user_id=user_id,
        start_time=start_time,
        total_nodes=2,
    )


class SQLiteRecordStoreTests(unittest.TestCase):
    def test_run_lifecycle_round_trip(self) -> None:
        with TemporaryDirectory() as tmp_dir:
            store = SQLiteExecutionRecordStore(db_path=Path(tmp_dir) / "records" / "taskflow.db")
            ok = TaskResult.ok(node_id="a", text="hello", tokens=9, model="gpt-4o-mini").with_metadata(
                execution_id="exec-1",
                prompt="Say hello",
                duration_ms=12,
            )
            failed = TaskResult.failure(node_id="b", error="boom").with_metadata(execution_id="exec-1")

            async def scenario():
                await store.create_run(_run("exec-1", start_time="2026-01-01T00:00:00+00:00"))
                await store.create_node_result("exec-1", "a", ok, workflow_id="wf-1", user_id="u1")
                await store.create_node_result("exec-1", "b", failed, workflow_id="wf-1", user_id="u1")
                await store.update_run(
                    "exec-1",
                    {
                        "status": "completed_with_errors",
                        "end_time": "2026-01-01T00:00:05+00:00",
                        "nodes_executed": 2,
                        "success_count": 1,
                        "error_count": 1,
                        "error": "Some nodes failed to execute",
                        "results": {"a": ok, "b": failed},
                        "summary": ["hello", "boom"],
                    },
                )
                return (
                    await store.get_run("exec-1"),
                    await store.list_node_results("exec-1"),
                    await store.list_node_records("exec-1"),
                )

            run, results, records = asyncio.run(scenario())

            self.assertEqual(run.status, "completed_with_errors")
            self.assertEqual((run.nodes_executed, run.success_count, run.error_count), (2, 1, 1))
            self.assertEqual(run.summary, ["hello", "boom"])
            self.assertEqual(run.results["a"].data.text, "hello")
            self.assertEqual(list(results), ["a", "b"])
            self.assertEqual(results["a"], ok)
            self.assertEqual(results["b"].error, "boom")
            self.assertEqual([record.status for record in records], ["success", "error"])
            self.assertEqual(records[1].error, "boom")
            self.assertEqual(records[0].summary, "hello")

    def test_list_runs_filters_and_orders_newest_first(self) -> None:
        with TemporaryDirectory() as tmp_dir:
            store = SQLiteExecutionRecordStore(db_path=Path(tmp_dir) / "taskflow.db")

            async def scenario():
                await store.create_run(_run("exec-1", start_time="2026-01-01T00:00:00+00:00"))
                await store.create_run(_run("exec-2", start_time="2026-01-02T00:00:00+00:00"))
                await store.create_run(_run("exec-3", workflow_id="wf-2", user_id="u2", start_time="2026-01-03T00:00:00+00:00"))
                return (
                    await store.list_runs(),
                    await store.list_runs(workflow_id="wf-1"),
                    await store.list_runs(user_id="u2"),
                    await store.list_runs(limit=1),
                )

            everything, wf1, user2, newest = asyncio.run(scenario())
            self.assertEqual([run.execution_id for run in everything], ["exec-3", "exec-2", "exec-1"])
            self.assertEqual([run.execution_id for run in wf1], ["exec-2", "exec-1"])
            self.assertEqual([run.execution_id for run in user2], ["exec-3"])
            self.assertEqual([run.execution_id for run in newest], ["exec-3"])

    def test_errors_surface_as_persistence_errors(self) -> None:
        with TemporaryDirectory() as tmp_dir:
            store = SQLiteExecutionRecordStore(db_path=Path(tmp_dir) / "taskflow.db")
            run = _run("exec-1", start_time="2026-01-01T00:00:00+00:00")
            asyncio.run(store.create_run(run))
            with self.assertRaises(PersistenceError):
                asyncio.run(store.create_run(run))
            with self.assertRaises(PersistenceError):
                asyncio.run(store.update_run("missing", {"status": "failed"}))
            with self.assertRaises(ValueError):
                asyncio.run(store.update_run("exec-1", {"workflow_id": "other"}))
            self.assertIsNone(asyncio.run(store.get_run("missing")))
            self.assertEqual(asyncio.run(store.list_node_results("missing")), {})

    def test_data_survives_reopen(self) -> None:
        with TemporaryDirectory() as tmp_dir:
            db_path = Path(tmp_dir) / "taskflow.db"
            first = SQLiteExecutionRecordStore(db_path=db_path)
            asyncio.run(first.create_run(_run("exec-1", start_time="2026-01-01T00:00:00+00:00")))

            second = SQLiteExecutionRecordStore(db_path=db_path)
            run = asyncio.run(second.get_run("exec-1"))
            self.assertEqual(run.status, "running")
            self.assertEqual(run.total_nodes, 2)


class InMemoryRecordStoreTests(unittest.TestCase):
    def test_update_and_duplicate_checks(self) -> None:
        store = InMemoryExecutionRecordStore()
        run = _run("exec-1", start_time="2026-01-01T00:00:00+00:00")

        async def scenario():
            await store.create_run(run)
            await store.update_run("exec-1", {"status": "completed", "nodes_executed": 2})
            return await store.get_run("exec-1")

        stored = asyncio.run(scenario())
        self.assertEqual(stored.status, "completed")
        self.assertEqual(run.status, "running")
        with self.assertRaises(PersistenceError):
            asyncio.run(store.create_run(run))
        with self.assertRaises(PersistenceError):
            asyncio.run(store.update_run("missing", {"status": "failed"}))


if __name__ == "__main__":
    unittest.main()
