from __future__ import annotations

import asyncio
import json
import os
import unittest
from pathlib import Path
from tempfile import TemporaryDirectory
from unittest.mock import patch

from taskflow.cli import main
from taskflow.graph.record_store import SQLiteExecutionRecordStore


WORKFLOW = {
    "id": "digest",
    "nodes": [
        {"id": "collect", "type": "aiTask", "data": {"label": "Collect", "parameters": {"prompt": "List news"}}},
        {"id": "fallback", "type": "aiTask", "data": {"parameters": {"prompt": "Apologize"}}},
    ],
    "edges": [{"id": "e1", "source": "collect", "target": "fallback", "condition": "error"}],
}


class CommandLineTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = TemporaryDirectory()
        self.tmp_path = Path(self._tmp.name)
        self.db_path = self.tmp_path / "taskflow.db"
        self.env = patch.dict(
            os.environ,
            {"TASKFLOW_SQLITE_PATH": str(self.db_path), "LOG_LEVEL": "ERROR"},
            clear=True,
        )
        self.env.start()
        self.dotenv = patch("taskflow.settings.load_dotenv")
        self.dotenv.start()

    def tearDown(self) -> None:
        self.dotenv.stop()
        self.env.stop()
        self._tmp.cleanup()

    def _write(self, payload: dict) -> Path:
        path = self.tmp_path / "workflow.json"
        path.write_text(json.dumps(payload), encoding="utf-8")
        return path

    def test_check_accepts_valid_workflow(self) -> None:
        self.assertEqual(main(["check", str(self._write(WORKFLOW))]), 0)

    def test_check_rejects_cycle_without_start(self) -> None:
        payload = {
            "nodes": [{"id": "a"}, {"id": "b"}],
            "edges": [{"source": "a", "target": "b"}, {"source": "b", "target": "a"}],
        }
        self.assertEqual(main(["check", str(self._write(payload))]), 1)

    def test_missing_file_is_reported(self) -> None:
        self.assertEqual(main(["run", str(self.tmp_path / "absent.json")]), 2)

    def test_run_without_credentials_routes_error_branch_and_persists(self) -> None:
        exit_code = main(["run", str(self._write(WORKFLOW)), "--user", "cli-user"])
        self.assertEqual(exit_code, 1)

        store = SQLiteExecutionRecordStore(db_path=self.db_path)
        runs = asyncio.run(store.list_runs(workflow_id="digest"))
        self.assertEqual(len(runs), 1)
        self.assertEqual(runs[0].user_id, "cli-user")
        self.assertEqual(runs[0].status, "completed_with_errors")
        results = asyncio.run(store.list_node_results(runs[0].execution_id))
        self.assertEqual(list(results), ["collect", "fallback"])
        self.assertEqual(results["collect"].error, "OpenAI API key is not configured")

        self.assertEqual(main(["results", runs[0].execution_id]), 0)
        self.assertEqual(main(["runs", "--workflow", "digest"]), 0)

    def test_run_that_cannot_start_has_distinct_exit_code(self) -> None:
        self.assertEqual(main(["run", str(self._write({"nodes": 5, "edges": []})), "--memory"]), 3)

    def test_results_for_unknown_execution(self) -> None:
        self.assertEqual(main(["results", "exec-missing"]), 1)

    def test_models_lists_catalog(self) -> None:
        self.assertEqual(main(["models"]), 0)


if __name__ == "__main__":
    unittest.main()
