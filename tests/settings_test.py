from __future__ import annotations

import os
import unittest
from pathlib import Path
from tempfile import TemporaryDirectory
from unittest.mock import patch

from taskflow.settings import AppSettings, load_settings


class LoadSettingsTests(unittest.TestCase):
    def test_defaults(self) -> None:
        with TemporaryDirectory() as tmp_dir:
            db_path = Path(tmp_dir) / "nested" / "taskflow.db"
            with patch.dict(os.environ, {"TASKFLOW_SQLITE_PATH": str(db_path)}, clear=True), patch(
                "taskflow.settings.load_dotenv"
            ):
                settings = load_settings()

            self.assertEqual(settings.provider, "openai")
            self.assertEqual(settings.default_model, "gpt-4o-mini")
            self.assertEqual(settings.default_max_tokens, 4000)
            self.assertEqual(settings.default_temperature, 0.7)
            self.assertIsNone(settings.node_timeout_seconds)
            self.assertEqual(settings.start_policy, "first")
            self.assertEqual(settings.join_policy, "all")
            self.assertTrue(settings.inject_context)
            self.assertEqual(settings.default_user_id, "local")
            self.assertTrue(db_path.parent.is_dir())

    def test_environment_overrides(self) -> None:
        with TemporaryDirectory() as tmp_dir:
            env = {
                "TASKFLOW_SQLITE_PATH": str(Path(tmp_dir) / "taskflow.db"),
                "TASKFLOW_PROVIDER": "OpenRouter",
                "OPENROUTER_API_KEY": "or-key",
                "MAX_TOKENS": "512",
                "DEFAULT_TEMPERATURE": "0",
                "NODE_TIMEOUT_SECONDS": "30",
                "TASKFLOW_START_POLICY": "all",
                "TASKFLOW_JOIN_POLICY": "first",
                "TASKFLOW_INJECT_CONTEXT": "false",
                "TASKFLOW_USER_ID": "alice",
            }
            with patch.dict(os.environ, env, clear=True), patch("taskflow.settings.load_dotenv"):
                settings = load_settings()

        self.assertEqual(settings.provider, "openrouter")
        self.assertEqual(settings.api_key, "or-key")
        self.assertEqual(settings.base_url, "https://openrouter.ai/api/v1")
        self.assertEqual(settings.default_max_tokens, 512)
        self.assertEqual(settings.default_temperature, 0.0)
        self.assertEqual(settings.node_timeout_seconds, 30.0)
        self.assertEqual(settings.start_policy, "all")
        self.assertEqual(settings.join_policy, "first")
        self.assertFalse(settings.inject_context)
        self.assertEqual(settings.default_user_id, "alice")

    def test_invalid_values_fall_back_to_defaults(self) -> None:
        with TemporaryDirectory() as tmp_dir:
            env = {
                "TASKFLOW_SQLITE_PATH": str(Path(tmp_dir) / "taskflow.db"),
                "TASKFLOW_PROVIDER": "mystery",
                "MAX_TOKENS": "lots",
                "NODE_TIMEOUT_SECONDS": "-5",
                "TASKFLOW_JOIN_POLICY": "whenever",
            }
            with patch.dict(os.environ, env, clear=True), patch("taskflow.settings.load_dotenv"):
                settings = load_settings()

        self.assertEqual(settings.provider, "openai")
        self.assertEqual(settings.default_max_tokens, 4000)
        self.assertIsNone(settings.node_timeout_seconds)
        self.assertEqual(settings.join_policy, "all")

    def test_provider_selects_credentials(self) -> None:
        self.assertEqual(AppSettings(openai_api_key="sk").api_key, "sk")
        self.assertIsNone(AppSettings(provider="ollama", openai_api_key="sk").api_key)
        self.assertEqual(AppSettings(provider="ollama").base_url, "http://localhost:11434")


if __name__ == "__main__":
    unittest.main()
