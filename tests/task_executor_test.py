from __future__ import annotations

import asyncio
import unittest

from taskflow.ai_models import get_model_profile, resolve_generation_params
from taskflow.graph.handlers import AITaskHandler, TaskHandlerRegistry, build_default_registry
from taskflow.graph.models import Node, TaskParameters, TaskResult
from taskflow.graph.prompt_context import PromptContextBuilder
from taskflow.graph.task_executor import TaskExecutor
from taskflow.llm_client import (
    Completion,
    CompletionRequest,
    OpenAICompletionConfig,
    OpenAICompletionProvider,
)
from taskflow.settings import AppSettings


class _RecordingProvider:
    def __init__(self, text: str = "done", tokens: int = 42) -> None:
        self.text = text
        self.tokens = tokens
        self.requests: list[CompletionRequest] = []

    async def complete(self, request: CompletionRequest) -> Completion:
        self.requests.append(request)
        return Completion(text=self.text, total_tokens=self.tokens, model=request.model)


class _SlowHandler:
    async def execute(self, config, previous_results):
        await asyncio.sleep(1)
        return TaskResult.ok(node_id=config.node_id, text="late", tokens=0, model="m")


class _ClientTimeoutHandler:
    async def execute(self, config, previous_results):
        raise TimeoutError("read timed out")


class _BadReturnHandler:
    async def execute(self, config, previous_results):
        return {"text": "not a result"}


class _RaisingHandler:
    async def execute(self, config, previous_results):
        raise ValueError("handler blew up")


def _node(node_id: str = "n1", node_type: str = "aiTask", **params) -> Node:
    return Node(id=node_id, type=node_type, parameters=TaskParameters(**params))


class GenerationParamsTests(unittest.TestCase):
    def test_catalog_defaults_fill_unset_values(self) -> None:
        model, max_tokens, temperature = resolve_generation_params(
            model="gpt-4",
            max_tokens=None,
            temperature=None,
            default_model="gpt-4o-mini",
            default_max_tokens=4000,
            default_temperature=0.2,
        )
        self.assertEqual((model, max_tokens, temperature), ("gpt-4", 8192, 0.7))

    def test_unknown_model_uses_global_defaults_and_zero_temperature_is_kept(self) -> None:
        model, max_tokens, temperature = resolve_generation_params(
            model="local-llama",
            max_tokens=0,
            temperature=0,
            default_model="gpt-4o-mini",
            default_max_tokens=4000,
            default_temperature=0.7,
        )
        self.assertEqual((model, max_tokens, temperature), ("local-llama", 4000, 0.0))

    def test_profile_lookup(self) -> None:
        self.assertEqual(get_model_profile("gpt-4-turbo").max_tokens, 128000)
        self.assertIsNone(get_model_profile("unknown"))
        self.assertIsNone(get_model_profile(None))


class AITaskHandlerTests(unittest.TestCase):
    def test_defaults_resolved_and_tokens_reported(self) -> None:
        provider = _RecordingProvider(text="summary", tokens=17)
        executor = TaskExecutor(build_default_registry(provider, AppSettings(openai_api_key="sk-env")))

        result = asyncio.run(executor.execute(executor.build_config(_node(prompt="Summarize")), {}))

        self.assertTrue(result.success)
        self.assertEqual(result.data.text, "summary")
        self.assertEqual(result.data.tokens, 17)
        self.assertEqual(result.data.model, "gpt-4o-mini")
        request = provider.requests[0]
        self.assertEqual(request.max_tokens, 4096)
        self.assertEqual(request.temperature, 0.7)
        self.assertEqual(request.api_key, "sk-env")
        self.assertEqual(result.metadata.task_type, "aiTask")

    def test_run_key_overrides_configured_key(self) -> None:
        provider = _RecordingProvider()
        handler = AITaskHandler(provider, AppSettings(openai_api_key="sk-env"))
        executor = TaskExecutor(TaskHandlerRegistry({"aiTask": handler}))

        config = executor.build_config(_node(prompt="Go", model="gpt-4", max_tokens=100, temperature=0), api_key="sk-run")
        asyncio.run(executor.execute(config, {}))

        request = provider.requests[0]
        self.assertEqual(request.api_key, "sk-run")
        self.assertEqual((request.model, request.max_tokens, request.temperature), ("gpt-4", 100, 0.0))

    def test_missing_api_key_becomes_failed_result(self) -> None:
        provider = OpenAICompletionProvider(OpenAICompletionConfig(api_key=None))
        executor = TaskExecutor(build_default_registry(provider, AppSettings()))

        result = asyncio.run(executor.execute(executor.build_config(_node(prompt="Hi")), {}))

        self.assertFalse(result.success)
        self.assertEqual(result.error, "OpenAI API key is not configured")
        self.assertIsNone(result.data)


class TaskExecutorTests(unittest.TestCase):
    def test_missing_handler(self) -> None:
        executor = TaskExecutor(TaskHandlerRegistry())
        result = asyncio.run(executor.execute(executor.build_config(_node(node_type="webhook")), {}))
        self.assertFalse(result.success)
        self.assertEqual(result.error, "No handler for task type: webhook")
        self.assertEqual(result.metadata.node_id, "n1")

    def test_handler_exception_is_normalized(self) -> None:
        executor = TaskExecutor(TaskHandlerRegistry({"aiTask": _RaisingHandler()}))
        result = asyncio.run(executor.execute(executor.build_config(_node(prompt="x")), {}))
        self.assertFalse(result.success)
        self.assertEqual(result.error, "handler blew up")
        self.assertEqual(result.metadata.prompt, "x")
        self.assertIsNotNone(result.metadata.duration_ms)

    def test_non_result_return_is_a_failure(self) -> None:
        executor = TaskExecutor(TaskHandlerRegistry({"aiTask": _BadReturnHandler()}))
        result = asyncio.run(executor.execute(executor.build_config(_node()), {}))
        self.assertFalse(result.success)
        self.assertIn("expected TaskResult", result.error)

    def test_timeout(self) -> None:
        executor = TaskExecutor(TaskHandlerRegistry({"aiTask": _SlowHandler()}), timeout_seconds=0.01)
        result = asyncio.run(executor.execute(executor.build_config(_node()), {}))
        self.assertFalse(result.success)
        self.assertTrue(result.error.startswith("Task timed out after"))

    def test_handler_timeout_without_node_timeout_is_a_failure(self) -> None:
        executor = TaskExecutor(TaskHandlerRegistry({"aiTask": _ClientTimeoutHandler()}))
        result = asyncio.run(executor.execute(executor.build_config(_node()), {}))
        self.assertFalse(result.success)
        self.assertEqual(result.error, "read timed out")

    def test_bare_timeout_gets_default_message(self) -> None:
        class _BareTimeoutHandler:
            async def execute(self, config, previous_results):
                raise TimeoutError()

        executor = TaskExecutor(TaskHandlerRegistry({"aiTask": _BareTimeoutHandler()}))
        result = asyncio.run(executor.execute(executor.build_config(_node()), {}))
        self.assertEqual(result.error, "Task timed out")

    def test_effective_prompt_recorded_in_metadata(self) -> None:
        provider = _RecordingProvider()
        executor = TaskExecutor(
            build_default_registry(provider, AppSettings(openai_api_key="k")),
            prompt_builder=PromptContextBuilder(inject_context=False),
        )
        upstream = {"a": TaskResult.ok(node_id="a", text="facts", tokens=1, model="m")}

        result = asyncio.run(executor.execute(executor.build_config(_node("b", prompt="Use {{a}}")), upstream))

        self.assertEqual(provider.requests[0].prompt, "Use facts")
        self.assertEqual(result.metadata.prompt, "Use facts")
        self.assertEqual(result.metadata.node_id, "b")
        self.assertTrue(result.metadata.timestamp)


class HandlerRegistryTests(unittest.TestCase):
    def test_register_and_unregister(self) -> None:
        registry = TaskHandlerRegistry()
        handler = _RaisingHandler()
        registry.register("webhook", handler)
        registry.register("aiTask", handler)
        self.assertIn("webhook", registry)
        self.assertEqual(registry.task_types, ["aiTask", "webhook"])
        self.assertIs(registry.get("webhook"), handler)
        registry.unregister("webhook")
        self.assertIsNone(registry.get("webhook"))
        with self.assertRaises(ValueError):
            registry.register("", handler)


if __name__ == "__main__":
    unittest.main()
