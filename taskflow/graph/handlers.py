from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Protocol

from taskflow.ai_models import resolve_generation_params
from taskflow.graph.models import DEFAULT_TASK_TYPE, TaskConfig, TaskResult
from taskflow.llm_client import CompletionProvider, CompletionRequest
from taskflow.settings import AppSettings


LOGGER = logging.getLogger(__name__)


class TaskHandler(Protocol):
    async def execute(
        self,
        config: TaskConfig,
        previous_results: Mapping[str, TaskResult],
    ) -> TaskResult: ...


class TaskHandlerRegistry:
    """Maps node task types to the handlers that execute them."""

    def __init__(self, handlers: Mapping[str, TaskHandler] | None = None) -> None:
        self._handlers: dict[str, TaskHandler] = dict(handlers or {})

    def register(self, task_type: str, handler: TaskHandler) -> None:
        if not task_type:
            raise ValueError("Task type must be a non-empty string.")
        if task_type in self._handlers:
            LOGGER.debug("Replacing handler for task type '%s'", task_type)
        self._handlers[task_type] = handler

    def unregister(self, task_type: str) -> None:
        self._handlers.pop(task_type, None)

    def get(self, task_type: str) -> TaskHandler | None:
        return self._handlers.get(task_type)

    def __contains__(self, task_type: object) -> bool:
        return task_type in self._handlers

    @property
    def task_types(self) -> list[str]:
        return sorted(self._handlers)


class AITaskHandler:
    """Runs an ``aiTask`` node as a single language-model completion."""

    task_type = DEFAULT_TASK_TYPE

    def __init__(self, provider: CompletionProvider, settings: AppSettings | None = None) -> None:
        self._provider = provider
        self._settings = settings or AppSettings()

    async def execute(
        self,
        config: TaskConfig,
        previous_results: Mapping[str, TaskResult],
    ) -> TaskResult:
        _ = previous_results
        params = config.parameters
        model, max_tokens, temperature = resolve_generation_params(
            model=params.model,
            max_tokens=params.max_tokens,
            temperature=params.temperature,
            default_model=self._settings.default_model,
            default_max_tokens=self._settings.default_max_tokens,
            default_temperature=self._settings.default_temperature,
        )

        completion = await self._provider.complete(
            CompletionRequest(
                prompt=config.prompt,
                model=model,
                max_tokens=max_tokens,
                temperature=temperature,
                api_key=config.api_key or self._settings.api_key,
            )
        )
        return TaskResult.ok(
            node_id=config.node_id,
            text=completion.text,
            tokens=completion.total_tokens,
            model=completion.model or model,
            task_type=self.task_type,
        )


def build_default_registry(provider: CompletionProvider, settings: AppSettings | None = None) -> TaskHandlerRegistry:
    registry = TaskHandlerRegistry()
    registry.register(DEFAULT_TASK_TYPE, AITaskHandler(provider, settings))
    return registry
