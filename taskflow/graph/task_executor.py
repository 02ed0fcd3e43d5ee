from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping
from dataclasses import replace

from taskflow.graph.handlers import TaskHandlerRegistry
from taskflow.graph.models import Node, TaskConfig, TaskResult, utc_now_iso
from taskflow.graph.prompt_context import PromptContextBuilder


LOGGER = logging.getLogger(__name__)


class TaskExecutor:
    """Runs one node through its registered handler and normalizes the outcome.

    Every path returns a ``TaskResult``; handler and provider exceptions become
    ``success=False`` results. ``metadata.execution_id`` is left for the
    scheduler to fill in.
    """

    def __init__(
        self,
        registry: TaskHandlerRegistry,
        *,
        prompt_builder: PromptContextBuilder | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        self._registry = registry
        self._prompt_builder = prompt_builder or PromptContextBuilder()
        self._timeout_seconds = timeout_seconds if timeout_seconds and timeout_seconds > 0 else None

    @property
    def registry(self) -> TaskHandlerRegistry:
        return self._registry

    @property
    def prompt_builder(self) -> PromptContextBuilder:
        return self._prompt_builder

    def build_config(self, node: Node, *, api_key: str | None = None) -> TaskConfig:
        return TaskConfig(
            type=node.type,
            node_id=node.id,
            parameters=node.parameters,
            api_key=api_key,
        )

    async def execute(
        self,
        config: TaskConfig,
        previous_results: Mapping[str, TaskResult],
    ) -> TaskResult:
        handler = self._registry.get(config.type)
        if handler is None:
            return TaskResult.failure(
                node_id=config.node_id,
                error=f"No handler for task type: {config.type}",
                task_type=config.type,
            )

        node = Node(id=config.node_id, type=config.type, parameters=config.parameters)
        prompt = self._prompt_builder.build(node, previous_results)
        effective = replace(config, prompt=prompt)

        started = time.perf_counter()
        try:
            if self._timeout_seconds is None:
                result = await handler.execute(effective, previous_results)
            else:
                result = await asyncio.wait_for(
                    handler.execute(effective, previous_results),
                    timeout=self._timeout_seconds,
                )
            if not isinstance(result, TaskResult):
                raise TypeError(
                    f"Handler for task type '{config.type}' returned {type(result).__name__}, expected TaskResult."
                )
        except TimeoutError as exc:
            # Handlers and provider clients raise TimeoutError on their own too.
            if self._timeout_seconds is None:
                message = str(exc) or "Task timed out"
            else:
                message = f"Task timed out after {self._timeout_seconds:.1f}s."
            LOGGER.warning("Task '%s' (%s) timed out: %s", config.node_id, config.type, message)
            result = TaskResult.failure(
                node_id=config.node_id,
                error=message,
                task_type=config.type,
            )
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("Task '%s' (%s) failed: %s", config.node_id, config.type, exc)
            result = TaskResult.failure(
                node_id=config.node_id,
                error=str(exc) or exc.__class__.__name__,
                task_type=config.type,
            )

        duration_ms = int((time.perf_counter() - started) * 1000)
        return result.with_metadata(
            node_id=config.node_id,
            timestamp=utc_now_iso(),
            task_type=result.metadata.task_type or config.type,
            prompt=prompt,
            duration_ms=duration_ms,
        )
