from __future__ import annotations

import inspect
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Literal

from taskflow.graph.models import TaskResult


LOGGER = logging.getLogger(__name__)

HookEvent = Literal["before_run", "after_run", "before_node", "after_node", "on_error"]
HOOK_EVENTS: frozenset[str] = frozenset({"before_run", "after_run", "before_node", "after_node", "on_error"})


@dataclass(frozen=True, slots=True)
class WorkflowEvent:
    """What an observer sees at one point of a run.

    Run-level events leave ``node_id`` and ``result`` unset. ``status`` is the
    run status on ``after_run`` and the node outcome on ``after_node``.
    """

    event: HookEvent
    execution_id: str
    workflow_id: str
    node_id: str | None = None
    label: str | None = None
    status: str | None = None
    error: str | None = None
    result: TaskResult | None = None
    details: dict[str, Any] = field(default_factory=dict)


HookCallback = Callable[[WorkflowEvent], object | Awaitable[object]]


class WorkflowHookRegistry:
    """Lifecycle callbacks for observing a workflow run.

    A callback that raises is logged and skipped; the remaining callbacks and
    the run itself carry on.
    """

    def __init__(self) -> None:
        self._callbacks: dict[str, list[HookCallback]] = defaultdict(list)

    def register(self, event: HookEvent, callback: HookCallback) -> None:
        if event not in HOOK_EVENTS:
            raise ValueError(f"Unknown hook event '{event}'. Use one of: {', '.join(sorted(HOOK_EVENTS))}.")
        self._callbacks[event].append(callback)

    def clear(self, event: HookEvent | None = None) -> None:
        if event is None:
            self._callbacks.clear()
            return
        self._callbacks.pop(event, None)

    async def emit(self, payload: WorkflowEvent) -> int:
        """Deliver ``payload`` to its callbacks; returns how many completed."""
        delivered = 0
        for callback in list(self._callbacks.get(payload.event, [])):
            try:
                outcome = callback(payload)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:  # noqa: BLE001
                name = getattr(callback, "__name__", callback.__class__.__name__)
                LOGGER.warning("Hook '%s' for %s failed", name, payload.event, exc_info=True)
                continue
            delivered += 1
        return delivered
