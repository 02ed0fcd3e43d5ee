from __future__ import annotations

from taskflow.graph.models import DEFAULT_EDGE_CONDITION, EDGE_CONDITIONS, Edge, Outcome


def normalize_condition(condition: object) -> str:
    """Map a raw edge condition onto ``always`` / ``success`` / ``error``.

    Unset and unrecognized values fall back to ``always`` so that an edge drawn
    without an explicit condition is followed regardless of outcome.
    """
    if isinstance(condition, str):
        value = condition.strip().lower()
        if value in EDGE_CONDITIONS:
            return value
    return DEFAULT_EDGE_CONDITION


class ConditionEvaluator:
    """Decides whether an edge is followed after its source node finishes."""

    def is_traversable(self, edge: Edge, outcome: Outcome) -> bool:
        condition = normalize_condition(edge.condition)
        if condition == "always":
            return True
        return condition == outcome
