from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Literal

from taskflow.graph.graph_model import GraphModel
from taskflow.graph.models import EDGE_CONDITIONS
from taskflow.graph.prompt_context import PromptContextBuilder


DiagnosticSeverity = Literal["error", "warning", "info"]


@dataclass(slots=True)
class GraphDiagnostic:
    code: str
    severity: DiagnosticSeverity
    message: str
    node_id: str | None = None
    edge_id: str | None = None
    hint: str | None = None


def analyze_graph(
    graph: GraphModel,
    *,
    registered_types: Iterable[str] | None = None,
    start_policy: str = "first",
) -> list[GraphDiagnostic]:
    """Static pre-flight checks run before a workflow is scheduled."""
    diagnostics: list[GraphDiagnostic] = []

    if len(graph) == 0:
        diagnostics.append(
            GraphDiagnostic(
                code="GRAPH_EMPTY",
                severity="error",
                message="Workflow does not contain any nodes.",
                hint="Add at least one task node.",
            )
        )
        return diagnostics

    counts = Counter(node.id for node in graph.nodes)
    for node_id, count in counts.items():
        if not node_id:
            diagnostics.append(
                GraphDiagnostic(
                    code="GRAPH_NODE_ID_MISSING",
                    severity="error",
                    message="A node is missing its id.",
                )
            )
        elif count > 1:
            diagnostics.append(
                GraphDiagnostic(
                    code="GRAPH_DUPLICATE_NODE",
                    severity="error",
                    message=f"Node id '{node_id}' is declared {count} times.",
                    node_id=node_id,
                    hint="Node ids must be unique within a workflow.",
                )
            )

    for edge in graph.edges:
        for endpoint in (edge.source, edge.target):
            if endpoint not in graph:
                diagnostics.append(
                    GraphDiagnostic(
                        code="GRAPH_DANGLING_EDGE",
                        severity="error",
                        message=f"Edge '{edge.id}' references unknown node '{endpoint}'.",
                        edge_id=edge.id,
                        hint="Remove the edge or restore the missing node.",
                    )
                )
        if edge.condition.strip().lower() not in EDGE_CONDITIONS:
            diagnostics.append(
                GraphDiagnostic(
                    code="GRAPH_UNKNOWN_CONDITION",
                    severity="warning",
                    message=f"Edge '{edge.id}' has unknown condition '{edge.condition}'; treated as 'always'.",
                    edge_id=edge.id,
                    hint="Use one of: always, success, error.",
                )
            )

    starts = graph.start_nodes()
    if not starts:
        diagnostics.append(
            GraphDiagnostic(
                code="GRAPH_NO_START_NODE",
                severity="error",
                message="No starting node found.",
                hint="At least one node must have no incoming edges.",
            )
        )
        return diagnostics

    active_roots = [starts[0].id] if start_policy == "first" else [node.id for node in starts]
    if len(starts) > 1 and start_policy == "first":
        ignored = ", ".join(node.id for node in starts[1:])
        diagnostics.append(
            GraphDiagnostic(
                code="GRAPH_MULTIPLE_START_NODES",
                severity="warning",
                message=f"Multiple start nodes found; only '{starts[0].id}' runs. Ignored: {ignored}.",
                node_id=starts[0].id,
                hint="Connect the extra roots or use start policy 'all'.",
            )
        )

    reachable = graph.reachable_from(active_roots)
    for node in graph.nodes:
        if node.id and node.id not in reachable:
            diagnostics.append(
                GraphDiagnostic(
                    code="GRAPH_UNREACHABLE_NODE",
                    severity="warning",
                    message=f"Node '{node.id}' is not reachable from the start node.",
                    node_id=node.id,
                    hint="Remove it or connect it with a valid edge.",
                )
            )

    references = PromptContextBuilder()
    for node in graph.nodes:
        for reference in references.referenced_nodes(node.parameters.prompt):
            if reference not in graph:
                diagnostics.append(
                    GraphDiagnostic(
                        code="GRAPH_UNKNOWN_REFERENCE",
                        severity="warning",
                        message=f"Node '{node.id}' references unknown node '{reference}' in its prompt.",
                        node_id=node.id,
                        hint="The placeholder is left as-is in the prompt.",
                    )
                )

    if graph.has_cycle():
        diagnostics.append(
            GraphDiagnostic(
                code="GRAPH_LOOP_DETECTED",
                severity="warning",
                message="Workflow contains at least one cycle; each node still runs at most once.",
            )
        )

    if registered_types is not None:
        known = set(registered_types)
        for node in graph.nodes:
            if node.type not in known:
                diagnostics.append(
                    GraphDiagnostic(
                        code="GRAPH_UNKNOWN_TASK_TYPE",
                        severity="warning",
                        message=f"Node '{node.id}' uses unregistered task type '{node.type}'.",
                        node_id=node.id,
                        hint="Register a handler for this type or the node will fail at run time.",
                    )
                )

    return diagnostics


def has_errors(diagnostics: Iterable[GraphDiagnostic]) -> bool:
    return any(item.severity == "error" for item in diagnostics)


def render_diagnostic(diagnostic: GraphDiagnostic) -> str:
    location_bits: list[str] = []
    if diagnostic.node_id:
        location_bits.append(f"node={diagnostic.node_id}")
    if diagnostic.edge_id:
        location_bits.append(f"edge={diagnostic.edge_id}")

    location = f" ({', '.join(location_bits)})" if location_bits else ""
    hint = f" Hint: {diagnostic.hint}" if diagnostic.hint else ""
    return f"[{diagnostic.severity.upper()}] {diagnostic.code}: {diagnostic.message}{location}.{hint}".rstrip()


def render_diagnostics(diagnostics: list[GraphDiagnostic]) -> str:
    if not diagnostics:
        return ""

    order = {"error": 0, "warning": 1, "info": 2}
    sorted_items = sorted(
        diagnostics,
        key=lambda item: (order.get(item.severity, 9), item.code, item.node_id or ""),
    )
    return "\n".join(f"- {render_diagnostic(item)}" for item in sorted_items)
