from __future__ import annotations

from collections.abc import Mapping
from typing import Any


class GraphValidationError(ValueError):
    """Raised when a workflow document fails validation."""



def validate_graph_definition(document: Mapping[str, Any]) -> list[str]:
    """Check the shape of an editor-exported workflow document."""
    errors: list[str] = []

    nodes = document.get("nodes")
    if not isinstance(nodes, list) or not nodes:
        errors.append("Top-level field 'nodes' must be a non-empty list.")
        return errors

    edges = document.get("edges", [])
    if edges is None:
        edges = []
    if not isinstance(edges, list):
        errors.append("Top-level field 'edges' must be a list.")
        edges = []

    node_ids: set[str] = set()

    for index, node in enumerate(nodes):
        if not isinstance(node, Mapping):
            errors.append(f"nodes[{index}] must be an object.")
            continue

        node_id = node.get("id")
        if not isinstance(node_id, str) or not node_id.strip():
            errors.append(f"nodes[{index}].id must be a non-empty string.")
            continue

        if node_id in node_ids:
            errors.append(f"Duplicate node id '{node_id}'.")
            continue
        node_ids.add(node_id)

        node_type = node.get("type", node.get("kind"))
        if node_type is not None and (not isinstance(node_type, str) or not node_type.strip()):
            errors.append(f"nodes[{index}] '{node_id}' has invalid type '{node_type}'.")

        _validate_parameters(node=node, node_id=node_id, errors=errors)

    edge_ids: set[str] = set()
    for index, edge in enumerate(edges):
        if not isinstance(edge, Mapping):
            errors.append(f"edges[{index}] must be an object.")
            continue

        edge_id = edge.get("id")
        if isinstance(edge_id, str) and edge_id:
            if edge_id in edge_ids:
                errors.append(f"Duplicate edge id '{edge_id}'.")
            edge_ids.add(edge_id)

        label = edge_id if isinstance(edge_id, str) and edge_id else f"edges[{index}]"
        for endpoint in ("source", "target"):
            value = edge.get(endpoint)
            if not isinstance(value, str) or not value:
                errors.append(f"Edge '{label}' is missing non-empty '{endpoint}'.")
            elif value not in node_ids:
                errors.append(f"Edge '{label}' references unknown {endpoint} node '{value}'.")

    return errors



def validate_graph_or_raise(document: Mapping[str, Any]) -> None:
    errors = validate_graph_definition(document)
    if errors:
        rendered = "\n".join(f"- {item}" for item in errors)
        raise GraphValidationError(f"Workflow validation failed:\n{rendered}")


def _validate_parameters(*, node: Mapping[str, Any], node_id: str, errors: list[str]) -> None:
    parameters = node.get("parameters")
    if parameters is None:
        data = node.get("data")
        parameters = data.get("parameters") if isinstance(data, Mapping) else None
    if parameters is None:
        return
    if not isinstance(parameters, Mapping):
        errors.append(f"Node '{node_id}' parameters must be an object.")
        return

    prompt = parameters.get("prompt")
    if prompt is not None and not isinstance(prompt, str):
        errors.append(f"Node '{node_id}' parameter 'prompt' must be a string.")

    max_tokens = parameters.get("maxTokens", parameters.get("max_tokens"))
    if max_tokens is not None and (isinstance(max_tokens, bool) or not isinstance(max_tokens, int) or max_tokens < 0):
        errors.append(f"Node '{node_id}' parameter 'maxTokens' must be a non-negative integer.")

    temperature = parameters.get("temperature")
    if temperature is not None and (
        isinstance(temperature, bool) or not isinstance(temperature, (int, float)) or not 0 <= temperature <= 2
    ):
        errors.append(f"Node '{node_id}' parameter 'temperature' must be a number between 0 and 2.")
