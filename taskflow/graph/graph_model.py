from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Iterator, Mapping
from typing import Any

from taskflow.graph.models import Edge, Node


class GraphModel:
    """Read-only view of a workflow's nodes and edges for the duration of one run."""

    def __init__(self, nodes: Iterable[Node], edges: Iterable[Edge]) -> None:
        self._nodes: tuple[Node, ...] = tuple(nodes)
        self._edges: tuple[Edge, ...] = tuple(edges)
        self._node_map: dict[str, Node] = {}
        for node in self._nodes:
            # First declaration wins; duplicates are reported by diagnostics.
            self._node_map.setdefault(node.id, node)

        outgoing: dict[str, list[Edge]] = defaultdict(list)
        incoming: dict[str, list[Edge]] = defaultdict(list)
        for edge in self._edges:
            outgoing[edge.source].append(edge)
            incoming[edge.target].append(edge)
        self._outgoing = {key: tuple(value) for key, value in outgoing.items()}
        self._incoming = {key: tuple(value) for key, value in incoming.items()}

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> GraphModel:
        raw_nodes = document.get("nodes")
        raw_edges = document.get("edges")
        if not isinstance(raw_nodes, list):
            raw_nodes = []
        if not isinstance(raw_edges, list):
            raw_edges = []
        return cls(
            nodes=[Node.from_dict(item) for item in raw_nodes if isinstance(item, Mapping)],
            edges=[Edge.from_dict(item) for item in raw_edges if isinstance(item, Mapping)],
        )

    @property
    def nodes(self) -> tuple[Node, ...]:
        return self._nodes

    @property
    def edges(self) -> tuple[Edge, ...]:
        return self._edges

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._node_map

    def __iter__(self) -> Iterator[Node]:
        return iter(self._nodes)

    def node(self, node_id: str) -> Node | None:
        return self._node_map.get(node_id)

    def outgoing_edges(self, node_id: str) -> tuple[Edge, ...]:
        return self._outgoing.get(node_id, ())

    def incoming_edges(self, node_id: str) -> tuple[Edge, ...]:
        return self._incoming.get(node_id, ())

    def start_nodes(self) -> list[Node]:
        """Nodes without incoming edges, in declaration order."""
        seen: set[str] = set()
        starts: list[Node] = []
        for node in self._nodes:
            if node.id in seen:
                continue
            seen.add(node.id)
            if node.id not in self._incoming:
                starts.append(node)
        return starts

    def start_node(self) -> Node | None:
        starts = self.start_nodes()
        return starts[0] if starts else None

    def reachable_from(self, roots: Iterable[str]) -> set[str]:
        reachable: set[str] = set()
        stack = [node_id for node_id in roots if node_id in self._node_map]
        while stack:
            node_id = stack.pop()
            if node_id in reachable:
                continue
            reachable.add(node_id)
            for edge in self.outgoing_edges(node_id):
                if edge.target in self._node_map and edge.target not in reachable:
                    stack.append(edge.target)
        return reachable

    def has_cycle(self) -> bool:
        visited: set[str] = set()
        active: set[str] = set()

        for root in self._node_map:
            if root in visited:
                continue
            stack: list[tuple[str, Iterator[Edge]]] = [(root, iter(self.outgoing_edges(root)))]
            visited.add(root)
            active.add(root)
            while stack:
                node_id, edges = stack[-1]
                advanced = False
                for edge in edges:
                    target = edge.target
                    if target not in self._node_map:
                        continue
                    if target in active:
                        return True
                    if target not in visited:
                        visited.add(target)
                        active.add(target)
                        stack.append((target, iter(self.outgoing_edges(target))))
                        advanced = True
                        break
                if not advanced:
                    active.discard(node_id)
                    stack.pop()
        return False
