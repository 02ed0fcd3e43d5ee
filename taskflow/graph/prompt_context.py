from __future__ import annotations

import re
from collections.abc import Mapping

from taskflow.graph.models import Node, TaskResult


TEMPLATE_INLINE_RE = re.compile(r"\{\{([^{}]+)\}\}")
OUTPUT_SUFFIXES = (".output", ".text")
CONTEXT_SEPARATOR = "Current task prompt:"
MISSING_CONTEXT_TEXT = "No detailed context"


class PromptContextBuilder:
    """Materializes a node's effective prompt from upstream results.

    ``{{nodeId}}`` placeholders are replaced with that node's output text and,
    when context injection is on, the text of every successful upstream result
    is prepended as a labeled block. The output depends only on the inputs.
    """

    def __init__(self, *, inject_context: bool = True) -> None:
        self._inject_context = inject_context

    def build(self, node: Node, previous_results: Mapping[str, TaskResult]) -> str:
        prompt = self.substitute(node.parameters.prompt, previous_results)

        inject = node.parameters.inject_context
        if inject is None:
            inject = self._inject_context
        if not inject:
            return prompt

        blocks = self.context_blocks(previous_results, exclude=node.id)
        if not blocks:
            return prompt
        return "\n\n".join([*blocks, CONTEXT_SEPARATOR, prompt])

    def substitute(self, template: str, previous_results: Mapping[str, TaskResult]) -> str:
        def _replace(match: re.Match[str]) -> str:
            reference = self._node_reference(match.group(1))
            result = previous_results.get(reference)
            if result is None or not result.success or result.data is None:
                return match.group(0)
            return result.data.text

        return TEMPLATE_INLINE_RE.sub(_replace, template)

    def context_blocks(self, previous_results: Mapping[str, TaskResult], *, exclude: str | None = None) -> list[str]:
        blocks: list[str] = []
        for node_id, result in previous_results.items():
            if node_id == exclude or not result.success:
                continue
            text = result.data.text if result.data is not None and result.data.text else MISSING_CONTEXT_TEXT
            blocks.append(f"Context from node {node_id}: {text}")
        return blocks

    def referenced_nodes(self, template: str) -> list[str]:
        seen: list[str] = []
        for match in TEMPLATE_INLINE_RE.finditer(template):
            reference = self._node_reference(match.group(1))
            if reference not in seen:
                seen.append(reference)
        return seen

    def _node_reference(self, raw: str) -> str:
        reference = raw.strip()
        for suffix in OUTPUT_SUFFIXES:
            if reference.endswith(suffix):
                return reference[: -len(suffix)]
        return reference
