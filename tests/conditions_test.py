from __future__ import annotations

import unittest

from taskflow.graph.conditions import ConditionEvaluator, normalize_condition
from taskflow.graph.models import Edge


class ConditionEvaluatorTests(unittest.TestCase):
    def setUp(self) -> None:
        self.evaluator = ConditionEvaluator()

    def _edge(self, condition: str) -> Edge:
        return Edge(id="e1", source="a", target="b", condition=condition)

    def test_condition_table(self) -> None:
        expected = {
            ("always", "success"): True,
            ("always", "error"): True,
            ("success", "success"): True,
            ("success", "error"): False,
            ("error", "success"): False,
            ("error", "error"): True,
        }
        for (condition, outcome), traversable in expected.items():
            with self.subTest(condition=condition, outcome=outcome):
                self.assertEqual(self.evaluator.is_traversable(self._edge(condition), outcome), traversable)

    def test_unknown_condition_behaves_like_always(self) -> None:
        edge = self._edge("on_timeout")
        self.assertTrue(self.evaluator.is_traversable(edge, "success"))
        self.assertTrue(self.evaluator.is_traversable(edge, "error"))

    def test_normalize_condition(self) -> None:
        self.assertEqual(normalize_condition(" Success "), "success")
        self.assertEqual(normalize_condition("ERROR"), "error")
        self.assertEqual(normalize_condition(None), "always")
        self.assertEqual(normalize_condition(""), "always")
        self.assertEqual(normalize_condition(3), "always")


if __name__ == "__main__":
    unittest.main()
