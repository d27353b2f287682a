import json
import tempfile
import unittest
from pathlib import Path

import numpy as np

from knapsack_sim.cli import build_parser, run
from knapsack_sim.engine import KnapsackEngine
from knapsack_sim.render import _stacked_segments, render_knapsack


class TestSimulatorCLI(unittest.TestCase):
    def test_constant_play_on_fixed_items(self):
        items = {"costs": [0.01] * 50, "values": [0.02] * 50}
        args = build_parser().parse_args(
            ["constant", "--move", "1", "--membership", "-1", "--items-json", json.dumps(items)]
        )
        summary = run(args)
        self.assertTrue(summary["done"])
        self.assertEqual(summary["step_count"], 13)
        self.assertEqual(summary["num_items"], 50)
        self.assertEqual(summary["score"], 0.0)

    def test_random_play_respects_max_steps(self):
        args = build_parser().parse_args(
            ["random", "--min-items", "20", "--max-items", "30", "--max-steps", "7", "--seed", "1", "--idle-threshold", "100"]
        )
        summary = run(args)
        self.assertLessEqual(summary["step_count"], 7)
        self.assertTrue(20 <= summary["num_items"] <= 30)

    def test_items_sources_are_exclusive(self):
        args = build_parser().parse_args(["random", "--items-json", "{}", "--items-file", "x.json"])
        with self.assertRaises(ValueError):
            run(args)


class TestRender(unittest.TestCase):
    def test_stacked_segments_put_in_items_first(self):
        lefts, widths, ordered, separator_left = _stacked_segments(
            np.array([1.0, 2.0, 3.0]), np.array([False, True, False])
        )
        np.testing.assert_allclose(ordered, [2.0, 1.0, 3.0])
        self.assertEqual(len(widths), 3)
        self.assertAlmostEqual(separator_left, float(widths[0]))
        self.assertTrue(np.all(np.diff(lefts) > 0))

    def test_render_writes_png(self):
        engine = KnapsackEngine(item_count_range=(20, 20), seed=0)
        engine.step((1.0, 1.0))
        with tempfile.TemporaryDirectory() as td:
            path = render_knapsack(engine, Path(td) / "state.png")
            self.assertTrue(path.exists())


if __name__ == "__main__":
    unittest.main()
