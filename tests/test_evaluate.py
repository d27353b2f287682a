import argparse
import tempfile
import unittest
from pathlib import Path

import numpy as np
import torch

from knapsack_rl.checkpoint import CheckpointManager
from knapsack_rl.evaluate import _aggregate_metrics, build_parser, play_greedy_episode, run_evaluation
from knapsack_rl.policy import KnapsackPolicy
from knapsack_rl.types import EpisodeResult
from knapsack_sim.engine import KnapsackEngine


def _constant_policy(move_logit: float, membership_logit: float) -> KnapsackPolicy:
    policy = KnapsackPolicy(hidden_layer_sizes=[4], seed=0)
    with torch.no_grad():
        for p in policy.parameters():
            p.zero_()
        policy.output.bias.copy_(torch.tensor([move_logit, membership_logit]))
    return policy


class TestEvaluate(unittest.TestCase):
    def test_parser_defaults(self):
        args = build_parser().parse_args([])
        self.assertEqual(args.episodes, 100)
        self.assertEqual(args.max_steps, 500)
        self.assertIsNone(args.budget)
        self.assertIsNone(args.budget_strategy)
        self.assertFalse(args.render)

    def test_metrics_aggregation(self):
        results = [
            EpisodeResult(steps=10, done=True, final_value=0.5, num_items=50, total_cost=0.4),
            EpisodeResult(steps=30, done=False, final_value=1.5, num_items=70, total_cost=0.8),
        ]
        m = _aggregate_metrics(results, eval_time_sec=4.0)
        self.assertEqual(m.episodes, 2)
        self.assertEqual(m.done_count, 1)
        self.assertEqual(m.truncated_count, 1)
        self.assertAlmostEqual(m.done_rate, 0.5)
        self.assertAlmostEqual(m.value_mean, 1.0)
        self.assertAlmostEqual(m.value_max, 1.5)
        self.assertAlmostEqual(m.steps_min, 10.0)
        self.assertAlmostEqual(m.items_mean, 60.0)
        self.assertAlmostEqual(m.cost_mean, 0.6)
        self.assertAlmostEqual(m.episodes_per_sec, 0.5)

    def test_greedy_episode_on_fixed_items(self):
        engine = KnapsackEngine(item_count_range=(50, 50), idle_threshold=4, seed=0)
        engine.set_items(np.full(50, 0.01), np.full(50, 0.02))
        seen = []
        result = play_greedy_episode(
            _constant_policy(1.0, -1.0), engine, max_steps=100, reset=False, on_step=lambda env, s: seen.append(s)
        )
        self.assertTrue(result.done)
        self.assertEqual(result.steps, 13)
        self.assertEqual(result.final_value, 0.0)
        self.assertEqual(seen, list(range(1, 14)))

    def test_greedy_episode_respects_max_steps(self):
        engine = KnapsackEngine(item_count_range=(50, 50), seed=0)
        result = play_greedy_episode(_constant_policy(1.0, -1.0), engine, max_steps=5)
        self.assertFalse(result.done)
        self.assertEqual(result.steps, 5)

    def test_feature_mismatch_is_rejected(self):
        engine = KnapsackEngine(item_count_range=(5, 5), extended_features=True, seed=0)
        with self.assertRaises(ValueError):
            play_greedy_episode(KnapsackPolicy(seed=0), engine, max_steps=5)

    def test_missing_checkpoint_raises(self):
        with tempfile.TemporaryDirectory() as td:
            args = build_parser().parse_args(["--checkpoint-dir", td, "--output-dir", td])
            with self.assertRaises(RuntimeError):
                run_evaluation(args)

    def test_smoke_evaluation_writes_artifacts(self):
        with tempfile.TemporaryDirectory() as td:
            ckpt = CheckpointManager(Path(td) / "ckpt")
            ckpt.save(KnapsackPolicy(hidden_layer_sizes=[8], seed=0), iteration=3)
            args = argparse.Namespace(
                checkpoint_dir=str(Path(td) / "ckpt"),
                checkpoint_path=None,
                device="cpu",
                episodes=4,
                max_steps=40,
                item_count_min=10,
                item_count_max=20,
                cost_value_multiplier=4.0,
                idle_threshold=4,
                budget=None,
                budget_strategy="cumulative",
                seed=7,
                output_dir=str(Path(td) / "reports"),
                output_prefix="smoke",
                render=True,
                progress="off",
            )
            out = run_evaluation(args)
            self.assertEqual(out["loaded_iteration"], 3)
            self.assertEqual(out["metrics"].episodes, 4)
            for key in ("value_plot", "steps_plot", "csv", "json", "render"):
                self.assertTrue(Path(out[key]).exists(), msg=key)


    def test_cost_value_multiplier_accepts_none(self):
        args = build_parser().parse_args(["--cost-value-multiplier", "none"])
        self.assertIsNone(args.cost_value_multiplier)
        args = build_parser().parse_args(["--cost-value-multiplier", "2.5"])
        self.assertAlmostEqual(args.cost_value_multiplier, 2.5)

    def test_scoring_follows_checkpoint_unless_overridden(self):
        with tempfile.TemporaryDirectory() as td:
            ckpt_dir = str(Path(td) / "ckpt")
            CheckpointManager(ckpt_dir).save(
                KnapsackPolicy(hidden_layer_sizes=[8], seed=0),
                iteration=1,
                metadata={"budget": 2.0, "budget_strategy": "zero_over_budget"},
            )
            common = [
                "--checkpoint-dir", ckpt_dir,
                "--output-dir", str(Path(td) / "reports"),
                "--episodes", "2",
                "--max-steps", "10",
                "--item-count-min", "5",
                "--item-count-max", "8",
                "--seed", "3",
                "--progress", "off",
            ]
            out = run_evaluation(build_parser().parse_args(common))
            self.assertEqual(out["budget"], 2.0)
            self.assertEqual(out["budget_strategy"], "zero_over_budget")

            out = run_evaluation(build_parser().parse_args(common + ["--budget", "0.5", "--budget-strategy", "cumulative"]))
            self.assertEqual(out["budget"], 0.5)
            self.assertEqual(out["budget_strategy"], "cumulative")

if __name__ == "__main__":
    unittest.main()
