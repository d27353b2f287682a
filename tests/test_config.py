import tempfile
import unittest
from pathlib import Path

from knapsack_rl.config import ExperimentConfig, load_config, parse_hidden_layer_sizes

DEFAULT_CONFIG = Path(__file__).resolve().parents[1] / "configs" / "default.yaml"


class TestConfig(unittest.TestCase):
    def test_default_yaml_matches_dataclass_defaults(self):
        config = ExperimentConfig.from_sections(load_config(DEFAULT_CONFIG))
        self.assertEqual(config.to_dict(), ExperimentConfig().to_dict())
        self.assertEqual(config.item_count_range, (50, 1000))

    def test_overrides_win_over_sections(self):
        data = {"environment": {"item_count_range": {"min": 5, "max": 9}}, "training": {"num_iterations": 3}}
        config = ExperimentConfig.from_sections(data, num_iterations=7, seed=None)
        self.assertEqual(config.item_count_range, (5, 9))
        self.assertEqual(config.num_iterations, 7)
        self.assertIsNone(config.seed)

    def test_unknown_keys_are_rejected(self):
        with self.assertRaises(ValueError):
            ExperimentConfig.from_sections({"training": {"epochs": 3}})

    def test_empty_yaml_loads_as_empty_dict(self):
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "empty.yaml"
            path.write_text("", encoding="utf-8")
            self.assertEqual(load_config(path), {})

    def test_validation_messages(self):
        cases = [
            ({"num_iterations": 0}, "Invalid number of iterations"),
            ({"games_per_iteration": 0}, "Invalid # of games per iteration"),
            ({"max_steps_per_game": 0}, "Invalid max. steps per game"),
            ({"discount_rate": 0.0}, "Invalid discount rate"),
            ({"discount_rate": 1.0}, "Invalid discount rate"),
            ({"item_count_min": 10, "item_count_max": 5}, "item_count_max"),
            ({"budget_strategy": "greedy"}, "budget_strategy"),
        ]
        for kwargs, message in cases:
            with self.assertRaises(ValueError, msg=str(kwargs)) as ctx:
                ExperimentConfig(**kwargs)
            self.assertIn(message, str(ctx.exception))

    def test_parse_hidden_layer_sizes(self):
        self.assertEqual(parse_hidden_layer_sizes("128, 64"), [128, 64])
        self.assertEqual(parse_hidden_layer_sizes([32]), [32])
        for bad in ("", "a,b", "64,-1", "0"):
            with self.assertRaises(ValueError):
                parse_hidden_layer_sizes(bad)

    def test_build_engine_uses_config(self):
        config = ExperimentConfig(item_count_min=7, item_count_max=7, extended_features=True, seed=1)
        engine = config.build_engine()
        self.assertEqual(engine.num_items, 7)
        self.assertEqual(engine.observe().shape, (2, 2, 5))


if __name__ == "__main__":
    unittest.main()
