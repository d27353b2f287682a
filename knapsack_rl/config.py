"""Experiment configuration: YAML defaults, validation and engine construction."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

import yaml

from knapsack_sim.engine import (
    DEFAULT_COST_VALUE_MULTIPLIER,
    DEFAULT_FEATURE_RANGE,
    DEFAULT_IDLE_THRESHOLD,
    DEFAULT_ITEM_COUNT_RANGE,
    KnapsackEngine,
)
from knapsack_sim.scoring import BUDGET_STRATEGIES, DEFAULT_BUDGET


def load_config(path: str | Path) -> dict:
    """Load YAML config. Returns dict with 'environment', 'policy' and 'training' keys."""
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def parse_optional_float(text: str) -> float | None:
    """CLI type for values where ``none``/``null`` means unset."""
    if text.strip().lower() in ("none", "null"):
        return None
    return float(text)


def parse_hidden_layer_sizes(text: str | list[int] | tuple[int, ...]) -> list[int]:
    """Accept ``"128,64"`` or a list; reject anything that is not a positive int."""
    if isinstance(text, str):
        parts = [p.strip() for p in text.split(",") if p.strip()]
    else:
        parts = list(text)
    sizes: list[int] = []
    for part in parts:
        try:
            size = int(part)
        except (TypeError, ValueError):
            raise ValueError(f"Invalid hidden layer sizes: {text!r}") from None
        if size <= 0:
            raise ValueError(f"Invalid hidden layer sizes: {text!r} (sizes must be > 0)")
        sizes.append(size)
    if not sizes:
        raise ValueError("hidden_layer_sizes must contain at least one layer")
    return sizes


@dataclass
class ExperimentConfig:
    # environment
    item_count_min: int = DEFAULT_ITEM_COUNT_RANGE[0]
    item_count_max: int = DEFAULT_ITEM_COUNT_RANGE[1]
    cost_value_multiplier: float | None = DEFAULT_COST_VALUE_MULTIPLIER
    idle_threshold: int = DEFAULT_IDLE_THRESHOLD
    budget: float = DEFAULT_BUDGET
    budget_strategy: str = "cumulative"
    extended_features: bool = False
    # policy
    hidden_layer_sizes: list[int] = field(default_factory=lambda: [128])
    history_size: int = 1
    # training
    num_iterations: int = 20
    games_per_iteration: int = 20
    max_steps_per_game: int = 500
    discount_rate: float = 0.95
    learning_rate: float = 0.05
    seed: int | None = None
    device: str = "cpu"
    checkpoint_dir: str = "checkpoints"
    tensorboard_logdir: str = "runs/knapsack_reinforcer"
    exp_name: str | None = None
    save_every: int = 1
    log_interval: int = 1

    def __post_init__(self) -> None:
        self.hidden_layer_sizes = parse_hidden_layer_sizes(self.hidden_layer_sizes)
        if self.item_count_min < 1:
            raise ValueError(f"item_count_min must be >= 1, got {self.item_count_min}")
        if self.item_count_max < self.item_count_min:
            raise ValueError(
                f"item_count_max must be >= item_count_min, got {self.item_count_min}..{self.item_count_max}"
            )
        if self.cost_value_multiplier is not None and self.cost_value_multiplier <= 0:
            raise ValueError(f"cost_value_multiplier must be > 0 or null, got {self.cost_value_multiplier}")
        if self.idle_threshold <= 0:
            raise ValueError(f"idle_threshold must be > 0, got {self.idle_threshold}")
        if self.budget <= 0:
            raise ValueError(f"budget must be > 0, got {self.budget}")
        if self.budget_strategy not in BUDGET_STRATEGIES:
            raise ValueError(
                f"budget_strategy must be one of: {', '.join(sorted(BUDGET_STRATEGIES))}, got {self.budget_strategy!r}"
            )
        if self.history_size < 1:
            raise ValueError(f"history_size must be >= 1, got {self.history_size}")
        if self.num_iterations < 1:
            raise ValueError(f"Invalid number of iterations: {self.num_iterations}")
        if self.games_per_iteration < 1:
            raise ValueError(f"Invalid # of games per iteration: {self.games_per_iteration}")
        if self.max_steps_per_game < 1:
            raise ValueError(f"Invalid max. steps per game: {self.max_steps_per_game}")
        if not 0.0 < self.discount_rate < 1.0:
            raise ValueError(f"Invalid discount rate: {self.discount_rate} (must be in (0, 1))")
        if self.learning_rate <= 0.0:
            raise ValueError(f"Invalid learning rate: {self.learning_rate}")
        if self.save_every < 1:
            raise ValueError(f"save_every must be >= 1, got {self.save_every}")

    @property
    def item_count_range(self) -> tuple[int, int]:
        return (self.item_count_min, self.item_count_max)

    def build_engine(self, seed: int | None = None) -> KnapsackEngine:
        return KnapsackEngine(
            item_count_range=self.item_count_range,
            cost_value_multiplier=self.cost_value_multiplier,
            idle_threshold=self.idle_threshold,
            budget=self.budget,
            budget_strategy=self.budget_strategy,
            extended_features=self.extended_features,
            feature_range=DEFAULT_FEATURE_RANGE,
            seed=self.seed if seed is None else seed,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_sections(cls, data: dict, **overrides: Any) -> "ExperimentConfig":
        """Build from a YAML-style dict with environment/policy/training sections."""
        env = dict(data.get("environment") or {})
        item_range = env.pop("item_count_range", None)
        if item_range is not None:
            env["item_count_min"] = item_range["min"]
            env["item_count_max"] = item_range["max"]
        kwargs: dict[str, Any] = {}
        for section in (env, data.get("policy") or {}, data.get("training") or {}):
            kwargs.update(section)
        kwargs.update({k: v for k, v in overrides.items() if v is not None})
        known = set(cls.__dataclass_fields__)
        unknown = sorted(set(kwargs) - known)
        if unknown:
            raise ValueError(f"Unknown config keys: {', '.join(unknown)}")
        return cls(**kwargs)
