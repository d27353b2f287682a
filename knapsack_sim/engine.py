"""Core knapsack simulator engine."""

from __future__ import annotations

import math
from typing import Any, Sequence

import numpy as np

from .observation import build_observation, observation_shape
from .scoring import DEFAULT_BUDGET, get_budget_strategy
from .state import Cursor, Item, generate_items, validate_feature_range, validate_item_count_range

DEFAULT_ITEM_COUNT_RANGE = (50, 1000)
DEFAULT_FEATURE_RANGE = (0.01, 1.0)
DEFAULT_COST_VALUE_MULTIPLIER = 4.0
DEFAULT_IDLE_THRESHOLD = 4


class KnapsackEngine:
    """Sequential item-selection game over a randomly sized item set.

    A step carries two decisions packed as ``(move_signal, membership_signal)``:

    - ``move_signal > 0`` jumps the cursor left, otherwise right, by a stride
      that halves every step and reseeds at the midpoint once it drops below 2
    - ``membership_signal > 0`` puts the current item in the knapsack,
      otherwise takes it out

    The episode ends once the agent keeps its membership decisions unchanged for
    more than ``tree_depth * idle_threshold`` consecutive steps.
    """

    def __init__(
        self,
        item_count_range: tuple[int, int] = DEFAULT_ITEM_COUNT_RANGE,
        cost_value_multiplier: float | None = DEFAULT_COST_VALUE_MULTIPLIER,
        idle_threshold: int = DEFAULT_IDLE_THRESHOLD,
        budget: float = DEFAULT_BUDGET,
        budget_strategy: str = "cumulative",
        extended_features: bool = False,
        feature_range: tuple[float, float] = DEFAULT_FEATURE_RANGE,
        seed: int | None = None,
    ):
        self.item_count_range = validate_item_count_range(item_count_range)
        self.feature_range = validate_feature_range(feature_range)
        if cost_value_multiplier is not None and cost_value_multiplier <= 0:
            raise ValueError(f"cost_value_multiplier must be > 0 or None, got {cost_value_multiplier}")
        if idle_threshold <= 0:
            raise ValueError(f"idle_threshold must be > 0, got {idle_threshold}")
        if budget <= 0:
            raise ValueError(f"budget must be > 0, got {budget}")

        self.cost_value_multiplier = cost_value_multiplier
        self.idle_threshold = int(idle_threshold)
        self.budget = float(budget)
        self.budget_strategy = budget_strategy
        self._score = get_budget_strategy(budget_strategy)
        self.extended_features = bool(extended_features)
        self._rng = np.random.default_rng(seed)

        self.costs = np.zeros((0,), dtype=np.float64)
        self.values = np.zeros((0,), dtype=np.float64)
        self.in_knapsack = np.zeros((0,), dtype=bool)
        self.visit_counts = np.zeros((0,), dtype=np.int64)
        self.cursor = Cursor()
        self.idle_count = 0
        self.total_visits = 0
        self.step_count = 0
        self.tree_depth = 0
        self._done = False
        self.reset()

    @property
    def num_items(self) -> int:
        return int(self.costs.shape[0])

    @property
    def observation_shape(self) -> tuple[int, int, int]:
        return observation_shape(self.extended_features)

    def reset(self) -> np.ndarray:
        lo, hi = self.item_count_range
        num_items = int(self._rng.integers(lo, hi + 1))
        costs, values = generate_items(self._rng, num_items, self.feature_range, self.cost_value_multiplier)
        self._install_items(costs, values, np.zeros((num_items,), dtype=bool))
        return self.observe()

    def set_items(
        self,
        costs: Sequence[float] | np.ndarray,
        values: Sequence[float] | np.ndarray,
        in_knapsack: Sequence[bool] | np.ndarray | None = None,
    ) -> np.ndarray:
        """Start an episode on a fixed item set instead of a random one."""
        costs_arr = np.asarray(costs, dtype=np.float64).reshape(-1)
        values_arr = np.asarray(values, dtype=np.float64).reshape(-1)
        if costs_arr.size == 0:
            raise ValueError("Item set must contain at least one item")
        if values_arr.shape != costs_arr.shape:
            raise ValueError(f"costs and values must have the same length, got {costs_arr.size} and {values_arr.size}")
        if in_knapsack is None:
            member = np.zeros(costs_arr.shape, dtype=bool)
        else:
            member = np.asarray(in_knapsack, dtype=bool).reshape(-1)
            if member.shape != costs_arr.shape:
                raise ValueError(f"in_knapsack must have length {costs_arr.size}, got {member.size}")
        self._install_items(costs_arr, values_arr, member)
        return self.observe()

    def _install_items(self, costs: np.ndarray, values: np.ndarray, in_knapsack: np.ndarray) -> None:
        self.costs = costs
        self.values = values
        self.in_knapsack = in_knapsack.copy()
        self.visit_counts = np.zeros(costs.shape, dtype=np.int64)
        self.cursor = Cursor(index=0, stride=0)
        self.idle_count = 0
        self.total_visits = 0
        self.step_count = 0
        self.tree_depth = int(math.floor(math.log(self.num_items)))
        self._done = False

    def observe(self) -> np.ndarray:
        return build_observation(
            self.costs,
            self.values,
            self.in_knapsack,
            self.cursor.index,
            extended=self.extended_features,
            visit_counts=self.visit_counts,
        )

    @staticmethod
    def _parse_action(action: Sequence[float] | np.ndarray) -> tuple[float, float]:
        arr = np.asarray(action, dtype=np.float64).reshape(-1)
        if arr.shape != (2,):
            raise ValueError(f"action must be a (move_signal, membership_signal) pair, got shape {arr.shape}")
        if not np.all(np.isfinite(arr)):
            raise ValueError(f"action signals must be finite, got {arr.tolist()}")
        return float(arr[0]), float(arr[1])

    def step(self, action: Sequence[float] | np.ndarray) -> bool:
        move_signal, membership_signal = self._parse_action(action)
        move_left = move_signal > 0
        mark_in = membership_signal > 0

        idx = self.cursor.index
        was_in = bool(self.in_knapsack[idx])
        self.in_knapsack[idx] = mark_in
        self.visit_counts[idx] += 1
        self.total_visits += 1
        self.step_count += 1
        if was_in == mark_in:
            self.idle_count += 1
        else:
            self.idle_count = 0

        if self.cursor.stride >= 2:
            stride = self.cursor.stride
        else:
            stride = self.num_items // 2
            idx = self.num_items // 2
        stride //= 2
        if move_left:
            stride = -stride
        idx += stride
        if not 0 <= idx < self.num_items:
            raise RuntimeError(f"cursor index {idx} left item range [0, {self.num_items})")
        self.cursor = Cursor(index=idx, stride=abs(stride))

        return self.is_done()

    def is_done(self) -> bool:
        if self.idle_count > self.tree_depth * self.idle_threshold:
            self._done = True
        return self._done

    def value(self) -> float:
        return self._score(self.costs, self.values, self.in_knapsack, self.budget)

    def total_cost(self) -> float:
        return float(np.sum(self.costs[self.in_knapsack]))

    def items(self) -> list[Item]:
        return [
            Item(cost=float(c), value=float(v), in_knapsack=bool(m), visit_count=int(n))
            for c, v, m, n in zip(self.costs, self.values, self.in_knapsack, self.visit_counts)
        ]

    def item_triples(self) -> np.ndarray:
        """Return ``[num_items, 3]`` rows of (cost, value, in_knapsack)."""
        return np.stack([self.costs, self.values, self.in_knapsack.astype(np.float64)], axis=1)

    def snapshot(self) -> dict[str, Any]:
        return {
            "items": self.item_triples().tolist(),
            "cursor": {"index": self.cursor.index, "stride": self.cursor.stride},
            "score": self.value(),
            "total_cost": self.total_cost(),
            "step_count": self.step_count,
            "idle_count": self.idle_count,
            "total_visits": self.total_visits,
            "tree_depth": self.tree_depth,
            "done": self.is_done(),
        }
