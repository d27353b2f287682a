"""Item and cursor records plus random item-set generation."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np


@dataclass
class Item:
    cost: float
    value: float
    in_knapsack: bool
    visit_count: int


@dataclass
class Cursor:
    index: int = 0  # item currently pointed at
    stride: int = 0  # step size of the halving walk, reseeded below 2


def validate_item_count_range(item_count_range: tuple[int, int]) -> tuple[int, int]:
    lo, hi = (int(v) for v in item_count_range)
    if lo < 1:
        raise ValueError(f"item_count_range min must be >= 1, got {lo}")
    if hi < lo:
        raise ValueError(f"item_count_range max must be >= min, got min={lo} max={hi}")
    return lo, hi


def validate_feature_range(feature_range: tuple[float, float]) -> tuple[float, float]:
    lo, hi = (float(v) for v in feature_range)
    if lo <= 0.0:
        raise ValueError(f"feature_range low must be > 0 so item costs stay positive, got {lo}")
    if hi <= lo:
        raise ValueError(f"feature_range high must be > low, got low={lo} high={hi}")
    return lo, hi


def generate_items(
    rng: np.random.Generator,
    num_items: int,
    feature_range: tuple[float, float],
    cost_value_multiplier: float | None,
) -> tuple[np.ndarray, np.ndarray]:
    """Draw (costs, values) for ``num_items`` items.

    With a multiplier the draws are scaled by ``multiplier / num_items`` so the
    total cost of the set stays comparable to the budget whatever its length.
    """
    lo, hi = feature_range
    costs = rng.uniform(lo, hi, size=num_items)
    values = rng.uniform(lo, hi, size=num_items)
    if cost_value_multiplier:
        scale = float(cost_value_multiplier) / num_items
        costs = costs * scale
        values = values * scale
    return costs.astype(np.float64), values.astype(np.float64)
