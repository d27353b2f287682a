"""Length-invariant observation of an item set around the cursor.

Observation layout: [left/right, in/out, features]

- left holds items before the cursor, right the cursor item and everything after
- features are (cost, value), or (cost, value, roi, weighted_roi, visits) in extended mode,
  where visits is each item's share of all visits so far
"""

from __future__ import annotations

import numpy as np

from .utils import pad

NUM_SIDES = 2
NUM_MEMBERSHIP = 2
BASE_FEATURES = ("cost", "value")
EXTENDED_FEATURES = ("cost", "value", "roi", "weighted_roi", "visits")
# Decay of the ROI weight per item-count of distance from the cursor.
ROI_DISTANCE_DECAY = 8.0


def observation_shape(extended: bool = False) -> tuple[int, int, int]:
    num_features = len(EXTENDED_FEATURES) if extended else len(BASE_FEATURES)
    return (NUM_SIDES, NUM_MEMBERSHIP, num_features)


def observation_size(extended: bool = False) -> int:
    return int(np.prod(observation_shape(extended)))


def _item_features(
    costs: np.ndarray,
    values: np.ndarray,
    index: int,
    extended: bool,
    visit_counts: np.ndarray | None,
) -> np.ndarray:
    if not extended:
        return np.stack([costs, values], axis=1)

    zero_cost = np.flatnonzero(costs == 0.0)
    if zero_cost.size:
        raise ZeroDivisionError(f"ROI is undefined for zero-cost item at index {int(zero_cost[0])}")
    n = costs.shape[0]
    roi = values / costs / n
    distance = np.abs(np.arange(n, dtype=np.float64) - index) / n
    weighted_roi = roi * np.exp(-ROI_DISTANCE_DECAY * distance)
    if visit_counts is None:
        visits = np.zeros((n,), dtype=np.float64)
    else:
        visit_counts = np.asarray(visit_counts, dtype=np.float64)
        if visit_counts.shape != (n,):
            raise ValueError(f"visit_counts must have shape ({n},), got {visit_counts.shape}")
        visits = visit_counts / max(float(visit_counts.sum()), 1.0)
    return np.stack([costs, values, roi, weighted_roi, visits], axis=1)


def build_observation(
    costs: np.ndarray,
    values: np.ndarray,
    in_knapsack: np.ndarray,
    index: int,
    extended: bool = False,
    visit_counts: np.ndarray | None = None,
) -> np.ndarray:
    """Sum item features per side of the cursor and per knapsack membership.

    ``visit_counts`` only feeds the extended ``visits`` feature; without it
    that feature is zero.
    """
    costs = np.asarray(costs, dtype=np.float64)
    values = np.asarray(values, dtype=np.float64)
    n = costs.shape[0]
    if values.shape != (n,) or np.shape(in_knapsack) != (n,):
        raise ValueError(
            f"costs, values and in_knapsack must share shape ({n},), got {values.shape} and {np.shape(in_knapsack)}"
        )
    if not 0 <= index < n:
        raise ValueError(f"cursor index {index} out of range for {n} items")

    features = _item_features(costs, values, index, extended, visit_counts)
    membership = np.asarray(in_knapsack, dtype=bool).astype(np.float64)[:, None]
    items = np.concatenate([features, membership], axis=1)  # [n, F + 1]

    left = pad(items[:index], [(0, n - index), (0, 0)])
    right = pad(items[index:], [(index, 0), (0, 0)])

    sides = []
    for half in (left, right):
        feats, member = half[:, :-1], half[:, -1:]
        sides.append(
            np.stack(
                [
                    (feats * member).sum(axis=0),
                    (feats * (1.0 - member)).sum(axis=0),
                ]
            )
        )
    return np.stack(sides).astype(np.float32)
