"""Budget strategies used to score the knapsack contents."""

from __future__ import annotations

from typing import Callable

import numpy as np

DEFAULT_BUDGET = 1.0


def cumulative_value(costs: np.ndarray, values: np.ndarray, in_knapsack: np.ndarray, budget: float) -> float:
    """Value accrues in sequence order until the running cost passes the budget."""
    mask = np.asarray(in_knapsack, dtype=bool)
    running_cost = np.cumsum(np.asarray(costs, dtype=np.float64)[mask])
    counted = np.asarray(values, dtype=np.float64)[mask]
    within = running_cost <= budget
    # Stop at the first overflow, even if a later item would fit on its own.
    if not within.all():
        first_over = int(np.argmin(within))
        within[first_over:] = False
    return float(np.sum(counted[within]))


def zero_over_budget_value(costs: np.ndarray, values: np.ndarray, in_knapsack: np.ndarray, budget: float) -> float:
    """All in-knapsack value, or nothing once the total cost exceeds the budget."""
    mask = np.asarray(in_knapsack, dtype=bool)
    total_cost = float(np.sum(np.asarray(costs, dtype=np.float64)[mask]))
    if total_cost > budget:
        return 0.0
    return float(np.sum(np.asarray(values, dtype=np.float64)[mask]))


BUDGET_STRATEGIES: dict[str, Callable[[np.ndarray, np.ndarray, np.ndarray, float], float]] = {
    "cumulative": cumulative_value,
    "zero_over_budget": zero_over_budget_value,
}


def get_budget_strategy(name: str) -> Callable[[np.ndarray, np.ndarray, np.ndarray, float], float]:
    try:
        return BUDGET_STRATEGIES[name]
    except KeyError:
        raise ValueError(
            f"budget_strategy must be one of: {', '.join(sorted(BUDGET_STRATEGIES))}, got {name!r}"
        ) from None
