# knapsack_rl/reward.py

from __future__ import annotations

# Scale applied to value deltas; knapsack values are normalised against a unit budget.
VALUE_REWARD_SCALE = 1.0


def compute_step_reward(value_before: float, value_after: float) -> float:
    """Reward a step by how much it changed the scored knapsack value.

    Rewards telescope, so the undiscounted return of an episode equals its
    final knapsack value.
    """
    return VALUE_REWARD_SCALE * (float(value_after) - float(value_before))
