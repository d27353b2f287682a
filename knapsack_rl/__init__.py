"""REINFORCE training/evaluation package for the knapsack selection game."""

from .policy import KnapsackPolicy
from .checkpoint import CheckpointManager
from .config import ExperimentConfig

__all__ = [
    "KnapsackPolicy",
    "CheckpointManager",
    "ExperimentConfig",
]
