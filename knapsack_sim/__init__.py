"""Knapsack selection game simulator package."""

from .engine import KnapsackEngine
from .observation import observation_shape
from .utils import pad

__all__ = ["KnapsackEngine", "observation_shape", "pad"]
