"""Shared dataclasses for RL pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np
import torch


@dataclass
class Transition:
    observation: np.ndarray  # stacked observation history, shape (history_size * obs_size,)
    action: tuple[float, float]  # (move_signal, membership_signal)
    reward: float


@dataclass
class Trajectory:
    transitions: list[Transition] = field(default_factory=list)
    log_probs: list[torch.Tensor] = field(default_factory=list)
    done: bool = False
    final_value: float = 0.0

    def append(self, transition: Transition, log_prob: torch.Tensor) -> None:
        self.transitions.append(transition)
        self.log_probs.append(log_prob)

    def __len__(self) -> int:
        return len(self.transitions)

    def rewards(self) -> np.ndarray:
        return np.asarray([t.reward for t in self.transitions], dtype=np.float64)


@dataclass
class EpisodeResult:
    steps: int
    done: bool
    final_value: float
    num_items: int
    total_cost: float
