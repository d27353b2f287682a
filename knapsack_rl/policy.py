"""PyTorch policy for the knapsack game: stacked observations -> 2 independent sign decisions."""

from __future__ import annotations

from typing import Any, Sequence

import numpy as np
import torch
import torch.nn as nn

from knapsack_sim.observation import observation_shape
from knapsack_sim.utils import pad

from .config import parse_hidden_layer_sizes

ACTION_DIM = 2  # (move_signal, membership_signal)
DEFAULT_HIDDEN_LAYER_SIZES = (128,)


class KnapsackPolicy(nn.Module):
    """MLP policy: x(history_size * obs_size) -> [hidden -> ELU]* -> 2 logits.

    Each logit parameterises an independent Bernoulli over the sign of one
    action signal: sigmoid(logit) = P(signal > 0).
    """

    ACTION_DIM = ACTION_DIM

    def __init__(
        self,
        hidden_layer_sizes: Sequence[int] = DEFAULT_HIDDEN_LAYER_SIZES,
        history_size: int = 1,
        extended_features: bool = False,
        seed: int | None = None,
    ):
        super().__init__()
        if seed is not None:
            torch.manual_seed(seed)
        if int(history_size) < 1:
            raise ValueError(f"history_size must be >= 1, got {history_size}")
        self.hidden_layer_sizes = parse_hidden_layer_sizes(list(hidden_layer_sizes))
        self.history_size = int(history_size)
        self.extended_features = bool(extended_features)
        self.obs_shape = observation_shape(self.extended_features)
        self.obs_dim = int(np.prod(self.obs_shape))
        self.input_dim = self.obs_dim * self.history_size

        layers = []
        in_dim = self.input_dim
        for size in self.hidden_layer_sizes:
            layers.append(nn.Linear(in_dim, size))
            in_dim = size
        self.hidden = nn.ModuleList(layers)
        self.output = nn.Linear(in_dim, self.ACTION_DIM)
        self.activation = nn.ELU()

    def policy_config(self) -> dict[str, Any]:
        return {
            "hidden_layer_sizes": list(self.hidden_layer_sizes),
            "history_size": self.history_size,
            "extended_features": self.extended_features,
        }

    def forward_logits(self, x: torch.Tensor) -> torch.Tensor:
        """x: [B, input_dim] -> logits: [B, 2]."""
        for layer in self.hidden:
            x = self.activation(layer(x))
        return self.output(x)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return torch.sigmoid(self.forward_logits(x))

    @staticmethod
    def sample_actions_from_logits(logits: torch.Tensor) -> tuple[torch.Tensor, torch.Tensor]:
        """Sample sign bits from [B, 2] logits. Returns (bits[B, 2], joint log_probs[B])."""
        dist = torch.distributions.Bernoulli(logits=logits)
        bits = dist.sample()
        return bits, dist.log_prob(bits).sum(dim=-1)

    @staticmethod
    def bits_to_signals(bits: torch.Tensor) -> torch.Tensor:
        return bits * 2.0 - 1.0

    def stack_history(self, observations: Sequence[np.ndarray]) -> np.ndarray:
        """Flatten the ``history_size`` most recent observations, oldest first.

        Missing slots at the front are zero-filled.
        """
        recent = [np.asarray(o, dtype=np.float32).reshape(-1) for o in list(observations)[-self.history_size :]]
        for obs in recent:
            if obs.shape != (self.obs_dim,):
                raise ValueError(f"observation must have {self.obs_dim} values, got {obs.size}")
        stacked = np.stack(recent) if recent else np.zeros((0, self.obs_dim), dtype=np.float32)
        stacked = pad(stacked, [(self.history_size - len(recent), 0), (0, 0)])
        return stacked.reshape(-1)

    def _build_obs_numpy(self, observation_history: Sequence[np.ndarray] | np.ndarray) -> np.ndarray:
        if isinstance(observation_history, np.ndarray):
            if observation_history.shape == (self.input_dim,):
                return observation_history.astype(np.float32, copy=False)
            if observation_history.shape == self.obs_shape:
                return self.stack_history([observation_history])
        return self.stack_history(observation_history)

    def _to_tensor(self, obs: np.ndarray) -> torch.Tensor:
        device = next(self.parameters()).device
        return torch.from_numpy(np.asarray(obs, dtype=np.float32)).unsqueeze(0).to(device)

    def sample_action(
        self,
        observation_history: Sequence[np.ndarray] | np.ndarray,
    ) -> tuple[tuple[float, float], torch.Tensor]:
        """Sample one action; the returned log-probability keeps its graph."""
        x = self._to_tensor(self._build_obs_numpy(observation_history))
        logits = self.forward_logits(x)
        bits, log_prob = self.sample_actions_from_logits(logits)
        signals = self.bits_to_signals(bits).squeeze(0).tolist()
        return (float(signals[0]), float(signals[1])), log_prob.squeeze(0)

    def get_actions(self, observation_history: Sequence[np.ndarray] | np.ndarray) -> tuple[float, float]:
        """Greedy action: the sign of each logit."""
        x = self._to_tensor(self._build_obs_numpy(observation_history))
        with torch.no_grad():
            logits = self.forward_logits(x).squeeze(0)
        ones = torch.ones_like(logits)
        signals = torch.where(logits > 0, ones, -ones).tolist()
        return float(signals[0]), float(signals[1])

    def action_probs(self, observation_history: Sequence[np.ndarray] | np.ndarray) -> np.ndarray:
        """P(move left), P(mark in) for the given history."""
        x = self._to_tensor(self._build_obs_numpy(observation_history))
        with torch.no_grad():
            probs = self.forward(x).squeeze(0).cpu().numpy()
        return probs.astype(np.float64)

    @classmethod
    def from_state_dict(cls, state_dict: dict[str, Any], **policy_config: Any) -> "KnapsackPolicy":
        policy = cls(**policy_config)
        policy.load_state_dict(state_dict)
        return policy
