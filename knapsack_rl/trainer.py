"""PyTorch REINFORCE trainer for the knapsack selection game."""

from __future__ import annotations

import argparse
import signal
import threading
import time
from collections import deque
from datetime import datetime
from pathlib import Path
from typing import Callable

import numpy as np
import torch
from torch.utils.tensorboard import SummaryWriter
from tqdm import tqdm

from knapsack_sim.engine import KnapsackEngine

from .checkpoint import CheckpointManager
from .config import ExperimentConfig, load_config, parse_optional_float
from .plotting import plot_mean_steps
from .policy import KnapsackPolicy
from .reward import compute_step_reward
from .types import Trajectory, Transition

RETURN_NORM_EPSILON = 1e-8


def discounted_returns(rewards: torch.Tensor, gamma: float) -> torch.Tensor:
    """rewards: [T, B] -> returns [T, B] with R[t] = r[t] + gamma * R[t + 1]."""
    returns = torch.zeros_like(rewards)
    running = torch.zeros(rewards.shape[1:], dtype=rewards.dtype, device=rewards.device)
    for t in range(rewards.shape[0] - 1, -1, -1):
        running = rewards[t] + gamma * running
        returns[t] = running
    return returns


def normalize_returns(
    returns: torch.Tensor,
    active_mask: torch.Tensor,
    eps: float = RETURN_NORM_EPSILON,
) -> torch.Tensor:
    """Standardise returns over real steps only; padded steps come back as 0."""
    valid = active_mask > 0
    if not bool(valid.any()):
        return torch.zeros_like(returns)
    values = returns[valid]
    mean = values.mean()
    std = values.std(correction=0)
    normalized = (returns - mean) / (std + eps)
    return torch.where(valid, normalized, torch.zeros_like(returns))


def reinforce_loss(log_probs: torch.Tensor, normalized_returns: torch.Tensor, active_mask: torch.Tensor) -> torch.Tensor:
    return -(log_probs * normalized_returns * active_mask).sum()


class ReinforceTrainer:
    """Training session: owns the policy, its optimizer, the environment and the stop token."""

    def __init__(
        self,
        config: ExperimentConfig,
        on_step: Callable[[KnapsackEngine, int], None] | None = None,
        on_game_end: Callable[[int, int], None] | None = None,
        on_iteration_end: Callable[[int, int, list[int]], None] | None = None,
    ):
        self.config = config
        self.on_step = on_step
        self.on_game_end = on_game_end
        self.on_iteration_end = on_iteration_end

        if config.seed is not None:
            torch.manual_seed(config.seed)

        self.device = self._resolve_device(config.device)
        self._iteration_bar: tqdm | None = None
        self.ckpt = CheckpointManager(config.checkpoint_dir, log=self._log)
        self.policy, self.start_iteration, self.resumed_from = self._load_or_init_policy()
        self.policy.to(self.device)
        self.optimizer = torch.optim.Adam(self.policy.parameters(), lr=config.learning_rate)
        if self.resumed_from is not None:
            opt_state = self.ckpt.load_optimizer_state(self.resumed_from)
            if opt_state is not None:
                self.optimizer.load_state_dict(opt_state)

        self.run_timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        if config.exp_name:
            self.tb_logdir = str(Path(config.tensorboard_logdir) / config.exp_name / f"run_{self.run_timestamp}")
        else:
            self.tb_logdir = str(Path(config.tensorboard_logdir) / f"run_{self.run_timestamp}")
        self.tb_writer = SummaryWriter(log_dir=self.tb_logdir)
        if config.exp_name:
            self.tb_writer.add_text("meta/exp_name", config.exp_name, 0)

        self.env = config.build_engine()
        self.stop_requested = threading.Event()
        self.last_metrics: dict[str, float] = {}
        self.mean_step_values: list[float] = []

        self._log(
            "trainer_init "
            f"iterations={config.num_iterations} games_per_iteration={config.games_per_iteration} "
            f"max_steps_per_game={config.max_steps_per_game} discount_rate={config.discount_rate} "
            f"lr={config.learning_rate} optimizer=adam baseline=normalized_returns "
            f"hidden_layer_sizes={self.policy.hidden_layer_sizes} history_size={self.policy.history_size} "
            f"items={config.item_count_min}..{config.item_count_max} budget_strategy={config.budget_strategy} "
            f"device={self.device.type} tensorboard_logdir={self.tb_logdir} "
            f"checkpoint_dir={config.checkpoint_dir} exp_name={config.exp_name or 'run_default'}"
        )
        if self.start_iteration == 0:
            self._log("checkpoint_status no checkpoint found, initialized random policy")
        else:
            self._log(f"checkpoint_status resumed from iteration={self.start_iteration} path={self.resumed_from}")

    def _load_or_init_policy(self) -> tuple[KnapsackPolicy, int, Path | None]:
        loaded, iteration, path = self.ckpt.load_latest_with_path()
        if loaded is None:
            policy = KnapsackPolicy(
                hidden_layer_sizes=self.config.hidden_layer_sizes,
                history_size=self.config.history_size,
                extended_features=self.config.extended_features,
                seed=self.config.seed,
            )
            return policy, 0, None
        if (
            loaded.history_size != self.config.history_size
            or loaded.extended_features != self.config.extended_features
        ):
            raise ValueError(
                "Checkpoint observation layout does not match config: "
                f"checkpoint history_size={loaded.history_size} extended_features={loaded.extended_features}, "
                f"config history_size={self.config.history_size} extended_features={self.config.extended_features}"
            )
        if loaded.hidden_layer_sizes != self.config.hidden_layer_sizes:
            self._log(
                f"warning: checkpoint hidden_layer_sizes={loaded.hidden_layer_sizes} override "
                f"configured {self.config.hidden_layer_sizes}"
            )
        return loaded, iteration, path

    @staticmethod
    def _resolve_device(device_name: str) -> torch.device:
        name = device_name.lower()
        if name == "cpu":
            return torch.device("cpu")
        if name == "cuda":
            if not torch.cuda.is_available():
                raise ValueError("Requested --device cuda, but CUDA is not available")
            return torch.device("cuda")
        if name == "mps":
            if not (torch.backends.mps.is_available() and torch.backends.mps.is_built()):
                raise ValueError("Requested --device mps, but MPS is not available")
            return torch.device("mps")
        raise ValueError("--device must be one of: cpu, cuda, mps")

    def _log(self, message: str) -> None:
        ts = datetime.now().strftime("%H:%M:%S")
        text = f"[{ts}] {message}"
        if self._iteration_bar is not None:
            self._iteration_bar.write(text)
        else:
            print(text, flush=True)

    def request_stop(self) -> None:
        """Ask ``run`` to stop once the current iteration has finished."""
        self.stop_requested.set()

    def _play_game(self, env: KnapsackEngine, max_steps: int) -> Trajectory:
        obs = env.reset()
        history: deque[np.ndarray] = deque([obs], maxlen=self.policy.history_size)
        value_before = env.value()
        traj = Trajectory()

        for step in range(max_steps):
            x = self.policy.stack_history(history)
            action, log_prob = self.policy.sample_action(x)
            done = env.step(action)
            value_after = env.value()
            traj.append(
                Transition(observation=x, action=action, reward=compute_step_reward(value_before, value_after)),
                log_prob,
            )
            value_before = value_after
            if self.on_step is not None:
                self.on_step(env, step + 1)
            if done:
                break
            history.append(env.observe())

        traj.done = env.is_done()
        traj.final_value = env.value()
        return traj

    def train_iteration(
        self,
        environment: KnapsackEngine,
        optimizer: torch.optim.Optimizer,
        discount_rate: float,
        games_per_iteration: int,
        max_steps_per_game: int,
    ) -> list[int]:
        """Play a batch of games with frozen parameters, then take one policy-gradient step.

        Returns the number of steps of every game.
        """
        self.policy.train()
        trajectories: list[Trajectory] = []
        for game in range(games_per_iteration):
            trajectories.append(self._play_game(environment, max_steps_per_game))
            if self.on_game_end is not None:
                self.on_game_end(game + 1, games_per_iteration)

        step_counts = [len(traj) for traj in trajectories]
        B = games_per_iteration
        T = max(step_counts) if step_counts else 0
        final_values = [traj.final_value for traj in trajectories]
        metrics: dict[str, float] = {
            "mean_steps": float(np.mean(step_counts)) if step_counts else 0.0,
            "mean_final_value": float(np.mean(final_values)) if final_values else 0.0,
            "done_rate": float(np.mean([traj.done for traj in trajectories])) if trajectories else 0.0,
            "loss": 0.0,
            "return_mean": 0.0,
            "return_std": 0.0,
        }
        if T == 0:
            self.last_metrics = metrics
            return step_counts

        rewards = torch.zeros((T, B), dtype=torch.float32, device=self.device)
        active_mask = torch.zeros((T, B), dtype=torch.float32, device=self.device)
        lp_columns = []
        for b, traj in enumerate(trajectories):
            n = len(traj)
            if n > 0:
                rewards[:n, b] = torch.as_tensor(traj.rewards(), dtype=torch.float32, device=self.device)
                active_mask[:n, b] = 1.0
                lp = torch.stack(traj.log_probs)
            else:
                lp = torch.zeros((0,), dtype=torch.float32, device=self.device)
            lp_columns.append(torch.cat([lp, torch.zeros((T - n,), dtype=torch.float32, device=self.device)]))
        log_probs = torch.stack(lp_columns, dim=1)  # [T, B]

        returns = discounted_returns(rewards, discount_rate)
        normalized = normalize_returns(returns, active_mask)
        loss = reinforce_loss(log_probs, normalized, active_mask)

        optimizer.zero_grad()
        loss.backward()
        optimizer.step()

        valid_returns = returns[active_mask > 0]
        metrics["loss"] = float(loss.detach().item())
        metrics["return_mean"] = float(valid_returns.mean().item())
        metrics["return_std"] = float(valid_returns.std(correction=0).item())
        self.last_metrics = metrics
        return step_counts

    def _save_checkpoint(self, iteration: int) -> Path:
        metadata = {
            "iteration": iteration,
            "lr": self.config.learning_rate,
            "discount_rate": self.config.discount_rate,
            "games_per_iteration": self.config.games_per_iteration,
            "max_steps_per_game": self.config.max_steps_per_game,
            "budget": self.config.budget,
            "budget_strategy": self.config.budget_strategy,
            "cost_value_multiplier": self.config.cost_value_multiplier,
            "idle_threshold": self.config.idle_threshold,
            "device": self.device.type,
        }
        path = self.ckpt.save(self.policy, iteration=iteration, optimizer=self.optimizer, metadata=metadata)
        self._log(f"checkpoint_saved iteration={iteration} path={path}")
        return path

    def run(self, num_iterations: int | None = None) -> list[float]:
        """Train for ``num_iterations`` (default from config); returns mean steps per iteration."""
        total_to_run = int(self.config.num_iterations if num_iterations is None else num_iterations)
        if total_to_run < 0:
            raise ValueError(f"num_iterations must be >= 0, got {total_to_run}")
        global_iteration = int(self.start_iteration)
        cfg = self.config
        self.stop_requested.clear()

        try:
            self._iteration_bar = tqdm(
                total=total_to_run,
                desc="REINFORCE iterations",
                unit="it",
                mininterval=1.0,
                maxinterval=5.0,
            )
            t0 = time.perf_counter()
            for i in range(total_to_run):
                step_counts = self.train_iteration(
                    self.env,
                    self.optimizer,
                    cfg.discount_rate,
                    cfg.games_per_iteration,
                    cfg.max_steps_per_game,
                )
                t1 = time.perf_counter()
                steps_per_sec = float(sum(step_counts) / max(t1 - t0, 1e-9))
                t0 = t1
                global_iteration += 1

                m = self.last_metrics
                self.mean_step_values.append(m["mean_steps"])
                self.tb_writer.add_scalar("train/mean_steps", m["mean_steps"], global_iteration)
                self.tb_writer.add_scalar("train/steps_per_sec", steps_per_sec, global_iteration)
                self.tb_writer.add_scalar("train/mean_final_value", m["mean_final_value"], global_iteration)
                self.tb_writer.add_scalar("train/done_rate", m["done_rate"], global_iteration)
                self.tb_writer.add_scalar("train/return_mean", m["return_mean"], global_iteration)
                self.tb_writer.add_scalar("train/return_std", m["return_std"], global_iteration)
                self.tb_writer.add_scalar("train/loss", m["loss"], global_iteration)
                self.tb_writer.add_scalar("train/lr", float(cfg.learning_rate), global_iteration)

                if cfg.log_interval > 0 and global_iteration % cfg.log_interval == 0:
                    self._log(
                        "iteration_stats "
                        f"iteration={global_iteration} games={len(step_counts)} "
                        f"mean_steps={m['mean_steps']:.2f} mean_value={m['mean_final_value']:.4f} "
                        f"done_rate={m['done_rate']:.3f} return_mean={m['return_mean']:.4f} "
                        f"return_std={m['return_std']:.4f} loss={m['loss']:.4f} "
                        f"steps_per_sec={steps_per_sec:.1f}"
                    )

                self._iteration_bar.update(1)
                self._iteration_bar.set_postfix(
                    {
                        "steps": f"{m['mean_steps']:.1f}",
                        "value": f"{m['mean_final_value']:.3f}",
                        "sps": f"{steps_per_sec:.1f}",
                        "loss": f"{m['loss']:.3f}",
                    }
                )

                if global_iteration % cfg.save_every == 0:
                    self._save_checkpoint(global_iteration)

                if self.on_iteration_end is not None:
                    self.on_iteration_end(i + 1, total_to_run, step_counts)

                if self.stop_requested.is_set():
                    self._log(f"training_stopped iteration={global_iteration} completed={i + 1}/{total_to_run}")
                    break

            if self.mean_step_values:
                path = plot_mean_steps(self.mean_step_values, Path(self.tb_logdir) / "mean_steps.png")
                self._log(f"mean_steps_plot path={path}")

        finally:
            self.close()

        return list(self.mean_step_values)

    def close(self) -> None:
        self.tb_writer.flush()
        self.tb_writer.close()
        if self._iteration_bar is not None:
            self._iteration_bar.close()
            self._iteration_bar = None


def build_parser(defaults: ExperimentConfig | None = None) -> argparse.ArgumentParser:
    d = defaults or ExperimentConfig()
    p = argparse.ArgumentParser(description="Train REINFORCE policy for the knapsack selection game (PyTorch)")
    p.add_argument("--config", type=str, default=None, help="Path to YAML config (environment/policy/training)")
    # environment
    p.add_argument("--item-count-min", type=int, default=d.item_count_min)
    p.add_argument("--item-count-max", type=int, default=d.item_count_max)
    p.add_argument(
        "--cost-value-multiplier",
        type=parse_optional_float,
        default=d.cost_value_multiplier,
        help="Item scale factor, or 'none' for unscaled draws",
    )
    p.add_argument("--idle-threshold", type=int, default=d.idle_threshold)
    p.add_argument("--budget", type=float, default=d.budget)
    p.add_argument("--budget-strategy", type=str, default=d.budget_strategy, choices=["cumulative", "zero_over_budget"])
    p.add_argument("--extended-features", action=argparse.BooleanOptionalAction, default=d.extended_features)
    # policy
    p.add_argument(
        "--hidden-layer-sizes",
        type=str,
        default=",".join(str(s) for s in d.hidden_layer_sizes),
        help="Comma-separated hidden layer sizes, e.g. 128,64",
    )
    p.add_argument("--history-size", type=int, default=d.history_size, help="Number of stacked recent observations")
    # training
    p.add_argument("--num-iterations", type=int, default=d.num_iterations)
    p.add_argument("--games-per-iteration", type=int, default=d.games_per_iteration)
    p.add_argument("--max-steps-per-game", type=int, default=d.max_steps_per_game)
    p.add_argument("--discount-rate", type=float, default=d.discount_rate)
    p.add_argument("--learning-rate", type=float, default=d.learning_rate)
    p.add_argument("--device", type=str, default=d.device, choices=["cpu", "cuda", "mps"])
    p.add_argument("--tensorboard-logdir", default=d.tensorboard_logdir)
    p.add_argument("--exp-name", type=str, default=d.exp_name, help="Optional experiment name for TensorBoard grouping")
    p.add_argument("--save-every", type=int, default=d.save_every)
    p.add_argument("--checkpoint-dir", default=d.checkpoint_dir)
    p.add_argument("--seed", type=int, default=d.seed)
    p.add_argument("--log-interval", type=int, default=d.log_interval)
    return p


def config_from_args(args: argparse.Namespace) -> ExperimentConfig:
    fields = dict(vars(args))
    fields.pop("config", None)
    return ExperimentConfig(**fields)


def main() -> None:
    # Pre-parse to get --config
    pre = argparse.ArgumentParser(add_help=False)
    pre.add_argument("--config", type=str, default=None)
    pre_args, _ = pre.parse_known_args()

    defaults = None
    if pre_args.config:
        defaults = ExperimentConfig.from_sections(load_config(pre_args.config))

    parser = build_parser(defaults)
    args = parser.parse_args()
    try:
        config = config_from_args(args)
    except ValueError as exc:
        parser.error(str(exc))

    trainer = ReinforceTrainer(config)

    # First Ctrl+C finishes the running iteration, a second one aborts.
    def _handle_sigint(signum, frame):
        trainer.request_stop()
        signal.signal(signal.SIGINT, signal.default_int_handler)

    signal.signal(signal.SIGINT, _handle_sigint)
    trainer.run()


if __name__ == "__main__":
    main()
