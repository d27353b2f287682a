"""Greedy checkpoint evaluation on freshly generated knapsack games."""

from __future__ import annotations

import argparse
import csv
import json
import time
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

import matplotlib
import matplotlib.pyplot as plt
import numpy as np
import torch
from tqdm import tqdm

from knapsack_sim.engine import (
    DEFAULT_COST_VALUE_MULTIPLIER,
    DEFAULT_IDLE_THRESHOLD,
    DEFAULT_ITEM_COUNT_RANGE,
    KnapsackEngine,
)
from knapsack_sim.scoring import BUDGET_STRATEGIES, DEFAULT_BUDGET

from .checkpoint import CheckpointManager
from .config import parse_optional_float
from .policy import KnapsackPolicy
from .types import EpisodeResult

matplotlib.use("Agg")


@dataclass
class EvaluationMetrics:
    episodes: int
    done_count: int
    truncated_count: int
    done_rate: float
    value_min: float
    value_mean: float
    value_max: float
    steps_min: float
    steps_mean: float
    steps_max: float
    items_mean: float
    cost_mean: float
    eval_time_sec: float
    episodes_per_sec: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "episodes": self.episodes,
            "done_count": self.done_count,
            "truncated_count": self.truncated_count,
            "done_rate": self.done_rate,
            "value_min": self.value_min,
            "value_mean": self.value_mean,
            "value_max": self.value_max,
            "steps_min": self.steps_min,
            "steps_mean": self.steps_mean,
            "steps_max": self.steps_max,
            "items_mean": self.items_mean,
            "cost_mean": self.cost_mean,
            "eval_time_sec": self.eval_time_sec,
            "episodes_per_sec": self.episodes_per_sec,
        }


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


def play_greedy_episode(
    policy: KnapsackPolicy,
    engine: KnapsackEngine,
    max_steps: int,
    reset: bool = True,
    on_step: Callable[[KnapsackEngine, int], None] | None = None,
) -> EpisodeResult:
    """Play one game with the sign of each logit as the action.

    With ``reset=False`` the engine's current items are played as-is.
    """
    if policy.extended_features != engine.extended_features:
        raise ValueError(
            f"Policy expects extended_features={policy.extended_features}, "
            f"engine produces extended_features={engine.extended_features}"
        )
    obs = engine.reset() if reset else engine.observe()
    history: deque[np.ndarray] = deque([obs], maxlen=policy.history_size)
    done = engine.is_done()
    steps = 0
    while not done and steps < max_steps:
        action = policy.get_actions(policy.stack_history(history))
        done = engine.step(action)
        steps += 1
        if on_step is not None:
            on_step(engine, steps)
        if not done:
            history.append(engine.observe())

    return EpisodeResult(
        steps=steps,
        done=bool(done),
        final_value=engine.value(),
        num_items=engine.num_items,
        total_cost=engine.total_cost(),
    )


def _aggregate_metrics(results: list[EpisodeResult], eval_time_sec: float) -> EvaluationMetrics:
    episodes = len(results)
    done = np.asarray([r.done for r in results], dtype=bool)
    values = np.asarray([r.final_value for r in results], dtype=np.float64)
    steps = np.asarray([r.steps for r in results], dtype=np.int64)
    done_count = int(done.sum())

    def _stats(arr: np.ndarray) -> tuple[float, float, float]:
        if arr.size == 0:
            return 0.0, 0.0, 0.0
        return float(np.min(arr)), float(np.mean(arr)), float(np.max(arr))

    value_min, value_mean, value_max = _stats(values)
    steps_min, steps_mean, steps_max = _stats(steps)
    return EvaluationMetrics(
        episodes=episodes,
        done_count=done_count,
        truncated_count=episodes - done_count,
        done_rate=float(done_count / episodes) if episodes > 0 else 0.0,
        value_min=value_min,
        value_mean=value_mean,
        value_max=value_max,
        steps_min=steps_min,
        steps_mean=steps_mean,
        steps_max=steps_max,
        items_mean=float(np.mean([r.num_items for r in results])) if episodes > 0 else 0.0,
        cost_mean=float(np.mean([r.total_cost for r in results])) if episodes > 0 else 0.0,
        eval_time_sec=float(eval_time_sec),
        episodes_per_sec=float(episodes / max(eval_time_sec, 1e-9)),
    )


def _plot_results(results: list[EpisodeResult], output_dir: Path, prefix: str) -> tuple[Path, Path]:
    items = np.array([r.num_items for r in results], dtype=np.int64)
    values = np.array([r.final_value for r in results], dtype=np.float64)
    steps = np.array([r.steps for r in results], dtype=np.int64)

    fig1 = plt.figure(figsize=(10, 5))
    ax1 = fig1.add_subplot(111)
    ax1.scatter(items, values, s=14, alpha=0.7)
    ax1.set_title("Greedy Evaluation: Final Value vs Item Count")
    ax1.set_xlabel("Items")
    ax1.set_ylabel("Final knapsack value")
    ax1.grid(True, alpha=0.3)
    value_path = output_dir / f"{prefix}_value.png"
    fig1.tight_layout()
    fig1.savefig(value_path, dpi=160)
    plt.close(fig1)

    fig2 = plt.figure(figsize=(10, 5))
    ax2 = fig2.add_subplot(111)
    ax2.hist(steps, bins=min(30, max(1, len(set(steps.tolist())))), alpha=0.8)
    ax2.set_title("Greedy Evaluation: Steps per Game")
    ax2.set_xlabel("Steps")
    ax2.set_ylabel("Games")
    ax2.grid(True, alpha=0.3)
    steps_path = output_dir / f"{prefix}_steps.png"
    fig2.tight_layout()
    fig2.savefig(steps_path, dpi=160)
    plt.close(fig2)

    return value_path, steps_path


def _save_reports(
    metrics: EvaluationMetrics,
    results: list[EpisodeResult],
    output_dir: Path,
    prefix: str,
    args: argparse.Namespace,
    checkpoint_path: Path,
    loaded_iteration: int,
    budget: float,
    budget_strategy: str,
) -> tuple[Path, Path]:
    csv_path = output_dir / f"{prefix}_episodes.csv"
    json_path = output_dir / f"{prefix}_metrics.json"

    fieldnames = ["episode", "num_items", "steps", "done", "final_value", "total_cost"]
    with csv_path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=fieldnames)
        writer.writeheader()
        for i, r in enumerate(results):
            writer.writerow(
                {
                    "episode": i,
                    "num_items": r.num_items,
                    "steps": r.steps,
                    "done": int(r.done),
                    "final_value": r.final_value,
                    "total_cost": r.total_cost,
                }
            )

    payload = {
        "config": {
            "checkpoint_dir": args.checkpoint_dir,
            "checkpoint_path": str(checkpoint_path),
            "loaded_iteration": loaded_iteration,
            "device": args.device,
            "episodes": int(args.episodes),
            "max_steps": int(args.max_steps),
            "item_count_min": int(args.item_count_min),
            "item_count_max": int(args.item_count_max),
            "cost_value_multiplier": args.cost_value_multiplier,
            "budget": budget,
            "budget_strategy": budget_strategy,
            "seed": args.seed,
        },
        "metrics": metrics.to_dict(),
    }
    with json_path.open("w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2)

    return csv_path, json_path


def _resolve_scoring(args: argparse.Namespace, metadata: dict[str, Any]) -> tuple[float, str]:
    """Explicit flags win, then the settings the checkpoint was trained with, then defaults."""
    budget = args.budget if args.budget is not None else metadata.get("budget", DEFAULT_BUDGET)
    strategy = args.budget_strategy or metadata.get("budget_strategy", "cumulative")
    return float(budget), str(strategy)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Greedy evaluation of a trained knapsack policy checkpoint")
    p.add_argument("--checkpoint-dir", default="checkpoints")
    p.add_argument("--checkpoint-path", default=None, help="Optional explicit .pt checkpoint path")
    p.add_argument("--device", default="cpu", choices=["cpu", "cuda", "mps"])
    p.add_argument("--episodes", type=int, default=100)
    p.add_argument("--max-steps", type=int, default=500)
    p.add_argument("--item-count-min", type=int, default=DEFAULT_ITEM_COUNT_RANGE[0])
    p.add_argument("--item-count-max", type=int, default=DEFAULT_ITEM_COUNT_RANGE[1])
    p.add_argument(
        "--cost-value-multiplier",
        type=parse_optional_float,
        default=DEFAULT_COST_VALUE_MULTIPLIER,
        help="Item scale factor, or 'none' for unscaled draws",
    )
    p.add_argument("--idle-threshold", type=int, default=DEFAULT_IDLE_THRESHOLD)
    p.add_argument("--budget", type=float, default=None, help="Defaults to the budget stored in the checkpoint")
    p.add_argument(
        "--budget-strategy",
        default=None,
        choices=sorted(BUDGET_STRATEGIES),
        help="Defaults to the strategy stored in the checkpoint",
    )
    p.add_argument("--seed", type=int, default=None)
    p.add_argument("--output-dir", default="eval_reports")
    p.add_argument("--output-prefix", default="knapsack_eval")
    p.add_argument("--render", action="store_true", help="Render the final state of the last game")
    p.add_argument("--progress", default="on", choices=["on", "off"])
    return p


def run_evaluation(args: argparse.Namespace) -> dict[str, Any]:
    if args.episodes < 1:
        raise ValueError("--episodes must be >= 1")
    if args.max_steps < 1:
        raise ValueError("--max-steps must be >= 1")

    device = _resolve_device(args.device)
    ckpt = CheckpointManager(args.checkpoint_dir)
    if args.checkpoint_path:
        checkpoint_path = Path(args.checkpoint_path)
    else:
        checkpoint_path = ckpt.latest_path()
        if checkpoint_path is None:
            raise RuntimeError(f"No checkpoint found in '{args.checkpoint_dir}'")
    policy, loaded_iteration = ckpt.load(checkpoint_path)
    budget, budget_strategy = _resolve_scoring(args, ckpt.load_metadata(checkpoint_path))

    policy.to(device)
    policy.eval()
    engine = KnapsackEngine(
        item_count_range=(args.item_count_min, args.item_count_max),
        cost_value_multiplier=args.cost_value_multiplier,
        idle_threshold=args.idle_threshold,
        budget=budget,
        budget_strategy=budget_strategy,
        extended_features=policy.extended_features,
        seed=args.seed,
    )

    output_dir = Path(args.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    print(
        "evaluation_init "
        f"checkpoint={checkpoint_path} loaded_iteration={loaded_iteration} "
        f"device={device.type} episodes={args.episodes} max_steps={args.max_steps} "
        f"items={args.item_count_min}..{args.item_count_max} budget={budget} budget_strategy={budget_strategy}",
        flush=True,
    )

    t0 = time.perf_counter()
    episode_iter = range(int(args.episodes))
    if args.progress == "on":
        episode_iter = tqdm(episode_iter, desc="greedy games", unit="game", mininterval=1.0, leave=False)
    results = [play_greedy_episode(policy, engine, int(args.max_steps)) for _ in episode_iter]
    metrics = _aggregate_metrics(results, time.perf_counter() - t0)

    value_plot, steps_plot = _plot_results(results, output_dir, args.output_prefix)
    csv_path, json_path = _save_reports(
        metrics, results, output_dir, args.output_prefix, args, checkpoint_path, loaded_iteration, budget, budget_strategy
    )
    render_path = None
    if args.render:
        from knapsack_sim.render import render_knapsack

        render_path = render_knapsack(engine, output_dir / f"{args.output_prefix}_final_state.png")

    print(
        "evaluation_summary "
        f"value_mean={metrics.value_mean:.4f} value_max={metrics.value_max:.4f} "
        f"steps_mean={metrics.steps_mean:.2f} done_rate={metrics.done_rate:.3f} "
        f"value_plot={value_plot} steps_plot={steps_plot} csv={csv_path} json={json_path}",
        flush=True,
    )

    return {
        "metrics": metrics,
        "results": results,
        "value_plot": value_plot,
        "steps_plot": steps_plot,
        "csv": csv_path,
        "json": json_path,
        "render": render_path,
        "budget": budget,
        "budget_strategy": budget_strategy,
        "checkpoint_path": checkpoint_path,
        "loaded_iteration": loaded_iteration,
    }


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()
    try:
        run_evaluation(args)
    except ValueError as exc:
        parser.error(str(exc))


if __name__ == "__main__":
    main()
