"""Training curves: mean steps per iteration and log-based run comparison."""

from __future__ import annotations

import argparse
import re
from pathlib import Path

import matplotlib
import matplotlib.pyplot as plt
import numpy as np

matplotlib.use("Agg")

STATS_PATTERN = re.compile(r"iteration=(\d+).*?mean_steps=([0-9.]+).*?mean_value=(-?[0-9.]+)")


def parse_log(log_path: Path) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Return (iterations, mean_steps, mean_value) from ``iteration_stats`` lines."""
    iterations = []
    mean_steps = []
    mean_values = []

    with open(log_path, "r", encoding="utf-8") as f:
        for line in f:
            if "iteration_stats" not in line:
                continue
            m = STATS_PATTERN.search(line)
            if m:
                iterations.append(int(m.group(1)))
                mean_steps.append(float(m.group(2)))
                mean_values.append(float(m.group(3)))

    return (
        np.array(iterations, dtype=np.int64),
        np.array(mean_steps, dtype=np.float64),
        np.array(mean_values, dtype=np.float64),
    )


def smooth_xy(x, y, window: int):
    if window <= 1:
        return x, y
    if len(y) < window:
        return x, y
    y_s = np.convolve(y, np.ones(window) / window, mode="valid")
    x_s = x[window - 1 :]
    return x_s, y_s


def plot_mean_steps(mean_steps: list[float], path: str | Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fig = plt.figure(figsize=(8, 5))
    ax = fig.add_subplot(111)
    ax.plot(np.arange(1, len(mean_steps) + 1), mean_steps, marker="o", linewidth=1.8)
    ax.set_xlabel("Training Iteration")
    ax.set_ylabel("Mean Steps Per Game")
    ax.grid(True, alpha=0.3)
    fig.tight_layout()
    fig.savefig(path, dpi=160)
    plt.close(fig)
    return path


def main():
    parser = argparse.ArgumentParser(description="Compare mean knapsack value curves from two training logs")
    parser.add_argument("--log-a", required=True, help="Path to the first run's log")
    parser.add_argument("--log-b", required=True, help="Path to the second run's log")
    parser.add_argument("--label-a", default="Run A")
    parser.add_argument("--label-b", default="Run B")
    parser.add_argument("--metric", default="value", choices=["value", "steps"])
    parser.add_argument("--output", default="compare_mean_value.png", help="Output image path")
    parser.add_argument("--smooth", type=int, default=0, help="Moving average window (0/1 = off)")
    args = parser.parse_args()

    curves = []
    for log, label in ((args.log_a, args.label_a), (args.log_b, args.label_b)):
        log_path = Path(log)
        if not log_path.exists():
            raise FileNotFoundError(f"Log not found: {log_path}")
        x, steps, values = parse_log(log_path)
        if len(x) == 0:
            raise RuntimeError(f"No iteration_stats found in log: {log_path}")
        y = values if args.metric == "value" else steps
        curves.append((*smooth_xy(x, y, args.smooth), label))

    plt.figure(figsize=(9, 5))
    for x, y, label in curves:
        plt.plot(x, y, linewidth=2, label=label)

    plt.xlabel("Iteration")
    plt.ylabel("Mean final value" if args.metric == "value" else "Mean steps per game")
    plt.title("Training comparison")
    plt.grid(True)
    plt.legend()
    plt.tight_layout()

    out = Path(args.output)
    out.parent.mkdir(parents=True, exist_ok=True)
    plt.savefig(out, dpi=300)
    print(f"Saved: {out.resolve()}")


if __name__ == "__main__":
    main()
