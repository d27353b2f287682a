"""Static rendering of a knapsack engine snapshot."""

from __future__ import annotations

from pathlib import Path

import matplotlib
import matplotlib.pyplot as plt
import numpy as np

from .engine import KnapsackEngine

matplotlib.use("Agg")

ROWS = ("value", "cost", "ROI")
SEPARATOR_FRACTION = 0.02


def _stacked_segments(amounts: np.ndarray, in_knapsack: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray, float]:
    """Order in-knapsack items first, then a separator gap, then the rest.

    Returns (lefts, widths, ordered_amounts, separator_left), all normalised to a
    unit-length bar.
    """
    ordered = np.concatenate([amounts[in_knapsack], amounts[~in_knapsack]])
    total = float(ordered.sum())
    gap = SEPARATOR_FRACTION * total if total > 0 else 1.0
    scale = 1.0 / (total + gap)
    widths = ordered * scale
    lefts = np.concatenate([[0.0], np.cumsum(widths)[:-1]]) if widths.size else widths
    n_in = int(in_knapsack.sum())
    separator_left = float(widths[:n_in].sum())
    lefts[n_in:] += gap * scale
    return lefts, widths, ordered, separator_left


def render_knapsack(engine: KnapsackEngine, path: str | Path, title: str | None = None) -> Path:
    """Write a PNG with value/cost/ROI bars split into in-knapsack and out items."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    costs = engine.costs
    values = engine.values
    member = engine.in_knapsack.astype(bool)
    amounts = {"value": values, "cost": costs, "ROI": values / costs}

    fig = plt.figure(figsize=(10, 4))
    ax = fig.add_subplot(111)
    cmap = plt.get_cmap("jet")
    for row, name in enumerate(ROWS):
        data = amounts[name]
        lefts, widths, ordered, separator_left = _stacked_segments(data, member)
        max_amount = float(ordered.max()) if ordered.size else 1.0
        colors = cmap(ordered / max_amount if max_amount > 0 else ordered)
        ax.barh(np.full(widths.shape, row), widths, left=lefts, color=colors, height=0.8)
        ax.barh(row, SEPARATOR_FRACTION / (1.0 + SEPARATOR_FRACTION), left=separator_left, color="black", height=0.8)

    ax.set_yticks(range(len(ROWS)))
    ax.set_yticklabels(ROWS)
    ax.invert_yaxis()
    ax.set_xlim(0.0, 1.0)
    ax.set_xticks([0.05, 0.95])
    ax.set_xticklabels(["in", "out"])
    cursor = engine.cursor
    ax.set_title(
        title
        or f"score={engine.value():.4f} cost={engine.total_cost():.4f} "
        f"items={engine.num_items} cursor={cursor.index} steps={engine.step_count}"
    )
    fig.tight_layout()
    fig.savefig(path, dpi=120)
    plt.close(fig)
    return path
