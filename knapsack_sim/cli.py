"""CLI entrypoint for the knapsack simulator."""

from __future__ import annotations

import argparse
import json

import numpy as np

from .engine import DEFAULT_COST_VALUE_MULTIPLIER, DEFAULT_IDLE_THRESHOLD, KnapsackEngine
from .scoring import BUDGET_STRATEGIES


def _load_items(items_json: str | None, items_file: str | None):
    if items_json and items_file:
        raise ValueError("Use only one of --items-json or --items-file")
    if items_json:
        return json.loads(items_json)
    if items_file:
        with open(items_file, "r", encoding="utf-8") as f:
            return json.load(f)
    return None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Knapsack selection game simulator")
    sub = parser.add_subparsers(dest="mode", required=True)

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--min-items", type=int, default=50)
    common.add_argument("--max-items", type=int, default=1000)
    common.add_argument("--cost-value-multiplier", type=float, default=DEFAULT_COST_VALUE_MULTIPLIER)
    common.add_argument("--idle-threshold", type=int, default=DEFAULT_IDLE_THRESHOLD)
    common.add_argument("--budget-strategy", default="cumulative", choices=sorted(BUDGET_STRATEGIES))
    common.add_argument("--max-steps", type=int, default=100)
    common.add_argument("--seed", type=int, default=None)
    common.add_argument("--items-json", type=str, default=None, help='{"costs": [...], "values": [...]}')
    common.add_argument("--items-file", type=str, default=None)
    common.add_argument("--render", type=str, default=None, help="Write a PNG of the final state")

    sub.add_parser("random", parents=[common], help="Play with uniformly random action signals")

    constant = sub.add_parser("constant", parents=[common], help="Play one fixed action every step")
    constant.add_argument("--move", type=float, default=1.0, help="> 0 moves left, otherwise right")
    constant.add_argument("--membership", type=float, default=1.0, help="> 0 marks in, otherwise out")

    return parser


def run(args: argparse.Namespace) -> dict:
    engine = KnapsackEngine(
        item_count_range=(args.min_items, args.max_items),
        cost_value_multiplier=args.cost_value_multiplier,
        idle_threshold=args.idle_threshold,
        budget_strategy=args.budget_strategy,
        seed=args.seed,
    )
    items = _load_items(args.items_json, args.items_file)
    if items is not None:
        engine.set_items(items["costs"], items["values"], items.get("in_knapsack"))

    rng = np.random.default_rng(args.seed)
    done = engine.is_done()
    while not done and engine.step_count < args.max_steps:
        if args.mode == "random":
            action = rng.uniform(-1.0, 1.0, size=2)
        else:
            action = (args.move, args.membership)
        done = engine.step(action)

    snapshot = engine.snapshot()
    summary = {key: snapshot[key] for key in ("score", "total_cost", "step_count", "idle_count", "done")}
    summary["num_items"] = engine.num_items
    if args.render:
        from .render import render_knapsack

        summary["render"] = str(render_knapsack(engine, args.render))
    return summary


def main():
    parser = build_parser()
    args = parser.parse_args()
    try:
        summary = run(args)
    except ValueError as exc:
        parser.error(str(exc))
    print(json.dumps(summary, indent=2))


if __name__ == "__main__":
    main()
