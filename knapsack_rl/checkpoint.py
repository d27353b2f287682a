"""Checkpoint management for PyTorch policy weights."""

from __future__ import annotations

import re
from datetime import datetime
from pathlib import Path
from typing import Any, Callable

import torch

from .policy import KnapsackPolicy


class CheckpointManager:
    FILE_PATTERN = re.compile(r"policy_it(\d+)\.pt$")

    def __init__(self, checkpoint_dir: str = "checkpoints", log: Callable[[str], None] | None = None):
        self.dir = Path(checkpoint_dir)
        self._log = log or (lambda message: print(message, flush=True))
        self.dir.mkdir(parents=True, exist_ok=True)

    def _path_for_iteration(self, iteration: int) -> Path:
        return self.dir / f"policy_it{iteration:07d}.pt"

    def save(
        self,
        policy: KnapsackPolicy,
        iteration: int,
        optimizer: torch.optim.Optimizer | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Path:
        path = self._path_for_iteration(iteration)
        payload: dict[str, Any] = {
            "iteration": int(iteration),
            "model_state_dict": policy.state_dict(),
            "policy_config": policy.policy_config(),
            "date_saved": datetime.now().isoformat(),
            "metadata": metadata or {},
        }
        if optimizer is not None:
            payload["optimizer_state_dict"] = optimizer.state_dict()
        torch.save(payload, path)
        return path

    def _sorted_paths(self) -> list[tuple[int, Path]]:
        found: list[tuple[int, Path]] = []
        for p in self.dir.glob("policy_it*.pt"):
            m = self.FILE_PATTERN.search(p.name)
            if m:
                found.append((int(m.group(1)), p))
        found.sort(key=lambda item: item[0], reverse=True)
        return found

    def latest_path(self) -> Path | None:
        found = self._sorted_paths()
        return found[0][1] if found else None

    @staticmethod
    def _read(path: Path) -> dict[str, Any]:
        data = torch.load(path, map_location="cpu")
        if not isinstance(data, dict) or "model_state_dict" not in data or "policy_config" not in data:
            raise ValueError(f"Checkpoint {path} is not a valid knapsack policy checkpoint")
        return data

    def load(self, path: str | Path) -> tuple[KnapsackPolicy, int]:
        path = Path(path)
        data = self._read(path)
        try:
            policy = KnapsackPolicy.from_state_dict(data["model_state_dict"], **data["policy_config"])
        except (RuntimeError, TypeError) as exc:
            raise ValueError(f"Checkpoint {path} does not match its policy config: {exc}") from exc
        return policy, int(data.get("iteration", 0))

    def load_latest(self) -> tuple[KnapsackPolicy | None, int]:
        policy, iteration, _ = self.load_latest_with_path()
        return policy, iteration

    def load_latest_with_path(self) -> tuple[KnapsackPolicy | None, int, Path | None]:
        """Load the newest loadable checkpoint; incompatible files are reported and skipped.

        The returned path is the file that was actually loaded, which is not
        necessarily ``latest_path()``.
        """
        for _, path in self._sorted_paths():
            try:
                policy, iteration = self.load(path)
            except ValueError as exc:
                self._log(f"checkpoint_skipped path={path} reason={exc}")
                continue
            return policy, iteration, path
        return None, 0, None

    def load_optimizer_state(self, path: str | Path) -> dict[str, Any] | None:
        return self._read(Path(path)).get("optimizer_state_dict")

    def load_metadata(self, path: str | Path) -> dict[str, Any]:
        return dict(self._read(Path(path)).get("metadata") or {})

    def status(self) -> dict[str, Any] | None:
        path = self.latest_path()
        if path is None:
            return None
        data = self._read(path)
        saved = data.get("date_saved")
        return {
            "date_saved": datetime.fromisoformat(saved) if saved else datetime.fromtimestamp(path.stat().st_mtime),
            "iteration": int(data.get("iteration", 0)),
            "path": path,
        }

    def remove(self) -> int:
        removed = 0
        for _, path in self._sorted_paths():
            path.unlink()
            removed += 1
        return removed
