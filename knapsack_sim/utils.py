"""Array helpers shared by the simulator."""

from __future__ import annotations

from typing import Sequence

import numpy as np


def pad(
    x: np.ndarray,
    paddings: Sequence[tuple[int, int]],
    constant_value: float = 0.0,
) -> np.ndarray:
    """Constant-pad ``x`` with ``paddings`` given as (before, after) per axis.

    An array with an empty axis degrades to a fill of the padded shape, so
    slicing an empty partition off an item set still yields a full-size array.
    """
    arr = np.asarray(x)
    pads = [(int(before), int(after)) for before, after in paddings]
    if len(pads) != arr.ndim:
        raise ValueError(f"paddings must have one (before, after) pair per axis, got {len(pads)} for ndim={arr.ndim}")
    if any(before < 0 or after < 0 for before, after in pads):
        raise ValueError(f"paddings must be non-negative, got {pads}")

    if arr.size == 0:
        shape = tuple(dim + before + after for dim, (before, after) in zip(arr.shape, pads))
        return np.full(shape, constant_value, dtype=arr.dtype)
    return np.pad(arr, pads, mode="constant", constant_values=constant_value)
