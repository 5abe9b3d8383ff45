"""Small numeric helpers shared by alignment, clustering and model merging."""

from __future__ import annotations

import math
from typing import Iterable

import numpy as np

from seqpatterns.util.types import Sequence


def percentile(values: Iterable[float], perc: float) -> float:
    """Return the value at rank ``floor(len * perc)`` of the sorted finite values.

    ``percentile(x, 0.5)`` is the (upper) median. Non-finite values are
    dropped before sorting, so unreachable alignments never shift the
    threshold. An empty input yields ``inf``.

    Args:
        values: Sample values (may contain ``nan``/``inf``)
        perc: Fraction in ``[0, 1]``

    Returns:
        The selected order statistic
    """
    if not isinstance(values, np.ndarray):
        values = list(values)
    arr = np.asarray(values, dtype=np.float64).reshape(-1)
    arr = np.sort(arr[np.isfinite(arr)])
    if arr.size == 0:
        return math.inf
    idx = int(arr.size * perc)
    idx = min(max(idx, 0), arr.size - 1)
    return float(arr[idx])


def trailing_moving_average(values: np.ndarray, k: int) -> np.ndarray:
    """Mean of the ``k`` values strictly before each position.

    Positions with fewer than ``k`` predecessors get ``0.0``.
    """
    values = np.asarray(values, dtype=np.float64).reshape(-1)
    out = np.zeros_like(values)
    if k <= 0 or values.size <= k:
        return out
    csum = np.concatenate(([0.0], np.cumsum(values)))
    idx = np.arange(k, values.size)
    out[k:] = (csum[idx] - csum[idx - k]) / k
    return out


def consecutive_distances(frames: np.ndarray) -> np.ndarray:
    """Distance of every frame to its predecessor (length ``T - 1``)."""
    frames = np.asarray(frames, dtype=np.float64)
    if frames.shape[0] < 2:
        return np.zeros(0, dtype=np.float64)
    return np.linalg.norm(frames[1:] - frames[:-1], axis=1)


def frame_matrix(sequence: Sequence) -> np.ndarray:
    """Return the frames of ``sequence`` as a ``(T, D)`` float array."""
    frames = getattr(sequence, "frames", None)
    if isinstance(frames, np.ndarray) and frames.ndim == 2:
        return np.asarray(frames, dtype=np.float64)
    n = len(sequence)
    if n == 0:
        return np.zeros((0, sequence.n_dims), dtype=np.float64)
    return np.stack([np.asarray(sequence.vec(t), dtype=np.float64) for t in range(n)])
