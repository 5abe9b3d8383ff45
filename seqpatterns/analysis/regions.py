"""Region extraction: find the active stretches of a long feature sequence.

A frame's activity is the standard deviation across its feature dimensions,
smoothed with a trailing moving average. Frames above a percentile of that
activity are treated as signal, everything else as background; every long
enough run of signal frames becomes a region.
"""

from __future__ import annotations

from typing import List

import numpy as np

from seqpatterns.analysis.numerics import frame_matrix, percentile, trailing_moving_average
from seqpatterns.util.types import Sequence, Slice


def frame_activity(sequence: Sequence, k: int) -> np.ndarray:
    """Per-frame standard deviation across dimensions, smoothed over the ``k`` previous frames."""
    frames = frame_matrix(sequence)
    if frames.shape[0] == 0:
        return np.zeros(0, dtype=np.float64)
    deltas = frames.std(axis=1)
    if k <= 0:
        return deltas
    return trailing_moving_average(deltas, k)


def interesting_ranges(
    sequence: Sequence,
    moving_average: int,
    perc: float,
    min_len: int,
) -> List[Slice]:
    """Extract the regions whose smoothed activity stays at or above the ``perc`` percentile.

    Recording is on at the first frame. A region closes on the first frame
    that falls below the threshold and is kept only if it spans more than
    ``min_len`` frames. A region still open at the end is dropped.

    Args:
        sequence: Sequence to segment
        moving_average: Width of the trailing moving average
        perc: Percentile in ``[0, 1]`` of the smoothed activity used as threshold
        min_len: Regions must be strictly longer than this

    Returns:
        Slices over ``sequence`` in temporal order
    """
    activity = frame_activity(sequence, moving_average)
    if activity.size == 0:
        return []
    th = percentile(activity, perc)

    ranges: List[Slice] = []
    start = 0
    recording = True
    for i, value in enumerate(activity):
        if value >= th and not recording:
            start = i
            recording = True
        if value < th and recording:
            recording = False
            if i - start > min_len:
                ranges.append(Slice(start=start, stop=i, sequence=sequence))
    return ranges
