"""Core data types for the seqpatterns discovery pipeline.

This module defines the fundamental data structures shared by alignment,
clustering and model merging: the feature sequence read interface, the
edit nodes of an alignment path and the records produced by clustering
and state merging.
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol, Tuple

import numpy as np


class Sequence(Protocol):
    """Read interface every aligned sequence must offer.

    Feature extraction lives outside this package; anything with a frame
    count and a per-frame vector can be aligned, clustered and modelled.
    """

    def __len__(self) -> int: ...

    def vec(self, t: int) -> np.ndarray: ...

    @property
    def n_dims(self) -> int: ...


@dataclass(frozen=True)
class FeatureSequence:
    """A sequence of feature frames held as a dense ``(T, D)`` array.

    Attributes:
        frames: Feature matrix, one row per frame
        source: Optional identifier (usually the file the frames came from)
    """
    frames: np.ndarray
    source: Optional[str] = None

    def __post_init__(self) -> None:
        frames = np.asarray(self.frames, dtype=np.float64)
        if frames.ndim == 1:
            frames = frames.reshape(-1, 1)
        if frames.ndim != 2:
            raise ValueError(f"Feature frames must be 2-D, got shape {frames.shape}")
        frames.setflags(write=False)
        object.__setattr__(self, "frames", frames)

    def __len__(self) -> int:
        return int(self.frames.shape[0])

    def vec(self, t: int) -> np.ndarray:
        return self.frames[t]

    @property
    def n_dims(self) -> int:
        return int(self.frames.shape[1])


@dataclass(frozen=True)
class Slice:
    """A ``[start, stop)`` frame range of another sequence.

    Slices expose the same read interface as the sequence they view, so a
    region found by region extraction can be aligned directly.
    """
    start: int
    stop: int
    sequence: Sequence

    def __len__(self) -> int:
        return self.stop - self.start

    def vec(self, t: int) -> np.ndarray:
        return self.sequence.vec(self.start + t)

    @property
    def n_dims(self) -> int:
        return self.sequence.n_dims

    def extract(self) -> FeatureSequence:
        """Materialise the range as a standalone feature sequence."""
        frames = np.stack([self.vec(t) for t in range(len(self))]) if len(self) > 0 \
            else np.zeros((0, self.n_dims), dtype=np.float64)
        source = getattr(self.sequence, "source", None)
        return FeatureSequence(frames=frames, source=source)


class AlignmentLabel(str, Enum):
    """Edit operation that produced a cell of the warping path."""
    MATCH = "match"
    INSERTION = "insertion"
    DELETION = "deletion"


@dataclass(frozen=True)
class AlignmentNode:
    """One step of a warping path.

    Attributes:
        prev_i: Row of the predecessor cell
        prev_j: Column of the predecessor cell
        label: Edit operation leading from the predecessor to this cell
        distance: Local distance between the two frames of this cell
        cost: Cumulative weighted cost along the path up to this cell
    """
    prev_i: int
    prev_j: int
    label: AlignmentLabel
    distance: float
    cost: float

    @property
    def cur(self) -> Tuple[int, int]:
        """Grid coordinate of this node (1-based frame indices)."""
        if self.label is AlignmentLabel.MATCH:
            return self.prev_i + 1, self.prev_j + 1
        if self.label is AlignmentLabel.INSERTION:
            return self.prev_i + 1, self.prev_j
        return self.prev_i, self.prev_j + 1


class MergeKind(str, Enum):
    """What kind of roots a clustering step joined (leaf or internal)."""
    SEQUENCE_TO_SEQUENCE = "sequence2sequence"
    SEQUENCE_TO_CLUSTER = "sequence2cluster"
    CLUSTER_TO_SEQUENCE = "cluster2sequence"
    CLUSTER_TO_CLUSTER = "cluster2cluster"


@dataclass(frozen=True)
class ClusteringOperation:
    """A single dendrogram step: roots ``merge_i`` and ``merge_j`` join under ``into``.

    Invariant: ``into`` is larger than every id created before it.
    """
    merge_i: int
    merge_j: int
    into: int
    distance: float
    operation: MergeKind


@dataclass(frozen=True)
class MergeOperation:
    """Candidate merge of two automaton states."""
    state_i: int
    state_j: int
    distance: float
    is_from_alignment: bool

    @property
    def key(self) -> Tuple[int, int]:
        """Unordered identity of the state pair."""
        return (min(self.state_i, self.state_j), max(self.state_i, self.state_j))
