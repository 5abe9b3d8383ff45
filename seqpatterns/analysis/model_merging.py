"""Aligned model merging: compress a cluster into a compact Markov model.

The model starts as a chain automaton with one state per (member, frame).
States are then merged in two ways:
- internal merges collapse consecutive near-identical frames of one member
- alignment merges collapse frames that DTW matched across two members
  when the smoothed local distance stays below a corpus-wide threshold

Merged states are tracked in a union-find forest; the lower state index
always absorbs the higher one. ``shrink`` renumbers the surviving roots and
normalises the result into a ``HiddenMarkovModel``.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Sequence as SequenceT, Tuple

import numpy as np

from seqpatterns.analysis.hmm import HiddenMarkovModel
from seqpatterns.analysis.numerics import (
    consecutive_distances,
    frame_matrix,
    percentile,
    trailing_moving_average,
)
from seqpatterns.util.types import AlignmentLabel, AlignmentNode, MergeOperation, Sequence


logger = logging.getLogger(__name__)

AlignedPath = Tuple[int, int, List[AlignmentNode]]


class ModelMerging:
    """Mutable chain automaton plus the union-find state of its merges."""

    def __init__(self, members: SequenceT[np.ndarray]):
        self.members = [np.asarray(frames, dtype=np.float64) for frames in members]
        lengths = [frames.shape[0] for frames in self.members]
        self.offsets = np.cumsum([0] + lengths)[:-1].astype(int)
        self.lengths = lengths
        self.n_states = int(sum(lengths))

        states = np.concatenate(self.members, axis=0) if self.n_states > 0 else np.zeros((0, 0))
        self.dim = int(states.shape[1]) if self.n_states > 0 else 0
        self.means = states.copy()
        self.frame_sum = states.copy()
        self.frame_sumsq = states * states
        self.frame_count = np.ones(self.n_states, dtype=np.float64)

        self.start = np.zeros(self.n_states, dtype=np.float64)
        self.stop = np.zeros(self.n_states, dtype=np.float64)
        self.trans = np.zeros((self.n_states, self.n_states), dtype=np.float64)
        for member, length in enumerate(lengths):
            if length == 0:
                continue
            first = self.state(member, 0)
            self.start[first] = 1.0
            self.stop[first + length - 1] = 1.0
            for t in range(length - 1):
                self.trans[first + t, first + t + 1] = 1.0

        self.is_segmental = np.zeros(self.n_states, dtype=bool)
        self.merge_parent = list(range(self.n_states))

    @classmethod
    def from_sequences(cls, sequences: Iterable[Sequence]) -> "ModelMerging":
        """Build the initial chain automaton, one state per frame of every member."""
        return cls([frame_matrix(sequence) for sequence in sequences])

    def state(self, member: int, t: int) -> int:
        """State index of frame ``t`` of member ``member``."""
        if not 0 <= t < self.lengths[member]:
            raise IndexError(f"Frame {t} out of range for member {member}")
        return int(self.offsets[member]) + t

    def find(self, state: int) -> int:
        """Root of ``state`` in the merge forest (walking find)."""
        p = state
        while p != self.merge_parent[p]:
            p = self.merge_parent[p]
        return p

    # -------------------------------------------------------------------------
    # Merge candidates
    # -------------------------------------------------------------------------

    def internal_merges(self, member: int, perc: float) -> List[MergeOperation]:
        """Candidates collapsing a frame into its predecessor within one member.

        The threshold is the ``perc`` percentile of the member's own
        consecutive-frame distances.
        """
        distances = consecutive_distances(self.members[member])
        if distances.size == 0:
            return []
        th = percentile(distances, perc)
        operations = []
        for t in range(1, self.lengths[member]):
            dist = float(distances[t - 1])
            if dist < th:
                operations.append(MergeOperation(
                    state_i=self.state(member, t),
                    state_j=self.state(member, t - 1),
                    distance=dist,
                    is_from_alignment=False,
                ))
        return operations

    def merges_from_alignment(
        self,
        x: int,
        y: int,
        path: List[AlignmentNode],
        th: float,
        k: int,
    ) -> List[MergeOperation]:
        """Candidates joining frames of ``x`` and ``y`` matched on the warping path.

        The distance of step ``t`` is its raw local distance for the first
        ``k`` steps and the mean of the ``k`` preceding raw distances after.
        ``k = 0`` disables smoothing.
        """
        if not path:
            return []
        distances = np.array([node.distance for node in path], dtype=np.float64)
        moving_avg = trailing_moving_average(distances, k) if k > 0 else distances
        operations = []
        for t, node in enumerate(path):
            if node.label is not AlignmentLabel.MATCH:
                continue
            distance = float(distances[t]) if t < k else float(moving_avg[t])
            if distance < th:
                i, j = node.cur
                operations.append(MergeOperation(
                    state_i=self.state(x, i - 1),
                    state_j=self.state(y, j - 1),
                    distance=distance,
                    is_from_alignment=True,
                ))
        return operations

    def merges_from_alignments(
        self,
        paths: Iterable[AlignedPath],
        internal_perc: float,
        th: float,
        k: int,
    ) -> List[MergeOperation]:
        """All candidates of a cluster: internal ones for every aligned member plus alignment ones."""
        paths = list(paths)
        operations: List[MergeOperation] = []
        aligned_members = sorted({member for x, y, _ in paths for member in (x, y)})
        for member in aligned_members:
            operations.extend(self.internal_merges(member, internal_perc))
        for x, y, path in paths:
            operations.extend(self.merges_from_alignment(x, y, path, th, k))
        return operations

    # -------------------------------------------------------------------------
    # Applying merges
    # -------------------------------------------------------------------------

    def merge(self, i: int, j: int, is_from_alignment: bool = False) -> int:
        """Merge the classes of states ``i`` and ``j``; the smaller root survives.

        Returns:
            The surviving root
        """
        root_i = self.find(i)
        root_j = self.find(j)
        if root_i == root_j:
            return root_i
        keep, absorb = min(root_i, root_j), max(root_i, root_j)

        # Row first, then column: keep<->absorb mass ends up on keep's self loop
        self.trans[keep, :] += self.trans[absorb, :]
        self.trans[:, keep] += self.trans[:, absorb]
        self.trans[keep, keep] += 1.0
        self.trans[absorb, :] = 0.0
        self.trans[:, absorb] = 0.0

        self.start[keep] += self.start[absorb]
        self.stop[keep] += self.stop[absorb]
        self.start[absorb] = 0.0
        self.stop[absorb] = 0.0

        self.means[keep] = (self.means[keep] + self.means[absorb]) / 2.0
        self.frame_sum[keep] += self.frame_sum[absorb]
        self.frame_sumsq[keep] += self.frame_sumsq[absorb]
        self.frame_count[keep] += self.frame_count[absorb]

        self.is_segmental[keep] = bool(
            self.is_segmental[keep] or self.is_segmental[absorb] or is_from_alignment
        )
        self.merge_parent[absorb] = keep
        return keep

    def apply(self, operations: Iterable[MergeOperation]) -> int:
        """Deduplicate candidates by unordered state pair and merge each pair once.

        A pair proposed both internally and by an alignment counts as an
        alignment merge. Pairs are applied in ascending order.

        Returns:
            Number of unique candidate pairs
        """
        unique: Dict[Tuple[int, int], bool] = {}
        for op in operations:
            unique[op.key] = unique.get(op.key, False) or op.is_from_alignment
        for (i, j) in sorted(unique):
            self.merge(i, j, unique[(i, j)])
        return len(unique)

    def merge_all(
        self,
        paths: Iterable[AlignedPath],
        internal_perc: float,
        th: float,
        k: int,
    ) -> int:
        """Generate every candidate of the cluster and apply them."""
        operations = self.merges_from_alignments(paths, internal_perc, th, k)
        n_unique = self.apply(operations)
        logger.debug(
            "Applied %d unique merges (%d candidates) over %d states",
            n_unique, len(operations), self.n_states,
        )
        return n_unique

    # -------------------------------------------------------------------------
    # Compaction
    # -------------------------------------------------------------------------

    def roots(self) -> List[int]:
        return sorted({self.find(s) for s in range(self.n_states)})

    def shrink(self, variance_floor: float = 1e-2) -> HiddenMarkovModel:
        """Renumber the surviving roots densely and normalise into a Markov model.

        Rows without outgoing mass (final frames never merged) become self
        loops so that every transition row sums to one.
        """
        if self.n_states == 0:
            raise ValueError("Cannot build a model from a cluster without frames")
        roots = np.array(self.roots(), dtype=int)

        trans = self.trans[np.ix_(roots, roots)].copy()
        row_sums = trans.sum(axis=1)
        empty = row_sums <= 0.0
        idle = np.flatnonzero(empty)
        trans[idle, idle] = 1.0
        trans /= trans.sum(axis=1, keepdims=True)

        start = self.start[roots].copy()
        start /= start.sum()
        stop = self.stop[roots].copy()
        stop /= stop.sum()

        means = self.means[roots].copy()
        counts = self.frame_count[roots][:, None]
        sums = self.frame_sum[roots]
        sumsq = self.frame_sumsq[roots]
        variances = (sumsq - 2.0 * means * sums) / counts + means * means
        variances = np.maximum(variances, variance_floor)

        return HiddenMarkovModel(
            trans=trans,
            start=start,
            stop=stop,
            means=means,
            variances=variances,
            is_segmental=self.is_segmental[roots].copy(),
        )
