"""Banded dynamic time warping between two feature sequences.

This module implements the pairwise aligner used throughout discovery:
- Sakoe-Chiba banded DTW over Euclidean frame distances
- Weighted insertion / deletion / match penalties with deterministic tie-breaking
- Backtracking of the warping path as a list of edit nodes

The DP table is stored as a banded-offset dense array: row ``i`` holds the
cells ``j`` with ``|i - j| <= band`` at column ``j - i + band``. Cells
outside the band read as ``+inf``.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from seqpatterns.analysis.numerics import frame_matrix
from seqpatterns.util.types import AlignmentLabel, AlignmentNode, Sequence


logger = logging.getLogger(__name__)

# Extra diagonals beyond max(band, |n - m|) so the terminal cell stays reachable.
BAND_GUARD = 1

_ABSENT = -1
_MATCH = 0
_INSERTION = 1
_DELETION = 2

_CODE_TO_LABEL = {
    _MATCH: AlignmentLabel.MATCH,
    _INSERTION: AlignmentLabel.INSERTION,
    _DELETION: AlignmentLabel.DELETION,
}


@dataclass
class AlignmentParams:
    """Parameters of a single alignment.

    The warping band is the Sakoe-Chiba band half width. The penalties weigh
    the local distance differently per edit type.
    """
    warping_band: int
    insertion_penalty: float = 1.0
    deletion_penalty: float = 1.0
    match_penalty: float = 1.0


# =============================================================================
# HELPER FUNCTIONS (Core algorithms)
# =============================================================================

def _calculate_band_width(n: int, m: int, params: AlignmentParams) -> int:
    """Half width of the band actually computed.

    Band width = max(warping_band, |n - m|) + guard

    The |n - m| term ensures the path can reach from (0,0) to (n,m).
    """
    return max(int(params.warping_band), abs(n - m)) + BAND_GUARD


def _fill_banded_table(
    x: np.ndarray,
    y: np.ndarray,
    band: int,
    params: AlignmentParams,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Fill cost, local distance and label tables row by row."""
    n = x.shape[0]
    m = y.shape[0]
    width = 2 * band + 1
    cost = np.full((n + 1, width), np.inf, dtype=np.float64)
    distance = np.full((n + 1, width), np.inf, dtype=np.float64)
    labels = np.full((n + 1, width), _ABSENT, dtype=np.int8)

    # Origin: (0, 0) sits at column 0 - 0 + band
    cost[0, band] = 0.0
    distance[0, band] = 0.0
    labels[0, band] = _MATCH

    ins_pen = float(params.insertion_penalty)
    del_pen = float(params.deletion_penalty)
    match_pen = float(params.match_penalty)
    inf = math.inf

    for i in range(1, n + 1):
        j_start = max(1, i - band)
        j_end = min(m, i + band)
        if j_start > j_end:
            continue
        local = np.linalg.norm(y[j_start - 1:j_end] - x[i - 1], axis=1)

        prev_row = cost[i - 1].tolist()
        row = cost[i].tolist()
        row_labels = labels[i]
        for j in range(j_start, j_end + 1):
            d = float(local[j - j_start])
            o = j - i + band
            match_score = prev_row[o]
            insert_score = prev_row[o + 1] if o + 1 < width else inf
            delete_score = row[o - 1] if o > 0 else inf

            if delete_score < match_score and delete_score < insert_score:
                row[o] = delete_score + del_pen * d
                row_labels[o] = _DELETION
            elif insert_score < match_score and insert_score < delete_score:
                row[o] = insert_score + ins_pen * d
                row_labels[o] = _INSERTION
            else:
                row[o] = match_score + match_pen * d
                row_labels[o] = _MATCH
        cost[i] = row
        distance[i, j_start - i + band:j_end - i + band + 1] = local

    return cost, distance, labels


class AlignmentResult:
    """DTW table between two sequences plus the score and path derived from it.

    Holds the banded tables only; the sequences themselves are not retained.
    Instances are read-only once built.
    """

    def __init__(
        self,
        n: int,
        m: int,
        band: int,
        cost: np.ndarray,
        distance: np.ndarray,
        labels: np.ndarray,
    ):
        self.n = n
        self.m = m
        self.band = band
        for arr in (cost, distance, labels):
            arr.setflags(write=False)
        self._cost = cost
        self._distance = distance
        self._labels = labels

    @classmethod
    def empty(cls, n: int = 0, m: int = 0) -> "AlignmentResult":
        """Result holding only the origin, used for empty inputs."""
        cost = np.array([[0.0]])
        distance = np.array([[0.0]])
        labels = np.array([[_MATCH]], dtype=np.int8)
        return cls(n, m, 0, cost, distance, labels)

    def in_band(self, i: int, j: int) -> bool:
        if i < 0 or j < 0 or i > self.n or j > self.m:
            return False
        if i >= self._labels.shape[0]:
            return False
        return abs(j - i) <= self.band

    def _label_code(self, i: int, j: int) -> int:
        if not self.in_band(i, j):
            return _ABSENT
        return int(self._labels[i, j - i + self.band])

    def cost_at(self, i: int, j: int) -> float:
        """Cumulative path cost at ``(i, j)``; ``inf`` outside the band."""
        if self._label_code(i, j) == _ABSENT:
            return math.inf
        return float(self._cost[i, j - i + self.band])

    def node(self, i: int, j: int) -> Optional[AlignmentNode]:
        """Edit node stored at ``(i, j)`` or ``None`` when the cell is absent."""
        code = self._label_code(i, j)
        if code == _ABSENT:
            return None
        o = j - i + self.band
        if i == 0 and j == 0:
            return AlignmentNode(0, 0, AlignmentLabel.MATCH, 0.0, 0.0)
        if code == _MATCH:
            prev_i, prev_j = i - 1, j - 1
        elif code == _INSERTION:
            prev_i, prev_j = i - 1, j
        else:
            prev_i, prev_j = i, j - 1
        return AlignmentNode(
            prev_i=prev_i,
            prev_j=prev_j,
            label=_CODE_TO_LABEL[code],
            distance=float(self._distance[i, o]),
            cost=float(self._cost[i, o]),
        )

    def reached(self) -> bool:
        """Whether a finite-cost path to ``(n, m)`` exists."""
        if self.n == 0 or self.m == 0:
            return False
        return math.isfinite(self.cost_at(self.n, self.m))

    def score(self) -> float:
        """Alignment score, normalised by ``n + m`` to account for length variations."""
        if not self.reached():
            return math.inf
        return self.cost_at(self.n, self.m) / (self.n + self.m)

    def path(self) -> List[AlignmentNode]:
        """Back tracking from ``(n, m)`` to the origin (origin excluded)."""
        if not self.reached():
            if self.n > 0 and self.m > 0:
                logger.debug("No alignment path reaches (%d, %d)", self.n, self.m)
            return []
        path: List[AlignmentNode] = []
        i, j = self.n, self.m
        while not (i == 0 and j == 0):
            node = self.node(i, j)
            if node is None:
                # Predecessor links only point at computed cells
                raise RuntimeError(f"Broken alignment backtrace at ({i}, {j})")
            path.append(node)
            i, j = node.prev_i, node.prev_j
        path.reverse()
        return path


# =============================================================================
# MAIN PIPELINE FUNCTIONS
# =============================================================================

def align_sequences(x: Sequence, y: Sequence, params: AlignmentParams) -> AlignmentResult:
    """MAIN: Compute the banded dynamic time warping alignment of ``x`` against ``y``.

    Args:
        x: First sequence (rows of the DP table)
        y: Second sequence (columns of the DP table)
        params: Band width and edit penalties

    Returns:
        AlignmentResult; its score is ``inf`` and its path empty when the
        terminal cell cannot be reached (e.g. an empty sequence)
    """
    n = len(x)
    m = len(y)
    if n == 0 or m == 0:
        logger.debug("Aligning empty sequence (n=%d, m=%d)", n, m)
        return AlignmentResult.empty(n, m)

    band = _calculate_band_width(n, m, params)
    cost, distance, labels = _fill_banded_table(frame_matrix(x), frame_matrix(y), band, params)
    result = AlignmentResult(n, m, band, cost, distance, labels)
    if not result.reached():
        logger.debug("Aligning: terminal (%d, %d) not reached with band %d", n, m, band)
    return result


def path_statistics(path: List[AlignmentNode]) -> Dict[str, Any]:
    """Summarise an alignment path by edit type."""
    matches = sum(1 for node in path if node.label is AlignmentLabel.MATCH)
    insertions = sum(1 for node in path if node.label is AlignmentLabel.INSERTION)
    deletions = sum(1 for node in path if node.label is AlignmentLabel.DELETION)
    mean_distance = float(np.mean([node.distance for node in path])) if path else None
    return {
        "length": len(path),
        "matches": matches,
        "insertions": insertions,
        "deletions": deletions,
        "mean_local_distance": mean_distance,
    }
