"""Parallel computation of all pairwise alignments in a corpus.

Rows of the ``K x K`` alignment table are split into contiguous blocks, one
per worker thread. Every worker fills a private partial table for its rows;
the partial tables are merged after all workers have joined, so no cell is
ever written by two threads and no lock is needed.

The local distances of a DP row are computed in numpy, but the cell
recurrence itself is a Python loop and holds the GIL. Threads therefore
overlap only the numpy parts; the result never depends on ``n_workers``.
"""

from __future__ import annotations

import logging
import math
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional, Sequence as SequenceT, Tuple

import numpy as np

from seqpatterns.analysis.alignment import AlignmentParams, AlignmentResult, align_sequences
from seqpatterns.util.errors import AlignmentSchedulingError
from seqpatterns.util.types import AlignmentNode, Sequence


logger = logging.getLogger(__name__)

ParamsForLength = Callable[[int], AlignmentParams]


def _row_blocks(n: int, n_workers: int) -> List[Tuple[int, int]]:
    """Contiguous ``[start, stop)`` row ranges, one per worker (some may be empty)."""
    batch_size = (n // n_workers) + 1
    blocks = []
    for batch in range(n_workers):
        start = min(batch * batch_size, n)
        stop = min((batch + 1) * batch_size, n)
        blocks.append((start, stop))
    return blocks


def _align_rows(
    batch: int,
    start: int,
    stop: int,
    data: SequenceT[Sequence],
    params_for_length: ParamsForLength,
) -> Dict[Tuple[int, int], AlignmentResult]:
    """Worker body: align every row in ``[start, stop)`` against all other sequences."""
    n = len(data)
    partial: Dict[Tuple[int, int], AlignmentResult] = {}
    for i in range(start, stop):
        logger.debug("Thread: %d instance: %d", batch, i)
        for j in range(n):
            if i == j:
                continue
            length = max(len(data[i]), len(data[j]))
            partial[(i, j)] = align_sequences(data[i], data[j], params_for_length(length))
    return partial


class AlignmentWorkers:
    """Aligns all sequences in parallel and keeps the results in a flat table."""

    def __init__(self, data: SequenceT[Sequence]):
        self.data = list(data)
        self.n = len(self.data)
        self._results: Optional[List[Optional[AlignmentResult]]] = None
        self.metadata: Dict[str, Any] = {}

    def align_all(self, params_for_length: ParamsForLength, n_workers: int = 4) -> None:
        """Compute every ordered pair ``(i, j), i != j`` using ``n_workers`` threads.

        Args:
            params_for_length: Maps the longer length of a pair to its alignment parameters
            n_workers: Number of worker threads

        Raises:
            AlignmentSchedulingError: if any worker fails; no partial table is kept
        """
        if n_workers < 1:
            raise ValueError("n_workers must be >= 1")

        n = self.n
        start_time = time.time()
        self._results = None
        blocks = _row_blocks(n, n_workers)

        with ThreadPoolExecutor(max_workers=n_workers) as executor:
            futures = [
                executor.submit(_align_rows, batch, start, stop, self.data, params_for_length)
                for batch, (start, stop) in enumerate(blocks)
            ]
        # Executor exit is the join barrier: every future is done here.

        results: List[Optional[AlignmentResult]] = [None] * (n * n)
        for batch, future in enumerate(futures):
            error = future.exception()
            if error is not None:
                start, stop = blocks[batch]
                raise AlignmentSchedulingError(
                    f"Alignment worker {batch} failed on rows [{start}, {stop})"
                ) from error
            for (i, j), alignment in future.result().items():
                results[i * n + j] = alignment

        self._results = results
        elapsed = time.time() - start_time
        self.metadata = {
            "n_sequences": n,
            "n_workers": n_workers,
            "n_pairs": n * (n - 1),
            "computation_time": round(elapsed, 3),
        }
        logger.info("Aligned %d pairs with %d workers in %.2fs", n * (n - 1), n_workers, elapsed)

    def _require_results(self) -> List[Optional[AlignmentResult]]:
        if self._results is None:
            raise AlignmentSchedulingError("align_all has not completed")
        return self._results

    def alignment(self, i: int, j: int) -> AlignmentResult:
        """Alignment of sequence ``i`` (rows) against sequence ``j`` (columns)."""
        if i == j:
            raise ValueError("The diagonal of the alignment table is not computed")
        result = self._require_results()[i * self.n + j]
        if result is None:
            raise AlignmentSchedulingError(f"Missing alignment for pair ({i}, {j})")
        return result

    def path(self, i: int, j: int) -> List[AlignmentNode]:
        return self.alignment(i, j).path()

    def distance_matrix(self) -> np.ndarray:
        """Dense ``K x K`` score matrix; the unused diagonal holds ``nan``."""
        self._require_results()
        n = self.n
        distances = np.full((n, n), np.nan, dtype=np.float64)
        for i in range(n):
            for j in range(n):
                if i != j:
                    distances[i, j] = self.alignment(i, j).score()
        return distances

    def local_distances(self) -> np.ndarray:
        """All local frame distances along every non-empty alignment path."""
        self._require_results()
        samples: List[float] = []
        for i in range(self.n):
            for j in range(self.n):
                if i == j:
                    continue
                path = self.path(i, j)
                if len(path) == 0:
                    alignment = self.alignment(i, j)
                    logger.info("No Alignment Found %d %d %d %d", i, j, alignment.n, alignment.m)
                samples.extend(node.distance for node in path)
        return np.asarray(samples, dtype=np.float64)


def band_params_factory(
    warping_band_percentage: float = 1.0,
    warping_band: Optional[int] = None,
    insertion_penalty: float = 1.0,
    deletion_penalty: float = 1.0,
    match_penalty: float = 1.0,
) -> ParamsForLength:
    """Build the per-pair parameter function used by ``align_all``.

    An absolute ``warping_band`` wins over the percentage of the longer length.
    """
    def params_for_length(length: int) -> AlignmentParams:
        if warping_band is not None:
            band = int(warping_band)
        else:
            band = int(math.ceil(warping_band_percentage * length))
        return AlignmentParams(
            warping_band=band,
            insertion_penalty=insertion_penalty,
            deletion_penalty=deletion_penalty,
            match_penalty=match_penalty,
        )

    return params_for_length
