"""Agglomerative clustering of an alignment distance matrix.

Clusters are tracked in a union-find forest over ids ``0..2K-2``: the ``K``
sequences are the leaves and every merge creates a fresh internal id that
becomes the parent of both merged roots. Cluster distance is average
linkage over the raw (possibly asymmetric) matrix entries.
"""

from __future__ import annotations

import logging
import math
from typing import Dict, Iterable, List, Set, Tuple

import numpy as np

from seqpatterns.analysis.numerics import percentile
from seqpatterns.util.types import ClusteringOperation, MergeKind


logger = logging.getLogger(__name__)


def off_diagonal(distances: np.ndarray) -> np.ndarray:
    """Flatten every entry of a square matrix except its diagonal."""
    n = distances.shape[0]
    mask = ~np.eye(n, dtype=bool)
    return distances[mask]


class AgglomerativeClustering:
    """Performs hierarchical clustering.

    Holds temporary data during dendrogram construction.
    """

    def __init__(self, distances: np.ndarray):
        distances = np.asarray(distances, dtype=np.float64)
        if distances.ndim != 2 or distances.shape[0] != distances.shape[1]:
            raise ValueError(f"Distance matrix must be square, got shape {distances.shape}")
        self.distances = distances
        self.n_instances = distances.shape[0]
        self.n_clusters = self.n_instances
        # Parent pointers similar to the union find data structure
        self.parents: List[int] = list(range(self.n_instances))

    @classmethod
    def clustering(
        cls,
        distances: np.ndarray,
        perc: float,
    ) -> Tuple[List[ClusteringOperation], Set[int]]:
        """Cluster until one cluster remains or the next linkage reaches the threshold.

        The threshold is the ``perc`` percentile of the off-diagonal matrix
        values. A merge whose linkage is at or above it is not performed.

        Args:
            distances: ``K x K`` alignment scores
            perc: Percentile in ``[0, 1]``

        Returns:
            (operations, roots) - the dendrogram steps in creation order and
            the ids of the clusters left at the end
        """
        dendrogram = cls(distances)
        threshold = percentile(off_diagonal(dendrogram.distances), perc)
        logger.info("Clustering with threshold %.4f", threshold)

        operations: List[ClusteringOperation] = []
        while dendrogram.n_clusters > 1:
            p, q, linkage = dendrogram.closest_pair()
            if not math.isfinite(linkage) or linkage >= threshold:
                break
            operations.append(dendrogram.merge(p, q, linkage))
        return operations, dendrogram.clusters()

    def cluster(self, i: int) -> int:
        """Find the cluster assignment (root id) for an instance."""
        p = i
        while p != self.parents[p]:
            p = self.parents[p]
        return p

    def assignment(self) -> List[int]:
        """Root id for each original instance."""
        return [self.cluster(i) for i in range(self.n_instances)]

    def clusters(self) -> Set[int]:
        """Compute the set of top level clusters."""
        return set(self.assignment())

    def merge_clusters(self, p: int, q: int) -> int:
        """Merge two clusters by adding a new node with both as children."""
        k = len(self.parents)
        self.parents[p] = k
        self.parents[q] = k
        self.parents.append(k)
        self.n_clusters -= 1
        return k

    def linkage(self, assignment: List[int], i: int, j: int) -> float:
        """Average linkage between clusters ``i`` and ``j``.

        Mean of ``distances[x, y]`` for every member ``x`` of ``i`` and ``y``
        of ``j``, taken as stored.
        """
        members = np.asarray(assignment)
        rows = np.flatnonzero(members == i)
        cols = np.flatnonzero(members == j)
        if rows.size == 0 or cols.size == 0:
            return math.inf
        block = self.distances[np.ix_(rows, cols)]
        return float(block.sum() / (rows.size * cols.size))

    def closest_pair(self) -> Tuple[int, int, float]:
        """Ordered root pair with the smallest average linkage.

        Roots are visited in ascending id order and only a strictly smaller
        linkage replaces the current best, so ties resolve to the first pair.
        """
        assignment = self.assignment()
        roots = sorted(set(assignment))
        min_linkage = math.inf
        min_merge = (roots[0], roots[0])
        for target_i in roots:
            for target_j in roots:
                if target_i == target_j:
                    continue
                linkage = self.linkage(assignment, target_i, target_j)
                if linkage < min_linkage:
                    min_linkage = linkage
                    min_merge = (target_i, target_j)
        return min_merge[0], min_merge[1], min_linkage

    def merge(self, p: int, q: int, linkage: float) -> ClusteringOperation:
        """Join roots ``p`` and ``q`` and return the recorded operation."""
        k = self.merge_clusters(p, q)
        n = self.n_instances
        if p < n and q < n:
            op = MergeKind.SEQUENCE_TO_SEQUENCE
        elif p >= n and q >= n:
            op = MergeKind.CLUSTER_TO_CLUSTER
        elif p >= n and q < n:
            op = MergeKind.CLUSTER_TO_SEQUENCE
        else:
            op = MergeKind.SEQUENCE_TO_CLUSTER
        logger.debug("Merge %d + %d -> %d (%s, %.4f)", p, q, k, op.value, linkage)
        return ClusteringOperation(merge_i=p, merge_j=q, into=k, distance=linkage, operation=op)


def cluster_sets(
    operations: Iterable[ClusteringOperation],
    cluster_ids: Iterable[int],
    n_instances: int,
) -> List[List[int]]:
    """Replay a dendrogram into the leaf ids of each surviving cluster.

    Args:
        operations: Clustering operations in creation order
        cluster_ids: Root ids left after clustering
        n_instances: Number of original leaves

    Returns:
        One sorted list of leaf ids per root, roots in ascending order. A root
        never created by an operation is a singleton leaf and resolves to itself.
    """
    results: Dict[int, List[int]] = {}
    for op in operations:
        cluster: List[int] = []
        for child in (op.merge_i, op.merge_j):
            cluster.extend(results.get(child, [child]))
        results[op.into] = cluster

    grouped: List[List[int]] = []
    for root in sorted(cluster_ids):
        if root in results:
            grouped.append(sorted(i for i in results[root] if i < n_instances))
        else:
            logger.warning("Cluster not found: %d | Singular cluster", root)
            grouped.append([root])
    return grouped
