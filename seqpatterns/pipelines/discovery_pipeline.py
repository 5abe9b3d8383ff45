"""Pattern discovery pipeline.

This pipeline takes a set of feature sequences, aligns every pair, clusters
the alignment distances, merges each cluster into a compact Markov model and
classifies every clustered sequence against all cluster models.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

import numpy as np
from rich.console import Console
from rich.table import Table

from ..analysis.clustering import AgglomerativeClustering, cluster_sets
from ..analysis.hmm import HiddenMarkovModel, classify
from ..analysis.model_merging import ModelMerging
from ..analysis.numerics import percentile
from ..analysis.regions import interesting_ranges
from ..analysis.scheduler import AlignmentWorkers
from ..config import DiscoveryConfig
from ..data.storage import check_dimensions, load_feature_sequences, write_json
from ..util.types import ClusteringOperation, FeatureSequence


logger = logging.getLogger(__name__)


@dataclass
class DiscoveryPipelineConfig:
    """Configuration for the discovery pipeline."""
    feature_paths: List[Path] = field(default_factory=list)
    discovery: DiscoveryConfig = field(default_factory=DiscoveryConfig)
    output_format: str = "table"  # json, table
    output_dir: Optional[str] = None


@dataclass
class ClusterModel:
    """Markov model learned from one cluster."""
    cluster_id: int
    members: List[int]
    model: HiddenMarkovModel
    n_merges: int


@dataclass
class Classification:
    """Viterbi decoding of one clustered sequence against every cluster model."""
    sequence: int
    cluster: int
    assigned: int
    log_likelihood: float
    scores: List[float]


@dataclass
class DiscoveryResult:
    """Everything the pipeline hands to reporting."""
    sequences: List[FeatureSequence]
    distances: np.ndarray
    operations: List[ClusteringOperation]
    roots: Set[int]
    clusters: List[List[int]]
    merge_threshold: float
    models: List[ClusterModel]
    classifications: List[Classification]
    accuracy: Optional[float]
    metadata: Dict[str, Any] = field(default_factory=dict)


class DiscoveryPipeline:
    """Pipeline for discovering repeated patterns in a corpus of feature sequences."""

    def __init__(self, config: DiscoveryPipelineConfig, console: Optional[Console] = None):
        self.config = config
        self.console = console or Console()
        self.metadata: Dict[str, Any] = {}

    def run(self) -> DiscoveryResult:
        """Run the complete pipeline on ``config.feature_paths``."""
        try:
            self._log_progress("Loading feature sequences...")
            sequences = load_feature_sequences(self.config.feature_paths)
            if len(sequences) < 1:
                raise ValueError("No feature sequences to process")
            self._log_progress(f"Loaded {len(sequences)} sequence(s)")

            result = self.discover(sequences)
            self._output_results(result)
            return result

        except Exception as e:
            self._log_error(f"Pipeline failed: {str(e)}")
            raise

    def discover(self, sequences: List[FeatureSequence]) -> DiscoveryResult:
        """Run alignment, clustering, model merging and decoding on in-memory sequences."""
        start_time = time.time()
        params = self.config.discovery
        check_dimensions(sequences)

        # Phase 1: Region extraction (optional)
        if params.extract_regions:
            self._log_progress("Extracting interesting regions...")
            sequences = self._extract_regions(sequences)
            if not sequences:
                raise ValueError("Region extraction found no regions")

        # Phase 2: Pairwise alignment
        self._log_progress("Starting alignment...")
        workers = AlignmentWorkers(sequences)
        workers.align_all(params.params_for_length(), n_workers=params.alignment_workers)
        distances = workers.distance_matrix()
        self.metadata["alignment"] = workers.metadata

        # Phase 3: Clustering
        self._log_progress("Clustering...")
        operations, roots = AgglomerativeClustering.clustering(distances, params.clustering_percentile)
        clusters = cluster_sets(operations, roots, len(sequences))
        self.metadata["clustering"] = {
            "percentile": params.clustering_percentile,
            "n_operations": len(operations),
            "n_clusters": len(clusters),
        }

        # Phase 4: Model merging
        self._log_progress("Model merging...")
        merge_threshold = percentile(workers.local_distances(), params.merging_percentile)
        models = []
        for c, cluster in enumerate(clusters):
            if all(len(sequences[i]) == 0 for i in cluster):
                logger.warning("Cluster %d has no frames, no model built", c)
                continue
            models.append(self._merge_cluster(c, cluster, sequences, workers, merge_threshold))
        self.metadata["model_merging"] = {
            "merge_threshold": merge_threshold,
            "models": [m.model.summary() for m in models],
        }

        # Phase 5: Decoding
        self._log_progress("Decoding...")
        classifications = self._classify(clusters, models, sequences)
        accuracy = None
        if classifications:
            accuracy = sum(1 for r in classifications if r.assigned == r.cluster) / len(classifications)

        self.metadata["processing_time"] = round(time.time() - start_time, 3)
        return DiscoveryResult(
            sequences=sequences,
            distances=distances,
            operations=operations,
            roots=roots,
            clusters=clusters,
            merge_threshold=merge_threshold,
            models=models,
            classifications=classifications,
            accuracy=accuracy,
            metadata=self.metadata,
        )

    def _log_progress(self, message: str) -> None:
        """Log progress message."""
        logger.info(message)
        if self.console:
            self.console.print(f"[blue]{message}[/blue]")

    def _log_error(self, message: str) -> None:
        """Log error message."""
        logger.error(message)
        if self.console:
            self.console.print(f"[red]{message}[/red]")

    def _extract_regions(self, sequences: List[FeatureSequence]) -> List[FeatureSequence]:
        """Replace every sequence by its interesting regions."""
        params = self.config.discovery
        regions = []
        details = []
        for seq in sequences:
            for region in interesting_ranges(seq, params.vat_moving, params.vat_percentile, params.vat_min_len):
                regions.append(region.extract())
                details.append({"source": seq.source, "start": region.start, "stop": region.stop})
        self.metadata["regions"] = {
            "n_input_sequences": len(sequences),
            "n_regions": len(regions),
            "regions": details,
        }
        return regions

    def _merge_cluster(
        self,
        c: int,
        cluster: List[int],
        sequences: List[FeatureSequence],
        workers: AlignmentWorkers,
        merge_threshold: float,
    ) -> ClusterModel:
        """Build the Markov model of one cluster from its members' alignment paths."""
        params = self.config.discovery
        logger.info("HMM model merging from: %d", c)
        paths = []
        for x, i in enumerate(cluster):
            for y, j in enumerate(cluster):
                if y < x:
                    path = workers.path(i, j)
                    logger.debug("Path between %d and %d is: %d", x, y, len(path))
                    paths.append((x, y, path))

        merger = ModelMerging.from_sequences(sequences[i] for i in cluster)
        n_merges = merger.merge_all(
            paths,
            params.merging_internal_percentile,
            merge_threshold,
            params.merging_moving,
        )
        model = merger.shrink(params.variance_floor)
        return ClusterModel(cluster_id=c, members=list(cluster), model=model, n_merges=n_merges)

    def _classify(
        self,
        clusters: List[List[int]],
        models: List[ClusterModel],
        sequences: List[FeatureSequence],
    ) -> List[Classification]:
        """Decode every sequence of a modelled cluster with every cluster model.

        ``assigned`` is the cluster id of the best model. Clusters without a
        model (no frames) are not decoded.
        """
        if not models:
            return []
        hmms = [m.model for m in models]
        results = []
        for m in models:
            for s in clusters[m.cluster_id]:
                best, scores = classify(hmms, sequences[s])
                results.append(Classification(
                    sequence=s,
                    cluster=m.cluster_id,
                    assigned=models[best].cluster_id,
                    log_likelihood=scores[best],
                    scores=scores,
                ))
        return results

    def _prepare_output(self, result: DiscoveryResult) -> Dict[str, Any]:
        """Prepare the final output structure."""
        return {
            "sequences": [
                {"index": i, "source": seq.source, "n_frames": len(seq)}
                for i, seq in enumerate(result.sequences)
            ],
            "clustering": {
                "operations": [
                    {
                        "merge_i": op.merge_i,
                        "merge_j": op.merge_j,
                        "into": op.into,
                        "distance": op.distance,
                        "operation": op.operation.value,
                    }
                    for op in result.operations
                ],
                "roots": sorted(result.roots),
                "clusters": result.clusters,
            },
            "models": [
                {"cluster": m.cluster_id, "members": m.members, "n_merges": m.n_merges, **m.model.summary()}
                for m in result.models
            ],
            "classification": [
                {
                    "sequence": r.sequence,
                    "cluster": r.cluster,
                    "assigned": r.assigned,
                    "log_likelihood": r.log_likelihood,
                }
                for r in result.classifications
            ],
            "accuracy": result.accuracy,
            "metadata": {
                "config": self.config.discovery.to_dict(),
                "pipeline_metadata": result.metadata,
            },
        }

    def _output_results(self, result: DiscoveryResult) -> None:
        """Output results in the specified format."""
        output = self._prepare_output(result)
        if self.config.output_dir:
            path = write_json(output, Path(self.config.output_dir) / "results.json")
            self._log_progress(f"Results written to {path}")
        if self.config.output_format == "table":
            self._output_table(result)
        elif not self.config.output_dir:
            print(json.dumps(output, indent=2, default=str))

    def _output_table(self, result: DiscoveryResult) -> None:
        """Output results as formatted tables."""
        table = Table(title=f"Clusters ({len(result.clusters)})")
        table.add_column("Cluster", style="cyan")
        table.add_column("Members", style="green")
        table.add_column("States", justify="right")
        table.add_column("Segmental", justify="right")
        for m in result.models:
            summary = m.model.summary()
            table.add_row(
                str(m.cluster_id),
                ", ".join(str(i) for i in m.members),
                str(summary["n_states"]),
                str(summary["n_segmental"]),
            )
        self.console.print(table)

        decoding = Table(title="Log Likelihoods")
        decoding.add_column("Cluster", style="cyan")
        decoding.add_column("HMM")
        decoding.add_column("Sequence")
        decoding.add_column("LL", justify="right")
        for r in result.classifications:
            decoding.add_row(str(r.cluster), str(r.assigned), str(r.sequence), f"{r.log_likelihood:.1f}")
        self.console.print(decoding)
        if result.accuracy is not None:
            self.console.print(f"[green]Accuracy: {result.accuracy:.3f}[/green]")
