"""End-to-end tests for the discovery pipeline and the CLI."""

import io
import json

import numpy as np
import pytest
from rich.console import Console
from typer.testing import CliRunner

from seqpatterns.cli import app
from seqpatterns.config import DiscoveryConfig
from seqpatterns.pipelines import DiscoveryPipeline, DiscoveryPipelineConfig
from seqpatterns.util.types import FeatureSequence


# Two groups: A and B sit near 0, C and D near 10.
GROUPS = {
    "a": [0.0, 0.0, 0.0, 0.0],
    "b": [0.0, 0.0, 0.0, 1.0],
    "c": [10.0, 10.0, 10.0, 10.0],
    "d": [10.0, 10.0, 10.0, 12.0],
}


def create_test_data(tmp_path):
    """Write one .npy file per sequence and return the paths in A, B, C, D order."""
    paths = []
    for name, values in GROUPS.items():
        path = tmp_path / f"{name}.npy"
        np.save(path, np.array(values).reshape(-1, 1))
        paths.append(path)
    return paths


def quiet_console():
    return Console(file=io.StringIO(), width=120)


class TestDiscoveryPipeline:
    """Tests for DiscoveryPipeline."""

    def test_two_groups(self, tmp_path):
        """Median-threshold clustering separates the two groups and decoding recovers them."""
        config = DiscoveryPipelineConfig(
            feature_paths=create_test_data(tmp_path),
            discovery=DiscoveryConfig(clustering_percentile=0.5, alignment_workers=2),
            output_dir=str(tmp_path / "out"),
        )
        result = DiscoveryPipeline(config, console=quiet_console()).run()

        assert result.clusters == [[0, 1], [2, 3]]
        assert len(result.operations) == 2
        assert len(result.models) == 2
        assert result.accuracy == 1.0
        for model in result.models:
            np.testing.assert_allclose(model.model.trans.sum(axis=1), 1.0)

        written = json.loads((tmp_path / "out" / "results.json").read_text())
        assert written["clustering"]["clusters"] == [[0, 1], [2, 3]]
        assert written["metadata"]["config"]["clustering_percentile"] == 0.5
        assert written["metadata"]["pipeline_metadata"]["alignment"]["n_pairs"] == 12

    def test_distance_matrix(self, tmp_path):
        sequences = [FeatureSequence(np.array(v).reshape(-1, 1)) for v in GROUPS.values()]
        pipeline = DiscoveryPipeline(
            DiscoveryPipelineConfig(discovery=DiscoveryConfig(clustering_percentile=0.5)),
            console=quiet_console(),
        )
        result = pipeline.discover(sequences)

        assert result.distances[0, 1] == pytest.approx(1.0 / 8)
        assert result.distances[0, 2] == pytest.approx(5.0)
        assert np.isnan(result.distances[3, 3])

    def test_low_percentile_keeps_singletons(self, tmp_path):
        """A threshold below every score performs no merge at all."""
        sequences = [FeatureSequence(np.array(v).reshape(-1, 1)) for v in GROUPS.values()]
        pipeline = DiscoveryPipeline(
            DiscoveryPipelineConfig(discovery=DiscoveryConfig(clustering_percentile=0.0)),
            console=quiet_console(),
        )
        result = pipeline.discover(sequences)

        assert result.operations == []
        assert result.clusters == [[0], [1], [2], [3]]
        assert len(result.classifications) == 4

    def test_empty_sequence_gets_no_model(self):
        """A frameless sequence stays a singleton without a model and is not decoded."""
        sequences = [
            FeatureSequence(np.array([0.0, 0.0, 0.0]).reshape(-1, 1)),
            FeatureSequence(np.array([0.0, 0.0, 1.0]).reshape(-1, 1)),
            FeatureSequence(np.array([5.0, 5.0, 5.0]).reshape(-1, 1)),
            FeatureSequence(np.zeros((0, 1))),
        ]
        pipeline = DiscoveryPipeline(
            DiscoveryPipelineConfig(discovery=DiscoveryConfig(clustering_percentile=0.5)),
            console=quiet_console(),
        )
        result = pipeline.discover(sequences)

        assert result.clusters == [[2], [3], [0, 1]]
        assert [m.cluster_id for m in result.models] == [0, 2]
        assert sorted(r.sequence for r in result.classifications) == [0, 1, 2]
        assert {r.sequence: r.assigned for r in result.classifications} == {0: 2, 1: 2, 2: 0}
        assert result.accuracy == 1.0

    def test_empty_input_fails(self):
        pipeline = DiscoveryPipeline(DiscoveryPipelineConfig(), console=quiet_console())
        with pytest.raises(ValueError):
            pipeline.run()


class TestCli:
    """Tests for the typer application."""

    def test_discover_writes_results(self, tmp_path):
        create_test_data(tmp_path)
        config = tmp_path / "discovery.yaml"
        config.write_text("clustering_percentile: 0.5\n")
        runner = CliRunner()
        result = runner.invoke(app, [
            "discover", "--dir", str(tmp_path), "--config", str(config),
            "--workers", "2", "--output-dir", str(tmp_path / "out"),
        ])
        assert result.exit_code == 0, result.output
        assert (tmp_path / "out" / "results.json").exists()

    def test_discover_requires_files(self, tmp_path):
        runner = CliRunner()
        result = runner.invoke(app, ["discover", "--dir", str(tmp_path)])
        assert result.exit_code != 0

    def test_discover_rejects_bad_config(self, tmp_path):
        create_test_data(tmp_path)
        config = tmp_path / "discovery.yaml"
        config.write_text("unknown_option: 1\n")
        runner = CliRunner()
        result = runner.invoke(app, ["discover", "--dir", str(tmp_path), "--config", str(config)])
        assert result.exit_code != 0

    def test_align_pair(self, tmp_path):
        paths = create_test_data(tmp_path)
        runner = CliRunner()
        result = runner.invoke(app, ["align-pair", str(paths[0]), str(paths[1]), "--show-path"])
        assert result.exit_code == 0, result.output
        assert "score" in result.output

    def test_align_pair_missing_file(self, tmp_path):
        paths = create_test_data(tmp_path)
        runner = CliRunner()
        result = runner.invoke(app, ["align-pair", str(paths[0]), str(tmp_path / "missing.npy")])
        assert result.exit_code == 2
        assert not isinstance(result.exception, FileNotFoundError)

    def test_regions_unreadable_file(self, tmp_path):
        path = tmp_path / "broken.npy"
        path.write_text("not an array")
        runner = CliRunner()
        result = runner.invoke(app, ["regions", str(path)])
        assert result.exit_code == 2

    def test_discover_without_regions_is_bad_parameter(self, tmp_path):
        """Region extraction that finds nothing is reported, not raised."""
        create_test_data(tmp_path)
        runner = CliRunner()
        result = runner.invoke(app, ["discover", "--dir", str(tmp_path), "--regions"])
        assert result.exit_code == 2
        assert not isinstance(result.exception, ValueError)
