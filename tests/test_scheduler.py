"""Tests for the parallel alignment scheduler."""

import math

import numpy as np
import pytest

from seqpatterns.analysis.alignment import AlignmentParams, align_sequences
from seqpatterns.analysis.scheduler import AlignmentWorkers, _row_blocks, band_params_factory
from seqpatterns.util.errors import AlignmentSchedulingError
from seqpatterns.util.types import FeatureSequence


def make_corpus(n_sequences: int = 5, seed: int = 3):
    """Random sequences of varying length."""
    rng = np.random.default_rng(seed)
    return [FeatureSequence(rng.normal(size=(6 + i, 2))) for i in range(n_sequences)]


class TestRowBlocks:
    """Tests for splitting rows across workers."""

    def test_blocks_cover_every_row_once(self):
        blocks = _row_blocks(10, 4)
        rows = [i for start, stop in blocks for i in range(start, stop)]
        assert rows == list(range(10))
        assert len(blocks) == 4

    def test_more_workers_than_rows(self):
        """Surplus workers get empty ranges."""
        blocks = _row_blocks(2, 4)
        assert sum(stop - start for start, stop in blocks) == 2


class TestAlignmentWorkers:
    """Tests for AlignmentWorkers.align_all and its accessors."""

    @pytest.mark.parametrize("n_workers", [1, 2, 4, 7])
    def test_matches_sequential_alignment(self, n_workers):
        """The worker count never changes the result table."""
        data = make_corpus()
        params_for_length = band_params_factory(warping_band_percentage=0.5)
        workers = AlignmentWorkers(data)
        workers.align_all(params_for_length, n_workers=n_workers)
        distances = workers.distance_matrix()

        for i in range(len(data)):
            for j in range(len(data)):
                if i == j:
                    assert math.isnan(distances[i, j])
                    continue
                length = max(len(data[i]), len(data[j]))
                expected = align_sequences(data[i], data[j], params_for_length(length)).score()
                assert distances[i, j] == pytest.approx(expected)

    def test_worker_failure_raises_scheduling_error(self):
        """A failing worker aborts the whole table."""
        def broken(length):
            raise RuntimeError("boom")

        workers = AlignmentWorkers(make_corpus(3))
        with pytest.raises(AlignmentSchedulingError) as excinfo:
            workers.align_all(broken, n_workers=2)
        assert isinstance(excinfo.value.__cause__, RuntimeError)
        with pytest.raises(AlignmentSchedulingError):
            workers.distance_matrix()

    def test_accessors_require_results(self):
        workers = AlignmentWorkers(make_corpus(2))
        with pytest.raises(AlignmentSchedulingError):
            workers.alignment(0, 1)

    def test_diagonal_is_not_computed(self):
        workers = AlignmentWorkers(make_corpus(2))
        workers.align_all(band_params_factory(), n_workers=1)
        with pytest.raises(ValueError):
            workers.alignment(1, 1)

    def test_local_distances_collects_every_path(self):
        """Local distances come from every ordered pair's path."""
        data = make_corpus(3)
        workers = AlignmentWorkers(data)
        workers.align_all(band_params_factory(), n_workers=2)
        expected = sum(len(workers.path(i, j)) for i in range(3) for j in range(3) if i != j)
        assert workers.local_distances().shape == (expected,)
        assert workers.metadata["n_pairs"] == 6


class TestBandParamsFactory:
    """Tests for the per-pair parameter function."""

    def test_percentage_band(self):
        params = band_params_factory(warping_band_percentage=0.1)(25)
        assert params.warping_band == 3

    def test_absolute_band_wins(self):
        params = band_params_factory(warping_band_percentage=0.1, warping_band=7)(25)
        assert params == AlignmentParams(warping_band=7)
