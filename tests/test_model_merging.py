"""Tests for aligned model merging and the Viterbi scorer."""

import math

import numpy as np
import pytest

from seqpatterns.analysis.alignment import AlignmentParams, align_sequences
from seqpatterns.analysis.hmm import HiddenMarkovModel, classify
from seqpatterns.analysis.model_merging import ModelMerging
from seqpatterns.util.types import FeatureSequence, MergeOperation


def seq(*values):
    """Build a 1-D feature sequence from scalars."""
    return FeatureSequence(np.array(values, dtype=np.float64).reshape(-1, 1))


def single_state_model(mean=0.0, variance=1.0):
    return HiddenMarkovModel(
        trans=np.array([[1.0]]),
        start=np.array([1.0]),
        stop=np.array([1.0]),
        means=np.array([[mean]]),
        variances=np.array([[variance]]),
        is_segmental=np.array([False]),
    )


class TestChainAutomaton:
    """Tests for the initial automaton and its union-find."""

    def test_initial_chain(self):
        merger = ModelMerging.from_sequences([seq(0, 1, 2), seq(5, 6)])
        assert merger.n_states == 5
        assert merger.state(1, 0) == 3
        np.testing.assert_array_equal(merger.start, [1, 0, 0, 1, 0])
        np.testing.assert_array_equal(merger.stop, [0, 0, 1, 0, 1])
        assert merger.trans[0, 1] == 1.0 and merger.trans[1, 2] == 1.0 and merger.trans[3, 4] == 1.0
        assert merger.trans.sum() == 3.0

    def test_state_out_of_range(self):
        merger = ModelMerging.from_sequences([seq(0, 1)])
        with pytest.raises(IndexError):
            merger.state(0, 2)

    def test_smaller_root_survives(self):
        merger = ModelMerging.from_sequences([seq(0, 1, 2), seq(5, 6)])
        assert merger.merge(4, 1) == 1
        assert merger.find(4) == 1
        assert merger.merge(1, 0) == 0
        assert merger.find(4) == 0
        assert merger.find(merger.find(4)) == merger.find(4)

    def test_merge_same_class_is_noop(self):
        merger = ModelMerging.from_sequences([seq(0, 1, 2)])
        merger.merge(0, 1)
        trans = merger.trans.copy()
        assert merger.merge(1, 0) == 0
        np.testing.assert_array_equal(merger.trans, trans)

    def test_merge_averages_means_and_flags(self):
        merger = ModelMerging.from_sequences([seq(0, 1), seq(3, 5)])
        merger.merge(0, 2, is_from_alignment=True)
        assert merger.means[0, 0] == pytest.approx(1.5)
        assert merger.is_segmental[0]
        assert merger.start[0] == 2.0 and merger.start[2] == 0.0


class TestMergeCandidates:
    """Tests for internal and alignment merge candidates."""

    def test_internal_merges_below_percentile(self):
        """Only consecutive frames strictly closer than the member's percentile are proposed."""
        merger = ModelMerging.from_sequences([seq(0, 0.1, 5, 5.1, 20)])
        operations = merger.internal_merges(0, 0.5)
        # consecutive distances: 0.1, 4.9, 0.1, 14.9 -> threshold 4.9
        assert [(op.state_i, op.state_j) for op in operations] == [(1, 0), (3, 2)]
        assert not any(op.is_from_alignment for op in operations)

    def test_alignment_merges_on_matched_frames(self):
        x = seq(0, 1, 2)
        merger = ModelMerging.from_sequences([x, x])
        path = align_sequences(x, x, AlignmentParams(warping_band=3)).path()
        operations = merger.merges_from_alignment(1, 0, path, th=0.5, k=5)
        assert sorted(op.key for op in operations) == [(0, 3), (1, 4), (2, 5)]
        assert all(op.is_from_alignment for op in operations)

    def test_alignment_merges_use_moving_average(self):
        """After k steps the smoothed distance replaces the raw one."""
        x = seq(0, 0, 0, 0)
        y = seq(0, 0, 0, 3)
        merger = ModelMerging.from_sequences([x, y])
        path = align_sequences(x, y, AlignmentParams(warping_band=4)).path()
        # raw distances 0, 0, 0, 3; with k=1 step 3 sees the mean of step 2 only
        operations = merger.merges_from_alignment(0, 1, path, th=0.5, k=1)
        assert sorted(op.key for op in operations) == [(0, 4), (1, 5), (2, 6), (3, 7)]
        operations = merger.merges_from_alignment(0, 1, path, th=0.5, k=0)
        assert sorted(op.key for op in operations) == [(0, 4), (1, 5), (2, 6)]

    def test_duplicate_candidate_upgrades_to_alignment(self):
        merger = ModelMerging.from_sequences([seq(0, 1, 2)])
        n_unique = merger.apply([
            MergeOperation(1, 0, 0.0, False),
            MergeOperation(0, 1, 0.0, True),
        ])
        assert n_unique == 1
        assert merger.is_segmental[0]


class TestShrink:
    """Tests for compaction into a HiddenMarkovModel."""

    def test_merged_identical_members(self):
        """Two identical members collapse onto one chain with self loops."""
        x = seq(0, 1, 2)
        merger = ModelMerging.from_sequences([x, x])
        path = align_sequences(x, x, AlignmentParams(warping_band=3)).path()
        n_unique = merger.merge_all([(1, 0, path)], internal_perc=0.1, th=0.5, k=5)
        model = merger.shrink()

        assert n_unique == 3
        assert model.n_states == 3
        np.testing.assert_allclose(model.trans, [
            [1 / 3, 2 / 3, 0.0],
            [0.0, 1 / 3, 2 / 3],
            [0.0, 0.0, 1.0],
        ])
        np.testing.assert_allclose(model.start, [1.0, 0.0, 0.0])
        np.testing.assert_allclose(model.stop, [0.0, 0.0, 1.0])
        np.testing.assert_allclose(model.means[:, 0], [0.0, 1.0, 2.0])
        assert model.is_segmental.all()

    def test_rows_are_distributions(self):
        rng = np.random.default_rng(2)
        members = [FeatureSequence(rng.normal(size=(n, 2))) for n in (5, 7, 6)]
        merger = ModelMerging.from_sequences(members)
        merger.merge(0, 6)
        merger.merge(3, 14)
        merger.merge(4, 17)
        model = merger.shrink()

        assert model.n_states == merger.n_states - 3
        np.testing.assert_allclose(model.trans.sum(axis=1), 1.0)
        assert model.start.sum() == pytest.approx(1.0)
        assert model.stop.sum() == pytest.approx(1.0)
        assert (model.variances >= 1e-2).all()

    def test_variance_pools_frames(self):
        merger = ModelMerging.from_sequences([seq(0.0), seq(2.0)])
        merger.merge(0, 1)
        model = merger.shrink(variance_floor=1e-6)
        assert model.means[0, 0] == pytest.approx(1.0)
        assert model.variances[0, 0] == pytest.approx(1.0)

    def test_empty_cluster_rejected(self):
        merger = ModelMerging.from_sequences([FeatureSequence(np.zeros((0, 1)))])
        with pytest.raises(ValueError):
            merger.shrink()


class TestViterbi:
    """Tests for Viterbi scoring and classification."""

    def test_single_state_likelihood(self):
        model = single_state_model()
        assert model.viterbi(seq(0, 0)) == pytest.approx(-0.5 * math.log(2 * math.pi))

    def test_deterministic(self):
        rng = np.random.default_rng(9)
        members = [FeatureSequence(rng.normal(size=(6, 2))) for _ in range(2)]
        model = ModelMerging.from_sequences(members).shrink()
        probe = FeatureSequence(rng.normal(size=(6, 2)))
        assert model.viterbi(probe) == model.viterbi(probe)

    def test_unreachable_length_scores_minus_inf(self):
        """A chain without loops cannot emit a longer sequence."""
        model = HiddenMarkovModel(
            trans=np.array([[0.0, 1.0], [0.0, 0.0]]),
            start=np.array([1.0, 0.0]),
            stop=np.array([0.0, 1.0]),
            means=np.zeros((2, 1)),
            variances=np.ones((2, 1)),
            is_segmental=np.zeros(2, dtype=bool),
        )
        assert math.isfinite(model.viterbi(seq(0, 0)))
        assert model.viterbi(seq(0, 0, 0)) == float("-inf")

    def test_empty_sequence(self):
        assert single_state_model().viterbi(FeatureSequence(np.zeros((0, 1)))) == float("-inf")

    def test_dimension_mismatch(self):
        with pytest.raises(ValueError):
            single_state_model().viterbi(FeatureSequence(np.zeros((3, 2))))

    def test_classify_picks_closest_model(self):
        models = [single_state_model(0.0), single_state_model(10.0)]
        best, scores = classify(models, seq(9.5, 10.2))
        assert best == 1
        assert scores[1] > scores[0]

    def test_classify_ties_resolve_to_first(self):
        models = [single_state_model(0.0), single_state_model(0.0)]
        best, _ = classify(models, seq(1.0))
        assert best == 0

    def test_model_is_read_only(self):
        model = single_state_model()
        with pytest.raises(ValueError):
            model.trans[0, 0] = 0.5
