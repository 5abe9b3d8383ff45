"""Compacted hidden Markov model of one cluster and its Viterbi scorer.

Emissions are diagonal-covariance Gaussians: every feature dimension of a
state has its own mean and variance. Start and stop distributions make the
model score whole sequences, not prefixes.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Sequence as SequenceT, Tuple

import numpy as np
from scipy.stats import norm

from seqpatterns.analysis.numerics import frame_matrix
from seqpatterns.util.types import Sequence


def _log(x: np.ndarray) -> np.ndarray:
    """Natural log with ``log(0) = -inf`` and no runtime warning."""
    with np.errstate(divide="ignore"):
        return np.log(x)


@dataclass(frozen=True)
class HiddenMarkovModel:
    """Immutable probabilistic automaton produced by model merging.

    Attributes:
        trans: ``(S, S)`` row-stochastic transition matrix
        start: ``(S,)`` start distribution
        stop: ``(S,)`` stop distribution
        means: ``(S, D)`` per-state emission means
        variances: ``(S, D)`` per-state emission variances
        is_segmental: ``(S,)`` states that absorbed a cross-sequence merge
    """
    trans: np.ndarray
    start: np.ndarray
    stop: np.ndarray
    means: np.ndarray
    variances: np.ndarray
    is_segmental: np.ndarray

    def __post_init__(self) -> None:
        for name in ("trans", "start", "stop", "means", "variances", "is_segmental"):
            arr = np.array(getattr(self, name), copy=True)
            arr.setflags(write=False)
            object.__setattr__(self, name, arr)

    @property
    def n_states(self) -> int:
        return int(self.trans.shape[0])

    @property
    def dim(self) -> int:
        return int(self.means.shape[1])

    def emission_log_probs(self, observations: np.ndarray) -> np.ndarray:
        """``(T, S)`` log-likelihood of every frame under every state."""
        obs = np.asarray(observations, dtype=np.float64)
        if obs.ndim != 2 or obs.shape[1] != self.dim:
            raise ValueError(f"Expected observations of shape (T, {self.dim}), got {obs.shape}")
        scale = np.sqrt(self.variances)
        # (T, 1, D) against (1, S, D), summed over independent dimensions
        log_pdf = norm.logpdf(obs[:, None, :], loc=self.means[None, :, :], scale=scale[None, :, :])
        return log_pdf.sum(axis=2)

    def viterbi(self, sequence: Sequence) -> float:
        """Best state path log-likelihood of ``sequence`` divided by its length.

        Args:
            sequence: Observation sequence with this model's dimensionality

        Returns:
            ``max_i(V[T-1, i] + ln stop[i]) / T``; ``-inf`` for an empty sequence
            or when no path has non-zero probability
        """
        obs = frame_matrix(sequence)
        n_frames = obs.shape[0]
        if n_frames == 0:
            return float("-inf")

        log_emissions = self.emission_log_probs(obs)
        log_trans = _log(self.trans)

        v = _log(self.start) + log_emissions[0]
        for t in range(1, n_frames):
            v = np.max(v[:, None] + log_trans, axis=0) + log_emissions[t]
        return float(np.max(v + _log(self.stop)) / n_frames)

    def summary(self) -> Dict[str, Any]:
        """Counts used in pipeline metadata and CLI output."""
        return {
            "n_states": self.n_states,
            "n_transitions": int(np.count_nonzero(self.trans)),
            "n_segmental": int(np.count_nonzero(self.is_segmental)),
            "n_start": int(np.count_nonzero(self.start)),
            "n_stop": int(np.count_nonzero(self.stop)),
        }


def classify(models: SequenceT[HiddenMarkovModel], sequence: Sequence) -> Tuple[int, List[float]]:
    """Score ``sequence`` under every model and return the best model index.

    Ties and all ``-inf`` scores resolve to the lowest index.
    """
    if not models:
        raise ValueError("At least one model is required for classification")
    scores = [model.viterbi(sequence) for model in models]
    best = 0
    max_ll = float("-inf")
    for i, ll in enumerate(scores):
        if ll > max_ll:
            best = i
            max_ll = ll
    return best, scores
