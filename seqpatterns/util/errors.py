"""Exception hierarchy for the discovery pipeline."""

from __future__ import annotations


class DiscoveryError(Exception):
    """Base class for all errors raised by seqpatterns."""


class ConfigError(DiscoveryError):
    """Invalid or unknown configuration values."""


class AlignmentSchedulingError(DiscoveryError):
    """A worker failed while computing pairwise alignments.

    The partially filled alignment table is discarded; callers must not
    continue with downstream clustering.
    """


class FeatureDimensionError(DiscoveryError):
    """Sequences in one run do not share the same feature dimensionality."""
