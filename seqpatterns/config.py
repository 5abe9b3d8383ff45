"""Project-level configuration for data locations and discovery parameters.

The data directories can be overridden via environment variables:
- SEQPATTERNS_DATA_DIR: root data dir (defaults to <project>/data)
- SEQPATTERNS_OUTPUT_DIR: where pipeline results go (defaults to <data>/output)

Discovery parameters live in ``DiscoveryConfig`` and can be loaded from a
YAML file whose keys match the dataclass fields.
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Final, Optional

import yaml

from .analysis.alignment import AlignmentParams
from .analysis.scheduler import ParamsForLength, band_params_factory
from .util.errors import ConfigError


def _project_root() -> Path:
	"""Return an approximation of the project root (parent of the package)."""
	return Path(__file__).resolve().parents[1]


DATA_DIR: Final[Path] = Path(os.getenv("SEQPATTERNS_DATA_DIR", _project_root() / "data"))
OUTPUT_DIR: Final[Path] = Path(os.getenv("SEQPATTERNS_OUTPUT_DIR", DATA_DIR / "output"))


def ensure_data_dirs() -> None:
	"""Create the base data directories if they do not already exist."""
	DATA_DIR.mkdir(parents=True, exist_ok=True)
	OUTPUT_DIR.mkdir(parents=True, exist_ok=True)


@dataclass
class DiscoveryConfig:
	"""Parameters of alignment, clustering, model merging and region extraction."""
	# Align and clustering
	warping_band: Optional[int] = None        # absolute Sakoe-Chiba band, wins over the percentage
	warping_band_percentage: float = 1.0      # band as a fraction of the longer sequence
	insertion_penalty: float = 1.0
	deletion_penalty: float = 1.0
	match_penalty: float = 1.0
	alignment_workers: int = 4
	clustering_percentile: float = 0.05       # 5% of alignments can be merged

	# Model merging
	merging_percentile: float = 0.05          # global threshold over all local path distances
	merging_internal_percentile: float = 0.1  # per-member redundancy threshold
	merging_moving: int = 5                   # moving average window along a path
	variance_floor: float = 1e-2

	# Region extraction
	extract_regions: bool = False
	vat_moving: int = 15
	vat_percentile: float = 0.95
	vat_min_len: int = 150

	def __post_init__(self) -> None:
		self.validate()

	def validate(self) -> None:
		"""Raise ``ConfigError`` on out-of-range values."""
		for name in (
			"clustering_percentile",
			"merging_percentile",
			"merging_internal_percentile",
			"vat_percentile",
		):
			value = getattr(self, name)
			if not 0.0 <= value <= 1.0:
				raise ConfigError(f"{name} must be within [0, 1], got {value}")
		for name in ("insertion_penalty", "deletion_penalty", "match_penalty"):
			if getattr(self, name) < 0.0:
				raise ConfigError(f"{name} must be non-negative, got {getattr(self, name)}")
		if self.warping_band is not None and self.warping_band < 0:
			raise ConfigError(f"warping_band must be non-negative, got {self.warping_band}")
		if self.warping_band_percentage < 0.0:
			raise ConfigError(f"warping_band_percentage must be non-negative, got {self.warping_band_percentage}")
		if self.alignment_workers < 1:
			raise ConfigError(f"alignment_workers must be >= 1, got {self.alignment_workers}")
		if self.merging_moving < 0 or self.vat_moving < 0 or self.vat_min_len < 0:
			raise ConfigError("merging_moving, vat_moving and vat_min_len must be non-negative")
		if self.variance_floor <= 0.0:
			raise ConfigError(f"variance_floor must be positive, got {self.variance_floor}")

	def params_for_length(self) -> ParamsForLength:
		"""Per-pair alignment parameters as used by the scheduler."""
		return band_params_factory(
			warping_band_percentage=self.warping_band_percentage,
			warping_band=self.warping_band,
			insertion_penalty=self.insertion_penalty,
			deletion_penalty=self.deletion_penalty,
			match_penalty=self.match_penalty,
		)

	def alignment_params(self, length: int) -> AlignmentParams:
		"""Alignment parameters for a pair whose longer sequence has ``length`` frames."""
		return self.params_for_length()(length)

	def to_dict(self) -> Dict[str, Any]:
		return asdict(self)

	@classmethod
	def from_dict(cls, data: Optional[Dict[str, Any]]) -> "DiscoveryConfig":
		"""Build a config from a mapping, rejecting unknown keys."""
		data = dict(data or {})
		known = {f.name for f in fields(cls)}
		unknown = sorted(set(data) - known)
		if unknown:
			raise ConfigError(f"Unknown configuration keys: {', '.join(unknown)}")
		try:
			return cls(**data)
		except TypeError as e:
			raise ConfigError(str(e)) from e

	@classmethod
	def from_yaml(cls, path: str | Path) -> "DiscoveryConfig":
		"""Load configuration from a YAML file."""
		with open(path, "r", encoding="utf-8") as f:
			data = yaml.safe_load(f)
		if data is not None and not isinstance(data, dict):
			raise ConfigError(f"Configuration file {path} must contain a mapping")
		return cls.from_dict(data)
