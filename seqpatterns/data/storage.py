"""Loading feature sequences from disk and writing discovery results.

Feature files are ``.npy`` arrays of shape ``(T, D)`` produced by an
external feature extractor. Every sequence of one run must share ``D``.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

import numpy as np

from ..util.errors import FeatureDimensionError
from ..util.types import FeatureSequence


FEATURE_SUFFIXES = (".npy",)


def collect_feature_paths(
	files: Optional[Iterable[str | Path]] = None,
	directory: Optional[str | Path] = None,
	*,
	recursive: bool = False,
) -> List[Path]:
	"""Gather feature files from explicit paths and/or a directory, de-duplicated in order.

	Raises:
		NotADirectoryError: if ``directory`` is given but is not a directory
	"""
	paths: List[Path] = []
	if directory is not None:
		d = Path(directory)
		if not d.is_dir():
			raise NotADirectoryError(f"Not a directory: {directory}")
		candidates = sorted(d.rglob("*")) if recursive else sorted(d.iterdir())
		for p in candidates:
			if p.suffix.lower() in FEATURE_SUFFIXES and p.is_file():
				paths.append(p)
	if files:
		paths.extend(Path(f) for f in files)

	# de-duplicate
	seen = set()
	uniq: List[Path] = []
	for p in paths:
		if str(p) not in seen:
			seen.add(str(p))
			uniq.append(p)
	return uniq


def load_feature_file(path: str | Path) -> FeatureSequence:
	"""Read one ``(T, D)`` feature array; 1-D arrays are read as ``(T, 1)``."""
	p = Path(path)
	frames = np.load(p, allow_pickle=False)
	if frames.ndim not in (1, 2):
		raise ValueError(f"{p}: expected a (T, D) array, got shape {frames.shape}")
	return FeatureSequence(frames=frames, source=str(p))


def check_dimensions(sequences: Sequence[FeatureSequence]) -> int:
	"""Return the shared dimensionality or raise ``FeatureDimensionError``."""
	dims = {seq.n_dims for seq in sequences}
	if len(dims) > 1:
		detail = ", ".join(f"{seq.source}: {seq.n_dims}" for seq in sequences)
		raise FeatureDimensionError(f"Feature dimensionality differs between sequences ({detail})")
	return dims.pop() if dims else 0


def load_feature_sequences(paths: Iterable[str | Path]) -> List[FeatureSequence]:
	"""Load every file and check that all share one dimensionality."""
	sequences = [load_feature_file(p) for p in paths]
	check_dimensions(sequences)
	return sequences


def load_feature_directory(directory: str | Path, recursive: bool = False) -> List[FeatureSequence]:
	"""Load every ``.npy`` file under ``directory`` in sorted order."""
	return load_feature_sequences(collect_feature_paths(directory=directory, recursive=recursive))


def ensure_parent_dir(path: Path) -> None:
	"""Ensure the parent directory for ``path`` exists (idempotent)."""
	path.parent.mkdir(parents=True, exist_ok=True)


def write_json(result: Dict[str, Any], path: str | Path) -> Path:
	"""Write a JSON document, creating parent directories as needed."""
	p = Path(path)
	ensure_parent_dir(p)
	with p.open("w", encoding="utf-8") as f:
		json.dump(result, f, indent=2, default=str)
	return p
