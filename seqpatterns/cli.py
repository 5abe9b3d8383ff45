"""seqpatterns CLI - Command-line interface for temporal pattern discovery.

Primary Commands:
  - align-pair: Align two feature sequences with banded DTW
  - discover: Full pipeline with alignment, clustering, model merging and decoding
  - regions: Extract the interesting regions of one feature sequence
  - init: Create the data directories
"""

from __future__ import annotations

import json
import logging
import typer
import yaml
from rich import print
from rich.table import Table

from .config import ensure_data_dirs, DATA_DIR, OUTPUT_DIR, DiscoveryConfig
from .data.storage import collect_feature_paths, load_feature_file
from .util.errors import DiscoveryError


logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

app = typer.Typer(add_completion=False, no_args_is_help=True)


def _load_config(config: str | None, **overrides) -> DiscoveryConfig:
	"""Read the YAML config (if any) and apply command-line overrides."""
	try:
		base = DiscoveryConfig.from_yaml(config) if config else DiscoveryConfig()
		data = base.to_dict()
		data.update({k: v for k, v in overrides.items() if v is not None})
		return DiscoveryConfig.from_dict(data)
	except (DiscoveryError, OSError, yaml.YAMLError) as e:
		raise typer.BadParameter(str(e))


def _load_feature_file(file: str):
	"""Load one feature file, reporting unreadable input as a bad parameter."""
	try:
		return load_feature_file(file)
	except (ValueError, OSError) as e:
		raise typer.BadParameter(f"Cannot load feature file {file}: {e}")


@app.command(name="init")
def init_cmd() -> None:
	"""Initialize data directories."""
	ensure_data_dirs()
	print(f"[green]Initialized data at[/green] {DATA_DIR} (output: {OUTPUT_DIR})")


@app.command(name="align-pair")
def align_pair_cmd(
	file_a: str = typer.Argument(..., help="First feature file (.npy)"),
	file_b: str = typer.Argument(..., help="Second feature file (.npy)"),
	warping_band: int | None = typer.Option(None, help="Absolute warping band; overrides the percentage"),
	band_pct: float = typer.Option(1.0, "--band-pct", help="Warping band as fraction of the longer sequence"),
	show_path: bool = typer.Option(False, help="Show the warping path"),
	show_path_limit: int = typer.Option(50, help="Max path rows to show"),
) -> None:
	"""Align two feature sequences and report score and path statistics."""
	import time
	from .analysis.alignment import align_sequences, path_statistics
	from .data.storage import check_dimensions

	config = _load_config(None, warping_band=warping_band, warping_band_percentage=band_pct)
	seq_a = _load_feature_file(file_a)
	seq_b = _load_feature_file(file_b)
	try:
		check_dimensions([seq_a, seq_b])
	except DiscoveryError as e:
		raise typer.BadParameter(str(e))

	print(f"[green]Loaded:[/green] {len(seq_a)} frames from A, {len(seq_b)} frames from B")

	start_time = time.time()
	params = config.alignment_params(max(len(seq_a), len(seq_b)))
	result = align_sequences(seq_a, seq_b, params)
	path = result.path()
	elapsed_time = time.time() - start_time

	metadata = {
		"pairwise_alignment": {
			"file_a": seq_a.source,
			"file_b": seq_b.source,
			"band_width": result.band,
			"score": result.score(),
			"path": path_statistics(path),
			"config": {
				"warping_band": params.warping_band,
				"insertion_penalty": params.insertion_penalty,
				"deletion_penalty": params.deletion_penalty,
				"match_penalty": params.match_penalty,
			},
			"computation_time": round(elapsed_time, 3),
		}
	}

	if show_path:
		tbl = Table(title=f"Warping Path (showing {min(show_path_limit, len(path))} of {len(path)} steps)")
		tbl.add_column("Step")
		tbl.add_column("A idx")
		tbl.add_column("B idx")
		tbl.add_column("Edit")
		tbl.add_column("Dist")
		tbl.add_column("Cost")
		for k, node in enumerate(path[:show_path_limit]):
			i, j = node.cur
			tbl.add_row(str(k), str(i), str(j), node.label.value, f"{node.distance:.3f}", f"{node.cost:.3f}")
		print(tbl)
		if len(path) > show_path_limit:
			print(f"[dim]... {len(path) - show_path_limit} more steps not shown (use --show-path-limit to adjust)[/dim]")

	print("\n[yellow]Alignment Metadata:[/yellow]")
	print(json.dumps(metadata, indent=2, default=str))


@app.command(name="discover")
def discover_cmd(
	files: list[str] | None = typer.Argument(None, help="Feature files (.npy) to process"),
	dir: str | None = typer.Option(None, "--dir", help="Folder containing .npy feature files"),
	recursive: bool = typer.Option(False, help="Recursively search for .npy under --dir"),
	config: str | None = typer.Option(None, "--config", help="YAML file with discovery parameters"),
	workers: int | None = typer.Option(None, "--workers", help="Number of alignment workers"),
	clustering_percentile: float | None = typer.Option(None, help="Clustering threshold percentile (0..1)"),
	merging_percentile: float | None = typer.Option(None, help="Model merging threshold percentile (0..1)"),
	regions: bool = typer.Option(False, "--regions", help="Split inputs into interesting regions first"),
	output_format: str = typer.Option("table", "--format", help="Output format: table or json"),
	output_dir: str | None = typer.Option(None, "--output-dir", help="Directory to write results.json"),
) -> None:
	"""Run the full discovery pipeline over a set of feature sequences."""
	from .pipelines import DiscoveryPipeline, DiscoveryPipelineConfig

	if output_format not in ("table", "json"):
		raise typer.BadParameter(f"Unsupported output format: {output_format}")
	try:
		paths = collect_feature_paths(files, dir, recursive=recursive)
	except NotADirectoryError as e:
		raise typer.BadParameter(f"--dir path is not a directory: {dir}") from e
	if len(paths) == 0:
		raise typer.BadParameter("Provide feature files via arguments or --dir")

	discovery = _load_config(
		config,
		alignment_workers=workers,
		clustering_percentile=clustering_percentile,
		merging_percentile=merging_percentile,
		extract_regions=True if regions else None,
	)
	print(f"[blue]Found {len(paths)} feature files[/blue]")

	pipeline = DiscoveryPipeline(DiscoveryPipelineConfig(
		feature_paths=paths,
		discovery=discovery,
		output_format=output_format,
		output_dir=output_dir,
	))
	try:
		pipeline.run()
	except DiscoveryError as e:
		print(f"[red]Discovery failed:[/red] {e}")
		raise typer.Exit(code=1)
	except (ValueError, OSError) as e:
		raise typer.BadParameter(str(e))


@app.command(name="regions")
def regions_cmd(
	file: str = typer.Argument(..., help="Feature file (.npy)"),
	moving: int = typer.Option(15, help="Width of the moving average"),
	perc: float = typer.Option(0.95, help="Activity percentile used as threshold (0..1)"),
	min_len: int = typer.Option(150, help="Minimum region length in frames"),
) -> None:
	"""Print the interesting regions of one feature sequence."""
	from .analysis.regions import interesting_ranges

	config = _load_config(None, vat_moving=moving, vat_percentile=perc, vat_min_len=min_len)
	seq = _load_feature_file(file)
	ranges = interesting_ranges(seq, config.vat_moving, config.vat_percentile, config.vat_min_len)

	tbl = Table(title=f"Regions in {seq.source} ({len(ranges)} of {len(seq)} frames)")
	tbl.add_column("Region")
	tbl.add_column("Start")
	tbl.add_column("Stop")
	tbl.add_column("Frames")
	for k, region in enumerate(ranges):
		tbl.add_row(str(k), str(region.start), str(region.stop), str(len(region)))
	print(tbl)


if __name__ == "__main__":
	app()
