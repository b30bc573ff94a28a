#!/usr/bin/env python3
"""bloomgrid.pipeline

Sequential driver: every stage fully materializes its table before the next
one starts, and every stage gets the same GridDefinition.

    grid -> vegetation -> phenology -> ranges -> plant richness
         -> elevation -> observations -> merge -> write

The pipeline YAML is turned into a PipelineConfig first, so a bad config
fails before any data is read.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd

from bloomgrid.config import (
    DEFAULT_OUTPUT,
    load_yaml,
    resolve_path,
    resolve_paths,
    section,
)
from bloomgrid.diagnostics import Diagnostics
from bloomgrid.grid import GridDefinition


# Allowed option keys per config section, forwarded as keyword arguments.
_VEGETATION_KEYS = {"index_tag", "cell_column", "min_observations"}
_PHENOLOGY_KEYS = {"species_column", "begin_column", "end_column"}
_RANGES_KEYS = {"species_column", "status_column"}
_OBSERVATION_KEYS = {
    "species_of_interest",
    "richness_species",
    "species_column",
    "date_column",
    "month_column",
    "x_column",
    "y_column",
}
_ELEVATION_KEYS = {"aggregation_factor"}
_GRID_KEYS = {"bounds", "resolution", "crs"}


def _options(cfg: Dict[str, Any], name: str, allowed: set) -> Dict[str, Any]:
    opts = section(cfg, name)
    unknown = sorted(set(opts) - allowed)
    if unknown:
        raise SystemExit(f"Unknown keys in '{name}' config: {unknown}. Allowed: {sorted(allowed)}")
    return dict(opts)


@dataclass
class PipelineConfig:
    grid: GridDefinition
    vegetation_paths: List[Path]
    phenology_path: Optional[Path]
    observations_path: Optional[Path]
    elevation_path: Optional[Path]
    match_table_path: Optional[Path]
    range_directory: Optional[Path]
    output_path: Path = DEFAULT_OUTPUT
    diagnostics_path: Optional[Path] = None
    vegetation: Dict[str, Any] = field(default_factory=dict)
    phenology: Dict[str, Any] = field(default_factory=dict)
    ranges: Dict[str, Any] = field(default_factory=dict)
    observations: Dict[str, Any] = field(default_factory=dict)
    elevation: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, cfg: Dict[str, Any], base_dir: Path) -> "PipelineConfig":
        inputs = section(cfg, "inputs")
        ranges_in = inputs.get("ranges") or {}
        if not isinstance(ranges_in, dict):
            raise SystemExit("inputs.ranges must be a mapping with match_table and directory")
        output = section(cfg, "output")

        observations = _options(cfg, "observations", _OBSERVATION_KEYS)
        if not observations.get("species_of_interest"):
            raise SystemExit("observations.species_of_interest must list the bird species to track")

        return cls(
            grid=GridDefinition.from_config(_options(cfg, "grid", _GRID_KEYS)),
            vegetation_paths=resolve_paths(inputs.get("vegetation"), base_dir),
            phenology_path=resolve_path(inputs.get("phenology"), base_dir),
            observations_path=resolve_path(inputs.get("observations"), base_dir),
            elevation_path=resolve_path(inputs.get("elevation"), base_dir),
            match_table_path=resolve_path(ranges_in.get("match_table"), base_dir),
            range_directory=resolve_path(ranges_in.get("directory"), base_dir),
            output_path=resolve_path(output.get("path"), base_dir) or DEFAULT_OUTPUT,
            diagnostics_path=resolve_path(output.get("diagnostics"), base_dir),
            vegetation=_options(cfg, "vegetation", _VEGETATION_KEYS),
            phenology=_options(cfg, "phenology", _PHENOLOGY_KEYS),
            ranges=_options(cfg, "ranges", _RANGES_KEYS),
            observations=observations,
            elevation=_options(cfg, "elevation", _ELEVATION_KEYS),
        )

    @classmethod
    def from_yaml(cls, path: Path) -> "PipelineConfig":
        return cls.from_mapping(load_yaml(path), path.resolve().parent)

    def inputs(self) -> Dict[str, List[Path]]:
        """Every configured input, by source name (empty list = not configured)."""
        single = {
            "phenology": self.phenology_path,
            "observations": self.observations_path,
            "elevation": self.elevation_path,
            "range-match-table": self.match_table_path,
            "range-directory": self.range_directory,
        }
        out: Dict[str, List[Path]] = {"vegetation": list(self.vegetation_paths)}
        out.update({k: [v] if v is not None else [] for k, v in single.items()})
        return out


@dataclass
class PipelineResult:
    table: pd.DataFrame
    grid: GridDefinition
    diagnostics: Diagnostics


def verify_inputs(config: PipelineConfig) -> List[Dict[str, Any]]:
    """Presence check for every input; does not read any data."""
    results = []
    for source, paths in config.inputs().items():
        if not paths:
            results.append({"source": source, "ok": False, "reason": "not configured (or glob matched nothing)"})
            continue
        missing = [str(p) for p in paths if not p.exists()]
        entry: Dict[str, Any] = {"source": source, "ok": not missing, "count": len(paths)}
        if missing:
            entry["reason"] = f"missing: {missing[:5]}"
        else:
            entry["sample"] = [str(p) for p in paths[:5]]
        results.append(entry)
    return results


def run_pipeline(config: PipelineConfig, *, diagnostics: Optional[Diagnostics] = None) -> PipelineResult:
    """Run every stage in order and return the unified table (not written)."""
    # Lazy imports: keep CLI startup fast, avoid loading the geo stack until needed
    from bloomgrid.features.merge import merge_datasets
    from bloomgrid.features.richness import monthly_richness
    from bloomgrid.geo.elevation import load_elevation
    from bloomgrid.geo.rasterize import rasterize_ranges
    from bloomgrid.ingest.observations import load_observations
    from bloomgrid.ingest.phenology import load_phenology
    from bloomgrid.ingest.ranges import directory_loader, load_match_table
    from bloomgrid.ingest.vegetation import load_vegetation

    diag = diagnostics if diagnostics is not None else Diagnostics()
    grid = config.grid
    print(f"[GRID] {grid.describe()}")

    for source, paths in config.inputs().items():
        if not paths:
            raise SystemExit(f"Input '{source}' is not configured")

    vegetation = load_vegetation(config.vegetation_paths, diagnostics=diag, **config.vegetation)

    intervals = load_phenology(config.phenology_path, diagnostics=diag, **config.phenology)

    match_table = load_match_table(config.match_table_path, **config.ranges)
    masks = rasterize_ranges(
        match_table,
        intervals,
        grid,
        directory_loader(config.range_directory),
        diagnostics=diag,
    )
    plants = monthly_richness(masks, intervals, grid, diagnostics=diag)

    elevation = load_elevation(config.elevation_path, grid, diagnostics=diag, **config.elevation)

    birds = load_observations(config.observations_path, grid, diagnostics=diag, **config.observations)

    table = merge_datasets(
        plants,
        birds.frame,
        vegetation,
        elevation,
        presence_columns=list(birds.columns.values()),
        diagnostics=diag,
    )
    return PipelineResult(table=table, grid=grid, diagnostics=diag)


def write_table(table: pd.DataFrame, out_path: Path) -> Path:
    """Parquet for `.parquet`, CSV for anything else."""
    out_path.parent.mkdir(parents=True, exist_ok=True)
    if out_path.suffix.lower() == ".parquet":
        table.to_parquet(out_path, index=False)
    else:
        table.to_csv(out_path, index=False)
    print(f"[DONE] wrote {len(table)} rows x {table.shape[1]} cols -> {out_path}")
    return out_path


def write_diagnostics(diag: Diagnostics, out_path: Path) -> Path:
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_text(json.dumps(diag.as_dict(), indent=2, default=str), encoding="utf-8")
    print(f"[DONE] diagnostics -> {out_path}")
    return out_path
