#!/usr/bin/env python3
"""rasterize.py

Burn each species' range polygon onto the shared grid as a boolean
occupancy mask.

Coverage rule: a cell is in range if any part of the polygon touches it
(`all_touched=True`), not only when the polygon covers the cell center or a
majority of its area.

Only species that have BOTH a downloaded range and a parsed flowering
interval are rasterized. Everything else is counted, not silently skipped.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Dict, Iterable, List, Mapping, Optional

import geopandas as gpd
import numpy as np
import pandas as pd
from rasterio import features

from bloomgrid.diagnostics import Diagnostics
from bloomgrid.errors import ExternalFetchFailure
from bloomgrid.grid import GridDefinition
from bloomgrid.ingest.phenology import FloweringInterval
from bloomgrid.ingest.ranges import BoundaryLoader, normalize_species


STAGE = "ranges"


@dataclass
class RangeReport:
    total: int = 0
    downloaded: int = 0
    without_range: int = 0
    without_phenology: int = 0
    unreadable: int = 0
    retained: int = 0

    @property
    def fraction_obtained(self) -> float:
        return self.downloaded / self.total if self.total else 0.0


def _make_valid(gdf: gpd.GeoDataFrame) -> gpd.GeoDataFrame:
    """Repair invalid geometries (range polygons often self-intersect)."""
    gdf = gdf.copy()
    if hasattr(gdf.geometry, "make_valid"):
        gdf["geometry"] = gdf.geometry.make_valid()
    else:
        # older geopandas: buffer(0) trick
        gdf["geometry"] = gdf.geometry.buffer(0)
    return gdf


def rasterize_geometries(geometries: Iterable, grid: GridDefinition) -> np.ndarray:
    """Any-touch rasterization of geometries already in the grid CRS."""
    shapes = [(geom, 1) for geom in geometries if geom is not None and not geom.is_empty]
    if not shapes:
        return grid.blank(dtype=bool, fill=False)
    burned = features.rasterize(
        shapes,
        out_shape=grid.shape,
        transform=grid.transform,
        fill=0,
        all_touched=True,
        dtype="uint8",
    )
    return burned.astype(bool)


def boundary_mask(gdf: gpd.GeoDataFrame, grid: GridDefinition) -> np.ndarray:
    """Reproject, repair, and rasterize one species boundary."""
    if gdf.crs is None:
        raise ExternalFetchFailure("Range boundary has no CRS")
    if gdf.crs != grid.crs:
        gdf = gdf.to_crs(grid.crs)
    gdf = _make_valid(gdf)
    gdf = gdf[gdf.geometry.notna() & ~gdf.geometry.is_empty]
    return rasterize_geometries(gdf.geometry, grid)


def rasterize_ranges(
    match_table: pd.DataFrame,
    intervals: Mapping[str, FloweringInterval],
    grid: GridDefinition,
    load_boundary: BoundaryLoader,
    *,
    diagnostics: Optional[Diagnostics] = None,
) -> Dict[str, np.ndarray]:
    """Build species -> read-only boolean mask.

    Args:
        match_table: provider match table with `species` and `downloaded`
        intervals: parsed phenology, keyed by species name
        grid: the shared grid
        load_boundary: species name -> GeoDataFrame, raising
            ExternalFetchFailure when the boundary is unusable
        diagnostics: exclusion counts are recorded here if given

    Masks are keyed by the phenology species name so the monthly richness
    step can look them up directly.
    """
    diag = diagnostics if diagnostics is not None else Diagnostics()

    pheno_by_key = {normalize_species(name): name for name in intervals}
    downloaded_by_key: Dict[str, bool] = {}
    provider_name: Dict[str, str] = {}
    for row in match_table[["species", "downloaded"]].itertuples(index=False):
        key = normalize_species(row.species)
        downloaded_by_key[key] = downloaded_by_key.get(key, False) or bool(row.downloaded)
        provider_name.setdefault(key, str(row.species))

    universe = sorted(set(pheno_by_key) | set(downloaded_by_key))
    report = RangeReport(total=len(universe))
    report.downloaded = sum(1 for k in universe if downloaded_by_key.get(k, False))

    masks: Dict[str, np.ndarray] = {}
    unreadable: List[str] = []
    for key in universe:
        if not downloaded_by_key.get(key, False):
            report.without_range += 1
            continue
        if key not in pheno_by_key:
            report.without_phenology += 1
            continue

        name = pheno_by_key[key]
        try:
            mask = boundary_mask(load_boundary(provider_name.get(key, name)), grid)
        except ExternalFetchFailure as e:
            report.unreadable += 1
            unreadable.append(name)
            print(f"  - warning: {e}")
            continue

        mask.setflags(write=False)
        masks[name] = mask
        report.retained += 1

    diag.drop(STAGE, "without_range", report.without_range)
    diag.drop(STAGE, "without_phenology", report.without_phenology)
    diag.drop(STAGE, "unreadable_boundary", report.unreadable)
    diag.rows(STAGE, "rasterize", report.retained)
    for key, value in asdict(report).items():
        diag.note(STAGE, key, value)
    diag.note(STAGE, "fraction_obtained", round(report.fraction_obtained, 4))
    if unreadable:
        diag.note(STAGE, "unreadable_species", unreadable)

    print(
        f"[RANGES] obtained {report.downloaded}/{report.total} ranges "
        f"({report.fraction_obtained:.1%}); rasterized {report.retained} "
        f"(no range: {report.without_range}, no phenology: {report.without_phenology}, "
        f"unreadable: {report.unreadable})"
    )
    return masks
