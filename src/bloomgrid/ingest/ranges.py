#!/usr/bin/env python3
"""ranges.py

Adapter for the plant range-map provider's on-disk output.

The provider itself (network download, name matching) runs elsewhere. What
it leaves behind, and what this module reads, is:

- a match table, one row per requested species, saying whether a range map
  was downloaded (BIEN-style columns `Species`, `Range_map_downloaded`)
- a directory of boundary files named after the species with underscores,
  e.g. `Salvia_greggii.shp` (also `.gpkg` / `.geojson`)

Species names are compared after normalization ("Salvia_greggii",
" salvia  greggii" and "Salvia greggii" are the same species).
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Optional

import geopandas as gpd
import pandas as pd

from bloomgrid.config import require_files
from bloomgrid.errors import ExternalFetchFailure


BOUNDARY_SUFFIXES = (".shp", ".gpkg", ".geojson")
_TRUTHY = {"yes", "y", "true", "t", "1", "1.0"}

BoundaryLoader = Callable[[str], gpd.GeoDataFrame]


def normalize_species(name) -> str:
    """Canonical comparison key for a species name."""
    return " ".join(str(name).replace("_", " ").split()).casefold()


def species_file_stem(name: str) -> str:
    return "_".join(str(name).replace("_", " ").split())


def parse_downloaded(value) -> bool:
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return False
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUTHY


def load_match_table(
    path: Path,
    *,
    species_column: str = "Species",
    status_column: str = "Range_map_downloaded",
) -> pd.DataFrame:
    """Read the provider's match table into (species, downloaded)."""
    require_files([path], "range match table")
    raw = pd.read_csv(path)
    missing = [c for c in (species_column, status_column) if c not in raw.columns]
    if missing:
        raise SystemExit(f"Range match table {path} is missing columns {missing}. Columns: {list(raw.columns)}")
    names = raw[species_column].astype("string").str.strip().fillna("")
    blank = (names == "").astype(bool)
    if blank.any():
        print(f"  - warning: {int(blank.sum())} match table rows without a species name skipped")
    out = pd.DataFrame({
        "species": names[~blank].astype(str),
        "downloaded": raw.loc[~blank, status_column].map(parse_downloaded).astype(bool),
    })
    return out.drop_duplicates(subset="species", keep="first").reset_index(drop=True)


def find_boundary_file(directory: Path, species: str) -> Optional[Path]:
    stem = species_file_stem(species)
    for suffix in BOUNDARY_SUFFIXES:
        candidate = directory / f"{stem}{suffix}"
        if candidate.exists():
            return candidate
    return None


def read_range_boundary(path: Path) -> gpd.GeoDataFrame:
    """Read one species boundary; any read problem is an ExternalFetchFailure."""
    try:
        gdf = gpd.read_file(path)
    except Exception as e:
        raise ExternalFetchFailure(f"Could not read range boundary {path}: {e}", details={"path": str(path)}) from e
    if gdf.empty:
        raise ExternalFetchFailure(f"Range boundary {path} contains zero features", details={"path": str(path)})
    if gdf.crs is None:
        raise ExternalFetchFailure(
            f"Range boundary {path} has no CRS (.prj missing or unreadable)",
            details={"path": str(path)},
        )
    return gdf


def directory_loader(directory: Path) -> BoundaryLoader:
    """Boundary loader that reads `<Genus>_<epithet>.<ext>` files from a directory."""
    if not directory.exists() or not directory.is_dir():
        raise SystemExit(f"Range directory not found: {directory}")

    def _load(species: str) -> gpd.GeoDataFrame:
        path = find_boundary_file(directory, species)
        if path is None:
            raise ExternalFetchFailure(
                f"No boundary file for {species} in {directory}",
                details={"species": species},
            )
        return read_range_boundary(path)

    return _load
