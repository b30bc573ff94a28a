#!/usr/bin/env python3
"""observations.py

Turn bird point observations into per-(cell, month) presence flags and a
richness count.

Each species of interest gets its own explicitly named 0/1 column
(`present_<species>`); the returned ObservationTable carries the
species -> column mapping so nothing downstream depends on column order.
Richness is the sum over a fixed, named subset of those species, which may
be smaller than the set of species tracked.

Drops (each counted in Diagnostics):
- unparseable dates / months
- species not of interest
- points outside the grid
- duplicate (species, month, cell) events collapse to one
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from bloomgrid.config import require_files
from bloomgrid.diagnostics import Diagnostics
from bloomgrid.grid import GridDefinition


STAGE = "observations"
PRESENCE_PREFIX = "present_"


def presence_column(species: str) -> str:
    slug = re.sub(r"[^0-9a-z]+", "_", str(species).strip().lower()).strip("_")
    if not slug:
        raise ValueError(f"Species tag {species!r} has no usable characters for a column name")
    return PRESENCE_PREFIX + slug


@dataclass(frozen=True)
class ObservationTable:
    frame: pd.DataFrame
    columns: Dict[str, str]
    richness_species: Tuple[str, ...]

    def presence(self, cell: int, month: int) -> Dict[str, bool]:
        """species -> present? for one (cell, month); all False if never observed."""
        hit = self.frame[(self.frame["cell"] == cell) & (self.frame["month"] == month)]
        if hit.empty:
            return {species: False for species in self.columns}
        row = hit.iloc[0]
        return {species: bool(row[col]) for species, col in self.columns.items()}


def _resolve_species(
    species_of_interest: Sequence[str],
    richness_species: Optional[Sequence[str]],
) -> Tuple[Dict[str, str], Tuple[str, ...]]:
    tracked = [str(s).strip() for s in species_of_interest]
    if not tracked:
        raise ValueError("species_of_interest must name at least one species")
    if len(set(tracked)) != len(tracked):
        raise ValueError(f"species_of_interest has duplicates: {tracked}")

    columns = {s: presence_column(s) for s in tracked}
    if len(set(columns.values())) != len(columns):
        raise ValueError(f"species_of_interest map to clashing column names: {columns}")

    subset = tuple(tracked if richness_species is None else [str(s).strip() for s in richness_species])
    unknown = [s for s in subset if s not in columns]
    if unknown:
        raise ValueError(f"richness_species {unknown} are not in species_of_interest {tracked}")
    return columns, subset


def _months(points: pd.DataFrame, date_column: Optional[str], month_column: Optional[str]) -> pd.Series:
    if month_column:
        months = pd.to_numeric(points[month_column], errors="coerce")
        return months.where((months >= 1) & (months <= 12) & (months == months.round()))
    dates = pd.to_datetime(points[date_column], errors="coerce")
    return dates.dt.month


def aggregate_observations(
    points: pd.DataFrame,
    grid: GridDefinition,
    *,
    species_of_interest: Sequence[str],
    richness_species: Optional[Sequence[str]] = None,
    species_column: str = "species",
    date_column: Optional[str] = "date",
    month_column: Optional[str] = None,
    x_column: str = "longitude",
    y_column: str = "latitude",
    diagnostics: Optional[Diagnostics] = None,
) -> ObservationTable:
    """Points -> ObservationTable with one row per observed (cell, month).

    Args:
        points: raw observation rows
        grid: the shared grid
        species_of_interest: species that get a presence column
        richness_species: subset summed into `bird_richness`
            (default: all species of interest)
        month_column: use an integer month column instead of parsing dates
    """
    diag = diagnostics if diagnostics is not None else Diagnostics()
    columns, subset = _resolve_species(species_of_interest, richness_species)

    needed = [species_column, x_column, y_column, month_column or date_column]
    missing = [c for c in needed if c not in points.columns]
    if missing:
        raise ValueError(f"Observation table is missing columns {missing}. Columns: {list(points.columns)}")
    diag.rows(STAGE, "input", len(points))

    events = pd.DataFrame({
        "species": points[species_column].astype("string").str.strip(),
        "month": _months(points, date_column, month_column),
        "x": pd.to_numeric(points[x_column], errors="coerce"),
        "y": pd.to_numeric(points[y_column], errors="coerce"),
    })

    bad_month = events["month"].isna()
    diag.drop(STAGE, "unparseable_dates", int(bad_month.sum()))
    events = events.loc[~bad_month]

    by_key = {s.casefold(): s for s in columns}
    canonical = events["species"].str.casefold().map(by_key)
    other = canonical.isna()
    diag.drop(STAGE, "species_not_of_interest", int(other.sum()))
    events = events.loc[~other].assign(species=canonical.loc[~other])

    cells = grid.cell_ids(events["x"].to_numpy(), events["y"].to_numpy())
    outside = cells == 0
    diag.drop(STAGE, "out_of_domain", int(outside.sum()))
    events = events.loc[~outside].assign(cell=cells[~outside])

    events = events[["species", "month", "cell"]].astype({"month": "int64", "cell": "int64"})
    before = len(events)
    events = events.drop_duplicates()
    diag.drop(STAGE, "duplicate_events", before - len(events))
    diag.rows(STAGE, "presence_events", len(events))

    if events.empty:
        wide = pd.DataFrame({
            "cell": pd.Series(dtype="int64"),
            "month": pd.Series(dtype="int64"),
        })
        for col in columns.values():
            wide[col] = pd.Series(dtype="int64")
    else:
        wide = (
            events.assign(flag=1)
            .pivot_table(index=["cell", "month"], columns="species", values="flag", aggfunc="max", fill_value=0)
            .reindex(columns=list(columns), fill_value=0)
            .rename(columns=columns)
            .reset_index()
        )
        wide.columns.name = None

    for col in columns.values():
        wide[col] = wide[col].astype("int64")
    wide["bird_richness"] = wide[[columns[s] for s in subset]].sum(axis=1).astype("int64")
    wide = wide.sort_values(["cell", "month"]).reset_index(drop=True)
    diag.rows(STAGE, "cell_months", len(wide))

    print(
        f"[OBS] {len(events)} presence events -> {len(wide)} (cell, month) rows; "
        f"richness over {len(subset)}/{len(columns)} species"
    )
    return ObservationTable(frame=wide, columns=dict(columns), richness_species=subset)


def load_observations(
    path: Path,
    grid: GridDefinition,
    **kwargs,
) -> ObservationTable:
    """Read the observation CSV and aggregate it (kwargs as aggregate_observations)."""
    require_files([path], "observations")
    points = pd.read_csv(path)
    print(f"[OBS] reading {path.name}: {len(points)} rows")
    return aggregate_observations(points, grid, **kwargs)
