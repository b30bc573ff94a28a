#!/usr/bin/env python3
"""vegetation.py

Aggregate per-year satellite vegetation-index summaries into one
(cell, month) record with a mean and a standard deviation across years.

Input files are one CSV per year. The usual layout is wide:

    cell, NDVI_01, NDVI_02, ..., EVI_12

with one column per composite key. Keys carry an index tag and a month in
either order (`NDVI_03`, `3.ndvi`, `X03.NDVI` as written by R's read.csv).
A long layout with `cell, key, value` columns is accepted as well.

Notes:
- Months above 12 wrap (13 -> 1); month 0 or below is a parse error.
- A (cell, month) with fewer than `min_observations` non-missing readings is
  dropped, never zero-filled. With the default of 2 the standard deviation is
  always defined.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import pandas as pd

from bloomgrid.config import require_files
from bloomgrid.diagnostics import Diagnostics
from bloomgrid.errors import ParseError


STAGE = "vegetation"

_TAG_FIRST = re.compile(r"^(?P<tag>[A-Za-z][A-Za-z0-9]*)[._-](?P<month>\d{1,2})$")
_MONTH_FIRST = re.compile(r"^(?P<month>\d{1,2})[._-](?P<tag>[A-Za-z][A-Za-z0-9]*)$")
_R_PREFIX = re.compile(r"^[Xx](?=\d)")
_YEAR = re.compile(r"(?<!\d)(19|20)\d{2}(?!\d)")


def parse_composite_key(key) -> Tuple[int, str]:
    """Split a composite key into (month 1-12, upper-case index tag)."""
    if key is None:
        raise ParseError("Composite key is missing")
    text = _R_PREFIX.sub("", str(key).strip())
    m = _TAG_FIRST.match(text) or _MONTH_FIRST.match(text)
    if not m:
        raise ParseError(f"Malformed composite key: {key!r}", details={"key": key})
    month = int(m.group("month"))
    if month < 1:
        raise ParseError(f"Month must be >= 1 in composite key {key!r}", details={"key": key})
    return ((month - 1) % 12) + 1, m.group("tag").upper()


def _year_from_path(path: Path) -> Optional[int]:
    m = _YEAR.search(path.stem)
    return int(m.group(0)) if m else None


def _to_long(frame: pd.DataFrame, cell_column: str) -> pd.DataFrame:
    if cell_column not in frame.columns:
        raise ValueError(f"Vegetation table has no '{cell_column}' column. Columns: {list(frame.columns)}")
    if {"key", "value"}.issubset(frame.columns):
        long = frame[[cell_column, "key", "value"]].copy()
    else:
        long = frame.melt(id_vars=[cell_column], var_name="key", value_name="value")
    return long.rename(columns={cell_column: "cell"})


def aggregate_vegetation(
    frames: Iterable[pd.DataFrame],
    *,
    index_tag: str = "NDVI",
    cell_column: str = "cell",
    min_observations: int = 2,
    diagnostics: Optional[Diagnostics] = None,
) -> pd.DataFrame:
    """Combine yearly tables into (cell, month, veg_mean, veg_sd).

    Args:
        frames: one DataFrame per year (any number, order irrelevant)
        index_tag: which index to keep (case-insensitive), e.g. "NDVI"
        cell_column: name of the cell id column in each frame
        min_observations: minimum non-missing readings per (cell, month)
        diagnostics: drop counters are recorded here if given

    Returns:
        DataFrame sorted by (cell, month), int64 keys, float statistics.
    """
    if min_observations < 1:
        raise ValueError(f"min_observations must be >= 1, got {min_observations}")
    diag = diagnostics if diagnostics is not None else Diagnostics()
    wanted_tag = index_tag.upper()

    parsed_keys: Dict[str, Optional[Tuple[int, str]]] = {}
    pieces: List[pd.DataFrame] = []

    for frame in frames:
        long = _to_long(frame, cell_column)

        for key in long["key"].astype(str).unique():
            if key in parsed_keys:
                continue
            try:
                parsed_keys[key] = parse_composite_key(key)
            except ParseError:
                parsed_keys[key] = None

        keys = long["key"].astype(str)
        parsed = keys.map(parsed_keys)
        bad = parsed.isna()
        diag.drop(STAGE, "malformed_key_values", int(bad.sum()))
        long = long.loc[~bad].copy()
        parsed = parsed.loc[~bad]

        long["month"] = [p[0] for p in parsed]
        long["tag"] = [p[1] for p in parsed]

        other = long["tag"] != wanted_tag
        diag.drop(STAGE, "other_index_values", int(other.sum()))
        long = long.loc[~other]

        long = long.assign(
            cell=pd.to_numeric(long["cell"], errors="coerce"),
            value=pd.to_numeric(long["value"], errors="coerce"),
        )
        no_cell = long["cell"].isna()
        diag.drop(STAGE, "missing_cell", int(no_cell.sum()))
        pieces.append(long.loc[~no_cell, ["cell", "month", "value"]])

    diag.drop(STAGE, "malformed_keys", sum(1 for v in parsed_keys.values() if v is None))

    if not pieces:
        return pd.DataFrame({
            "cell": pd.Series(dtype="int64"),
            "month": pd.Series(dtype="int64"),
            "veg_mean": pd.Series(dtype="float64"),
            "veg_sd": pd.Series(dtype="float64"),
        })

    readings = pd.concat(pieces, ignore_index=True)
    readings["cell"] = readings["cell"].astype("int64")
    readings["month"] = readings["month"].astype("int64")
    diag.drop(STAGE, "missing_values", int(readings["value"].isna().sum()))

    # count() ignores NaN, so an all-missing group has count 0
    stats = (
        readings.groupby(["cell", "month"])["value"]
        .agg(veg_mean="mean", veg_sd="std", n="count")
        .reset_index()
    )
    all_missing = stats["n"] == 0
    insufficient = (stats["n"] > 0) & (stats["n"] < min_observations)
    diag.drop(STAGE, "all_missing_groups", int(all_missing.sum()))
    diag.drop(STAGE, "insufficient_groups", int(insufficient.sum()))

    out = stats.loc[stats["n"] >= min_observations, ["cell", "month", "veg_mean", "veg_sd"]]
    out = out.sort_values(["cell", "month"]).reset_index(drop=True)
    diag.rows(STAGE, "aggregate", len(out))
    return out


def load_vegetation(
    paths: Sequence[Path],
    *,
    index_tag: str = "NDVI",
    cell_column: str = "cell",
    min_observations: int = 2,
    diagnostics: Optional[Diagnostics] = None,
) -> pd.DataFrame:
    """Read the yearly CSVs and aggregate them."""
    require_files(paths, "vegetation")
    diag = diagnostics if diagnostics is not None else Diagnostics()

    frames = []
    years = []
    for p in paths:
        year = _year_from_path(p)
        years.append(year)
        print(f"[VEG] reading {p.name}" + (f" (year {year})" if year else ""))
        frames.append(pd.read_csv(p))
    diag.note(STAGE, "files", len(frames))
    diag.note(STAGE, "years", sorted({y for y in years if y is not None}))

    out = aggregate_vegetation(
        frames,
        index_tag=index_tag,
        cell_column=cell_column,
        min_observations=min_observations,
        diagnostics=diag,
    )
    print(f"[VEG] {len(out)} (cell, month) records for {index_tag.upper()} from {len(frames)} files")
    return out
