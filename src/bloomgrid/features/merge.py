#!/usr/bin/env python3
"""merge.py

Join every per-cell/per-month table into the final modelling table.

Order matters:
1. full outer join of plant and bird richness on (cell, month), absent
   values filled with 0 (absence, not "unobserved")
2. relevance filter: keep rows with plant_richness + bird_richness > 0
3. inner join with vegetation on (cell, month)
4. inner join with elevation on cell

Steps 2-4 can only shrink the table. Row counts are recorded after every
step; a step that grows the table means duplicate join keys upstream and
raises MissingJoinKeyError rather than passing the damage along.
"""

from __future__ import annotations

from typing import List, Optional, Sequence

import pandas as pd

from bloomgrid.diagnostics import Diagnostics
from bloomgrid.errors import MissingJoinKeyError


STAGE = "merge"
KEYS = ["cell", "month"]


def _check_unique(frame: pd.DataFrame, keys: Sequence[str], label: str) -> None:
    dupes = frame.duplicated(subset=list(keys)).sum()
    if dupes:
        raise MissingJoinKeyError(
            f"{label} has {dupes} duplicate {tuple(keys)} keys",
            details={"table": label, "duplicates": int(dupes)},
        )


def _step(diag: Diagnostics, step: str, before: int, after: int, *, monotonic: bool = True) -> None:
    diag.rows(STAGE, step, after)
    diag.drop(STAGE, step, max(before - after, 0))
    print(f"[MERGE] {step}: {before} -> {after} rows")
    if monotonic and after > before:
        raise MissingJoinKeyError(
            f"Row count grew during {step} ({before} -> {after})",
            details={"step": step, "before": before, "after": after},
        )


def merge_datasets(
    plant_richness: pd.DataFrame,
    bird_richness: pd.DataFrame,
    vegetation: pd.DataFrame,
    elevation: pd.DataFrame,
    *,
    presence_columns: Sequence[str] = (),
    diagnostics: Optional[Diagnostics] = None,
) -> pd.DataFrame:
    """Build the unified (cell, month) table.

    Args:
        plant_richness: cell, month, plant_richness
        bird_richness: cell, month, bird_richness, plus presence columns
        vegetation: cell, month, veg_mean, veg_sd
        elevation: cell, elevation
        presence_columns: bird presence columns to carry (zero-filled like
            the richness counts)
        diagnostics: row counts per step are recorded here if given

    Returns:
        cell, month, plant_richness, bird_richness, <presence_columns...>,
        veg_mean, veg_sd, elevation; sorted by (cell, month).
    """
    diag = diagnostics if diagnostics is not None else Diagnostics()
    presence = list(presence_columns)

    _check_unique(plant_richness, KEYS, "plant richness")
    _check_unique(bird_richness, KEYS, "bird richness")
    _check_unique(vegetation, KEYS, "vegetation")
    _check_unique(elevation, ["cell"], "elevation")

    plants = plant_richness[KEYS + ["plant_richness"]]
    birds = bird_richness[KEYS + ["bird_richness"] + presence]

    # 1. outer join; missing richness means absence
    merged = plants.merge(birds, on=KEYS, how="outer")
    count_cols = ["plant_richness", "bird_richness"] + presence
    merged[count_cols] = merged[count_cols].fillna(0).astype("int64")
    diag.rows(STAGE, "outer_join", len(merged))
    print(
        f"[MERGE] outer_join: {len(plants)} plant + {len(birds)} bird rows -> {len(merged)} rows"
    )

    # 2. relevance filter
    before = len(merged)
    merged = merged[(merged["plant_richness"] + merged["bird_richness"]) > 0]
    _step(diag, "relevance_filter", before, len(merged))

    # 3. vegetation (cell, month)
    before = len(merged)
    merged = merged.merge(vegetation[KEYS + ["veg_mean", "veg_sd"]], on=KEYS, how="inner")
    _step(diag, "vegetation_join", before, len(merged))

    # 4. elevation (cell only)
    before = len(merged)
    merged = merged.merge(elevation[["cell", "elevation"]], on="cell", how="inner")
    _step(diag, "elevation_join", before, len(merged))

    ordered: List[str] = KEYS + ["plant_richness", "bird_richness"] + presence + ["veg_mean", "veg_sd", "elevation"]
    return merged[ordered].sort_values(KEYS).reset_index(drop=True)
