#!/usr/bin/env python3
"""richness.py

Monthly flowering-plant richness: for each month, sum the range masks of
the species whose flowering interval contains that month.

Month membership is the seasonal test from FloweringInterval, so a
November-February species counts in 11, 12, 1 and 2 regardless of year.
"""

from __future__ import annotations

from typing import Dict, List, Mapping, Optional

import numpy as np
import pandas as pd

from bloomgrid.diagnostics import Diagnostics
from bloomgrid.grid import GridDefinition
from bloomgrid.ingest.phenology import FloweringInterval


STAGE = "plant_richness"
MONTHS = tuple(range(1, 13))


def flowering_species(intervals: Mapping[str, FloweringInterval], month: int) -> List[str]:
    return sorted(name for name, interval in intervals.items() if interval.contains_month(month))


def monthly_richness(
    masks: Mapping[str, np.ndarray],
    intervals: Mapping[str, FloweringInterval],
    grid: GridDefinition,
    *,
    diagnostics: Optional[Diagnostics] = None,
) -> pd.DataFrame:
    """(cell, month, plant_richness) for every grid cell and month 1..12."""
    diag = diagnostics if diagnostics is not None else Diagnostics()

    per_month: List[pd.DataFrame] = []
    flowering_counts: Dict[int, int] = {}
    for month in MONTHS:
        names = [n for n in flowering_species(intervals, month) if n in masks]
        flowering_counts[month] = len(names)

        total = grid.blank(dtype=np.int64, fill=0)
        for name in names:
            mask = masks[name]
            if mask.shape != grid.shape:
                raise ValueError(f"Mask for {name} has shape {mask.shape}, grid is {grid.shape}")
            total += mask.astype(np.int64)

        frame = grid.array_to_frame(total, "plant_richness")
        frame.insert(1, "month", np.int64(month))
        per_month.append(frame)

    out = pd.concat(per_month, ignore_index=True)
    out["month"] = out["month"].astype("int64")

    diag.note(STAGE, "flowering_species_by_month", flowering_counts)
    diag.note(STAGE, "masks_without_interval", sum(1 for n in masks if n not in intervals))
    diag.rows(STAGE, "aggregate", len(out))

    busiest = max(flowering_counts, key=flowering_counts.get)
    print(
        f"[RICHNESS] {len(out)} (cell, month) rows; "
        f"peak month {busiest} with {flowering_counts[busiest]} flowering species"
    )
    return out
