#!/usr/bin/env python3
"""elevation.py

Put a static elevation raster onto the shared grid.

Steps:
1. window-read the raster over the grid bounds (boundless, so a raster that
   does not fully cover the grid still yields a full window)
2. fill nodata/NaN with 0, including pixels past the raster edge
3. downsample by an integer aggregation factor (block mean)
4. nearest-neighbour resample onto the grid

Step 2 is lossy: a true no-data pixel (ocean, gaps) becomes "sea level".
The number of filled pixels is recorded so the approximation stays visible.
"""

from __future__ import annotations

import math
from pathlib import Path
from typing import Optional, Tuple

import numpy as np
import pandas as pd
import rasterio
from rasterio.enums import Resampling
from rasterio.transform import Affine
from rasterio.warp import reproject, transform_bounds
from rasterio.windows import from_bounds

from bloomgrid.config import require_files
from bloomgrid.diagnostics import Diagnostics
from bloomgrid.grid import GridDefinition


STAGE = "elevation"


def fill_nodata(data: np.ndarray, nodata=None, fill: float = 0.0) -> Tuple[np.ndarray, int]:
    """Replace nodata and NaN with `fill`; return the array and how many were filled."""
    out = np.asarray(data, dtype="float32").copy()
    missing = np.isnan(out)
    if nodata is not None and not (isinstance(nodata, float) and math.isnan(nodata)):
        missing |= out == nodata
    out[missing] = fill
    return out, int(missing.sum())


def aggregate_blocks(data: np.ndarray, factor: int) -> np.ndarray:
    """Block-mean downsample. Partial edge blocks average what they have."""
    if factor < 1:
        raise ValueError(f"aggregation factor must be >= 1, got {factor}")
    if factor == 1:
        return data
    h, w = data.shape
    H = math.ceil(h / factor) * factor
    W = math.ceil(w / factor) * factor
    padded = np.full((H, W), np.nan, dtype="float64")
    padded[:h, :w] = data
    blocks = padded.reshape(H // factor, factor, W // factor, factor)
    return np.nanmean(blocks, axis=(1, 3)).astype("float32")


def resample_elevation(
    data: np.ndarray,
    transform: Affine,
    crs,
    grid: GridDefinition,
    *,
    nodata=None,
    aggregation_factor: int = 1,
    diagnostics: Optional[Diagnostics] = None,
) -> pd.DataFrame:
    """Array already cropped to the study area -> (cell, elevation)."""
    diag = diagnostics if diagnostics is not None else Diagnostics()

    filled, n_filled = fill_nodata(data, nodata)
    diag.note(STAGE, "nodata_filled_with_zero", n_filled)

    coarse = aggregate_blocks(filled, aggregation_factor)
    coarse_transform = transform @ Affine.scale(aggregation_factor)

    dest = np.full(grid.shape, np.nan, dtype="float32")
    reproject(
        source=coarse,
        destination=dest,
        src_transform=coarse_transform,
        src_crs=crs,
        dst_transform=grid.transform,
        dst_crs=grid.crs,
        resampling=Resampling.nearest,
        src_nodata=np.nan,
        dst_nodata=np.nan,
    )

    frame = grid.array_to_frame(dest, "elevation")
    uncovered = frame["elevation"].isna()
    diag.drop(STAGE, "cells_outside_raster", int(uncovered.sum()))
    out = frame.loc[~uncovered].reset_index(drop=True)
    out["elevation"] = out["elevation"].astype("float64")
    diag.rows(STAGE, "resample", len(out))
    return out


def load_elevation(
    path: Path,
    grid: GridDefinition,
    *,
    aggregation_factor: int = 1,
    diagnostics: Optional[Diagnostics] = None,
) -> pd.DataFrame:
    require_files([path], "elevation")
    diag = diagnostics if diagnostics is not None else Diagnostics()

    with rasterio.open(path) as src:
        if src.crs is None:
            raise SystemExit(f"Elevation raster has no CRS: {path}")

        bbox = grid.bounds
        if src.crs != grid.crs:
            bbox = transform_bounds(grid.crs, src.crs, *bbox, densify_pts=21)

        # GDAL prefers integer windows
        win = from_bounds(*bbox, transform=src.transform).round_offsets().round_lengths()
        # masked: pixels beyond the raster edge count as nodata, not as 0
        data = src.read(1, window=win, boundless=True, masked=True)
        data = data.astype("float32").filled(np.nan)
        transform = src.window_transform(win)
        nodata = src.nodata
        crs = src.crs

    print(f"[ELEV] {path.name}: window {data.shape[0]}x{data.shape[1]} px, aggregation factor {aggregation_factor}")
    out = resample_elevation(
        data,
        transform,
        crs,
        grid,
        nodata=nodata,
        aggregation_factor=aggregation_factor,
        diagnostics=diag,
    )
    filled = diag.notes.get(STAGE, {}).get("nodata_filled_with_zero", 0)
    print(f"[ELEV] {len(out)} cells with elevation ({filled} nodata pixels set to 0)")
    return out
