#!/usr/bin/env python3
"""bloomgrid.grid

The shared spatial grid. Every stage that places something on the map goes
through one GridDefinition value; nothing recomputes its own indexing.

Cell ids are 1-based and row-major from the north-west corner:

    id = row * ncols + col + 1

so flattening a (nrows, ncols) array in C order lines up with ids 1..ncells.
Id 0 is never valid and marks out-of-domain points in vectorized lookups.

The grid is anchored at (xmin, ymax). Column/row counts are the rounded
extent/resolution ratio, so the effective east and south edges can differ
slightly from the configured ones (e.g. lon [-125, -103] at 0.339 deg gives
65 columns ending at -102.965).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Tuple

import numpy as np
import pandas as pd
from rasterio.transform import Affine, from_origin

from bloomgrid.config import BBox, coerce_bbox, format_bbox
from bloomgrid.errors import OutOfDomainError


DEFAULT_BOUNDS: BBox = (-125.0, 25.0, -103.0, 49.0)
DEFAULT_RESOLUTION = 0.339
DEFAULT_CRS = "EPSG:4326"


@dataclass(frozen=True)
class GridDefinition:
    xmin: float = DEFAULT_BOUNDS[0]
    ymin: float = DEFAULT_BOUNDS[1]
    xmax: float = DEFAULT_BOUNDS[2]
    ymax: float = DEFAULT_BOUNDS[3]
    resolution: float = DEFAULT_RESOLUTION
    crs: str = DEFAULT_CRS

    def __post_init__(self) -> None:
        if not self.resolution > 0:
            raise ValueError(f"Grid resolution must be positive, got {self.resolution}")
        if not (self.xmin < self.xmax and self.ymin < self.ymax):
            raise ValueError(
                f"Grid extent is empty: x [{self.xmin}, {self.xmax}], y [{self.ymin}, {self.ymax}]"
            )

    @classmethod
    def from_config(cls, grid_cfg: Dict[str, Any]) -> "GridDefinition":
        """Build from the `grid:` section of the pipeline YAML.

        Missing keys fall back to the study defaults.
        """
        bounds = grid_cfg.get("bounds")
        bbox = coerce_bbox(bounds) if bounds is not None else DEFAULT_BOUNDS
        if bbox is None:
            raise SystemExit(f"grid.bounds must be [xmin, ymin, xmax, ymax], got {bounds!r}")
        return cls(
            xmin=bbox[0],
            ymin=bbox[1],
            xmax=bbox[2],
            ymax=bbox[3],
            resolution=float(grid_cfg.get("resolution", DEFAULT_RESOLUTION)),
            crs=str(grid_cfg.get("crs", DEFAULT_CRS)),
        )

    # --- layout ---

    @property
    def ncols(self) -> int:
        return max(1, int(round((self.xmax - self.xmin) / self.resolution)))

    @property
    def nrows(self) -> int:
        return max(1, int(round((self.ymax - self.ymin) / self.resolution)))

    @property
    def shape(self) -> Tuple[int, int]:
        return (self.nrows, self.ncols)

    @property
    def ncells(self) -> int:
        return self.nrows * self.ncols

    @property
    def east(self) -> float:
        return self.xmin + self.ncols * self.resolution

    @property
    def south(self) -> float:
        return self.ymax - self.nrows * self.resolution

    @property
    def bounds(self) -> BBox:
        """Effective (xmin, ymin, xmax, ymax) covered by the cells."""
        return (self.xmin, self.south, self.east, self.ymax)

    @property
    def transform(self) -> Affine:
        return from_origin(self.xmin, self.ymax, self.resolution, self.resolution)

    # --- lookups ---

    def cell_ids(self, xs, ys) -> np.ndarray:
        """Vectorized (x, y) -> cell id. Out-of-domain and NaN give 0.

        East and south edges are inclusive and fall in the last column/row.
        """
        x, y = np.broadcast_arrays(np.asarray(xs, dtype=float), np.asarray(ys, dtype=float))
        # NaN compares False, so it lands outside
        inside = (x >= self.xmin) & (x <= self.east) & (y >= self.south) & (y <= self.ymax)

        col = np.zeros(x.shape, dtype=np.int64)
        row = np.zeros(x.shape, dtype=np.int64)
        col[inside] = np.floor((x[inside] - self.xmin) / self.resolution).astype(np.int64)
        row[inside] = np.floor((self.ymax - y[inside]) / self.resolution).astype(np.int64)
        np.clip(col, 0, self.ncols - 1, out=col)
        np.clip(row, 0, self.nrows - 1, out=row)

        return np.where(inside, row * self.ncols + col + 1, 0).astype(np.int64)

    def cell_id(self, x: float, y: float) -> int:
        """Scalar lookup. Raises OutOfDomainError outside the grid."""
        cid = int(self.cell_ids([x], [y])[0])
        if cid == 0:
            raise OutOfDomainError(
                f"({x}, {y}) is outside grid bounds {format_bbox(self.bounds, 3)}",
                details={"x": x, "y": y},
            )
        return cid

    def cell_center(self, cell: int) -> Tuple[float, float]:
        if not 1 <= int(cell) <= self.ncells:
            raise OutOfDomainError(f"Cell id {cell} not in 1..{self.ncells}")
        row, col = divmod(int(cell) - 1, self.ncols)
        return (
            self.xmin + (col + 0.5) * self.resolution,
            self.ymax - (row + 0.5) * self.resolution,
        )

    # --- tables / arrays ---

    def blank(self, dtype=float, fill=0) -> np.ndarray:
        return np.full(self.shape, fill, dtype=dtype)

    def cell_frame(self) -> pd.DataFrame:
        """All cells with their center coordinates."""
        rows, cols = np.divmod(np.arange(self.ncells), self.ncols)
        return pd.DataFrame({
            "cell": np.arange(1, self.ncells + 1, dtype=np.int64),
            "x": self.xmin + (cols + 0.5) * self.resolution,
            "y": self.ymax - (rows + 0.5) * self.resolution,
        })

    def array_to_frame(self, arr: np.ndarray, value_name: str) -> pd.DataFrame:
        """Flatten a grid-shaped array into (cell, value_name)."""
        if arr.shape != self.shape:
            raise ValueError(f"Array shape {arr.shape} does not match grid shape {self.shape}")
        return pd.DataFrame({
            "cell": np.arange(1, self.ncells + 1, dtype=np.int64),
            value_name: np.asarray(arr).ravel(order="C"),
        })

    def describe(self) -> str:
        return (
            f"{self.nrows} rows x {self.ncols} cols = {self.ncells} cells | "
            f"res={self.resolution} | bounds={format_bbox(self.bounds, 3)} | crs={self.crs}"
        )
