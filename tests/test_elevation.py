#!/usr/bin/env python3

from __future__ import annotations

import sys
from pathlib import Path

import numpy as np
import pytest
import rasterio
from rasterio.crs import CRS
from rasterio.transform import from_origin

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
sys.path.insert(0, str(SRC))

from bloomgrid.diagnostics import Diagnostics
from bloomgrid.geo import elevation as el
from bloomgrid.grid import GridDefinition


NODATA = -9999.0


def small_grid() -> GridDefinition:
    return GridDefinition(xmin=0.0, ymin=0.0, xmax=4.0, ymax=3.0, resolution=1.0)


def fine_source() -> np.ndarray:
    """6x8 pixels at 0.5 deg; each 2x2 block holds 10*row + col of its grid cell."""
    data = np.zeros((6, 8), dtype="float32")
    for r in range(3):
        for c in range(4):
            data[2 * r:2 * r + 2, 2 * c:2 * c + 2] = 10 * r + c
    return data


def as_dict(frame):
    return dict(zip(frame["cell"], frame["elevation"]))


def test_fill_nodata_counts_filled_pixels():
    data = np.array([[1.0, NODATA], [np.nan, 4.0]])
    out, n = el.fill_nodata(data, NODATA)
    assert n == 2
    assert out.tolist() == [[1.0, 0.0], [0.0, 4.0]]

    _, n_nan_only = el.fill_nodata(data, float("nan"))
    assert n_nan_only == 1


def test_aggregate_blocks_handles_partial_edges():
    data = np.arange(9, dtype="float32").reshape(3, 3)
    out = el.aggregate_blocks(data, 2)
    assert out.shape == (2, 2)
    assert out[0, 0] == pytest.approx((0 + 1 + 3 + 4) / 4)
    assert out[0, 1] == pytest.approx((2 + 5) / 2)
    assert out[1, 1] == pytest.approx(8)
    assert el.aggregate_blocks(data, 1) is data
    with pytest.raises(ValueError):
        el.aggregate_blocks(data, 0)


def test_block_mean_then_nearest_onto_grid():
    grid = small_grid()
    data = fine_source()
    data[2, 2] = NODATA  # inside the block of grid row 1, col 1 (value 11)
    diag = Diagnostics()

    out = el.resample_elevation(
        data,
        from_origin(0.0, 3.0, 0.5, 0.5),
        CRS.from_epsg(4326),
        grid,
        nodata=NODATA,
        aggregation_factor=2,
        diagnostics=diag,
    )
    values = as_dict(out)
    assert len(out) == grid.ncells
    assert values[1] == pytest.approx(0.0)  # true zero elevation survives
    assert values[4] == pytest.approx(3.0)
    assert values[6] == pytest.approx((11 * 3 + 0) / 4)
    assert values[12] == pytest.approx(23.0)
    assert diag.notes["elevation"]["nodata_filled_with_zero"] == 1
    assert diag.dropped("elevation", "cells_outside_raster") == 0


def test_cells_beyond_raster_are_dropped():
    grid = small_grid()
    data = np.full((3, 2), 50.0, dtype="float32")  # covers x 0..2 only
    diag = Diagnostics()
    out = el.resample_elevation(
        data,
        from_origin(0.0, 3.0, 1.0, 1.0),
        CRS.from_epsg(4326),
        grid,
        diagnostics=diag,
    )
    assert sorted(out["cell"]) == [1, 2, 5, 6, 9, 10]
    assert diag.dropped("elevation", "cells_outside_raster") == 6


def test_load_elevation_from_geotiff(tmp_path):
    grid = small_grid()
    data = (np.arange(1, 13, dtype="float32") * 100).reshape(3, 4)
    data[1, 0] = NODATA
    path = tmp_path / "elevation.tif"
    with rasterio.open(
        path,
        "w",
        driver="GTiff",
        height=3,
        width=4,
        count=1,
        dtype="float32",
        crs="EPSG:4326",
        transform=from_origin(0.0, 3.0, 1.0, 1.0),
        nodata=NODATA,
    ) as dst:
        dst.write(data, 1)

    diag = Diagnostics()
    out = el.load_elevation(path, grid, diagnostics=diag)
    values = as_dict(out)
    assert list(out.columns) == ["cell", "elevation"]
    assert values[1] == pytest.approx(100.0)
    assert values[5] == pytest.approx(0.0)
    assert values[12] == pytest.approx(1200.0)
    assert diag.notes["elevation"]["nodata_filled_with_zero"] == 1


def test_load_elevation_missing_file(tmp_path):
    with pytest.raises(SystemExit):
        el.load_elevation(tmp_path / "nope.tif", small_grid())


def test_partial_raster_fill_is_counted(tmp_path):
    grid = small_grid()
    path = tmp_path / "west_half.tif"
    with rasterio.open(
        path,
        "w",
        driver="GTiff",
        height=3,
        width=2,
        count=1,
        dtype="float32",
        crs="EPSG:4326",
        transform=from_origin(0.0, 3.0, 1.0, 1.0),
    ) as dst:
        dst.write(np.full((3, 2), 100.0, dtype="float32"), 1)

    diag = Diagnostics()
    out = el.load_elevation(path, grid, diagnostics=diag)
    values = as_dict(out)
    assert len(out) == grid.ncells
    assert values[1] == pytest.approx(100.0)
    assert values[4] == pytest.approx(0.0)
    assert diag.notes["elevation"]["nodata_filled_with_zero"] == 6


def test_aggregation_keeps_georeferencing_without_warnings():
    import warnings

    grid = small_grid()
    with warnings.catch_warnings():
        warnings.simplefilter("error", PendingDeprecationWarning)
        out = el.resample_elevation(
            fine_source(),
            from_origin(0.0, 3.0, 0.5, 0.5),
            CRS.from_epsg(4326),
            grid,
            aggregation_factor=2,
        )
    assert as_dict(out)[12] == pytest.approx(23.0)
