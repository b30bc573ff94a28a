#!/usr/bin/env python3

from __future__ import annotations

import sys
from pathlib import Path

import geopandas as gpd
import pandas as pd
import pytest
from shapely.geometry import box

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
sys.path.insert(0, str(SRC))

from bloomgrid.diagnostics import Diagnostics
from bloomgrid.errors import ExternalFetchFailure
from bloomgrid.geo import rasterize as rz
from bloomgrid.grid import GridDefinition
from bloomgrid.ingest import ranges
from bloomgrid.ingest.phenology import FloweringInterval


def small_grid() -> GridDefinition:
    return GridDefinition(xmin=0.0, ymin=0.0, xmax=4.0, ymax=3.0, resolution=1.0)


def boundary(*geoms, crs="EPSG:4326") -> gpd.GeoDataFrame:
    return gpd.GeoDataFrame(geometry=list(geoms), crs=crs)


def cells_of(mask, grid):
    frame = grid.array_to_frame(mask, "in_range")
    return sorted(frame.loc[frame["in_range"], "cell"].tolist())


def test_polygon_inside_one_cell_marks_that_cell():
    grid = small_grid()
    mask = rz.boundary_mask(boundary(box(0.2, 0.2, 0.8, 0.8)), grid)
    assert mask.dtype == bool
    assert cells_of(mask, grid) == [9]


def test_any_touch_coverage():
    grid = small_grid()
    # a small square straddling four cells covers none of their centers
    mask = rz.boundary_mask(boundary(box(0.6, 1.6, 1.4, 2.4)), grid)
    assert cells_of(mask, grid) == [1, 2, 5, 6]


def test_boundary_is_reprojected_to_grid_crs():
    grid = small_grid()
    projected = boundary(box(0.2, 0.2, 0.8, 0.8)).to_crs("EPSG:3857")
    assert cells_of(rz.boundary_mask(projected, grid), grid) == [9]


def test_boundary_without_crs_is_a_fetch_failure():
    with pytest.raises(ExternalFetchFailure):
        rz.boundary_mask(gpd.GeoDataFrame(geometry=[box(0, 0, 1, 1)]), small_grid())


def test_empty_geometries_give_empty_mask():
    grid = small_grid()
    assert not rz.rasterize_geometries([], grid).any()


def test_rasterize_ranges_requires_range_and_phenology():
    grid = small_grid()
    match_table = pd.DataFrame({
        "species": ["Salvia_greggii", "Agave parryi", "Ipomopsis aggregata", "Castilleja linariifolia"],
        "downloaded": [True, True, False, True],
    })
    intervals = {
        "Salvia greggii": FloweringInterval("Salvia greggii", 3, 5),
        "Agave parryi": FloweringInterval("Agave parryi", 6, 8),
        "Ipomopsis aggregata": FloweringInterval("Ipomopsis aggregata", 6, 9),
    }
    boundaries = {
        "Salvia_greggii": boundary(box(0.2, 2.2, 1.8, 2.8)),
        "Castilleja linariifolia": boundary(box(0, 0, 4, 3)),
    }

    def load(name):
        if name not in boundaries:
            raise ExternalFetchFailure(f"no boundary for {name}")
        return boundaries[name]

    diag = Diagnostics()
    masks = rz.rasterize_ranges(match_table, intervals, grid, load, diagnostics=diag)

    assert list(masks) == ["Salvia greggii"]
    assert cells_of(masks["Salvia greggii"], grid) == [1, 2]
    assert not masks["Salvia greggii"].flags.writeable

    assert diag.dropped("ranges", "without_range") == 1
    assert diag.dropped("ranges", "without_phenology") == 1
    assert diag.dropped("ranges", "unreadable_boundary") == 1
    assert diag.notes["ranges"]["total"] == 4
    assert diag.notes["ranges"]["retained"] == 1
    assert diag.notes["ranges"]["fraction_obtained"] == pytest.approx(0.75)
    assert diag.notes["ranges"]["unreadable_species"] == ["Agave parryi"]


def test_species_missing_from_match_table_has_no_range():
    grid = small_grid()
    match_table = pd.DataFrame({"species": pd.Series(dtype=str), "downloaded": pd.Series(dtype=bool)})
    intervals = {"A": FloweringInterval("A", 1, 2)}
    diag = Diagnostics()
    masks = rz.rasterize_ranges(match_table, intervals, grid, lambda name: boundary(box(0, 0, 1, 1)), diagnostics=diag)
    assert masks == {}
    assert diag.dropped("ranges", "without_range") == 1


def test_range_report_fraction():
    assert rz.RangeReport(total=4, downloaded=3).fraction_obtained == pytest.approx(0.75)
    assert rz.RangeReport().fraction_obtained == 0.0


# --- provider adapter ---

def test_normalize_species():
    assert ranges.normalize_species("Salvia_greggii") == ranges.normalize_species(" salvia  Greggii ")
    assert ranges.species_file_stem("Salvia greggii") == "Salvia_greggii"


def test_parse_downloaded():
    assert ranges.parse_downloaded("Yes")
    assert ranges.parse_downloaded(True)
    assert ranges.parse_downloaded(1)
    assert not ranges.parse_downloaded("No")
    assert not ranges.parse_downloaded(None)
    assert not ranges.parse_downloaded(float("nan"))


def test_load_match_table(tmp_path):
    path = tmp_path / "match_table.csv"
    pd.DataFrame({
        "Species": ["Salvia greggii", "Agave parryi", "Salvia greggii"],
        "Range_map_downloaded": ["Yes", "No", "No"],
    }).to_csv(path, index=False)
    table = ranges.load_match_table(path)
    assert table["species"].tolist() == ["Salvia greggii", "Agave parryi"]
    assert table["downloaded"].tolist() == [True, False]

    with pytest.raises(SystemExit):
        ranges.load_match_table(path, status_column="downloaded")


def test_directory_loader_reads_species_files(tmp_path):
    boundary(box(0.2, 0.2, 0.8, 0.8)).to_file(tmp_path / "Salvia_greggii.geojson", driver="GeoJSON")
    load = ranges.directory_loader(tmp_path)

    gdf = load("Salvia greggii")
    assert len(gdf) == 1
    assert cells_of(rz.boundary_mask(gdf, small_grid()), small_grid()) == [9]

    with pytest.raises(ExternalFetchFailure):
        load("Agave parryi")


def test_directory_loader_missing_directory(tmp_path):
    with pytest.raises(SystemExit):
        ranges.directory_loader(tmp_path / "nope")


def test_unreadable_boundary_file(tmp_path):
    path = tmp_path / "Broken_plant.geojson"
    path.write_text("not json at all", encoding="utf-8")
    with pytest.raises(ExternalFetchFailure):
        ranges.read_range_boundary(path)


def test_match_table_rows_without_species_are_skipped(tmp_path):
    path = tmp_path / "match_table.csv"
    pd.DataFrame({
        "Species": ["Salvia greggii", None, "  "],
        "Range_map_downloaded": ["Yes", "Yes", "No"],
    }).to_csv(path, index=False)
    table = ranges.load_match_table(path)
    assert table["species"].tolist() == ["Salvia greggii"]
    assert "nan" not in table["species"].tolist()

    diag = Diagnostics()
    rz.rasterize_ranges(table, {}, small_grid(), lambda name: boundary(box(0, 0, 1, 1)), diagnostics=diag)
    assert diag.notes["ranges"]["total"] == 1
