#!/usr/bin/env python3

from __future__ import annotations

import math
import sys
from pathlib import Path

import pandas as pd
import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
sys.path.insert(0, str(SRC))

from bloomgrid.diagnostics import Diagnostics
from bloomgrid.errors import ParseError
from bloomgrid.ingest import vegetation as veg


def test_parse_composite_key_orders_and_separators():
    assert veg.parse_composite_key("NDVI_03") == (3, "NDVI")
    assert veg.parse_composite_key("3.ndvi") == (3, "NDVI")
    assert veg.parse_composite_key("X03.NDVI") == (3, "NDVI")
    assert veg.parse_composite_key(" evi-12 ") == (12, "EVI")


def test_parse_composite_key_wraps_months():
    assert veg.parse_composite_key("NDVI_13") == (1, "NDVI")
    assert veg.parse_composite_key("NDVI_24") == (12, "NDVI")


def test_parse_composite_key_rejects_garbage():
    for bad in ["NDVI", "03", "NDVI_00", "notes", "", None, "NDVI_3_extra"]:
        with pytest.raises(ParseError):
            veg.parse_composite_key(bad)


def test_two_years_mean_and_sd():
    y1 = pd.DataFrame({"cell": [5], "NDVI_03": [0.40]})
    y2 = pd.DataFrame({"cell": [5], "NDVI_03": [0.60]})
    out = veg.aggregate_vegetation([y1, y2])
    assert len(out) == 1
    row = out.iloc[0]
    assert row["cell"] == 5 and row["month"] == 3
    assert row["veg_mean"] == pytest.approx(0.50)
    assert row["veg_sd"] == pytest.approx(math.sqrt(0.02))


def test_zero_is_kept_but_never_observed_is_excluded():
    y1 = pd.DataFrame({"cell": [1, 2], "NDVI_01": [0.0, None]})
    y2 = pd.DataFrame({"cell": [1, 2], "NDVI_01": [0.0, None]})
    diag = Diagnostics()
    out = veg.aggregate_vegetation([y1, y2], diagnostics=diag)
    assert out["cell"].tolist() == [1]
    assert out["veg_mean"].tolist() == [0.0]
    assert diag.dropped("vegetation", "all_missing_groups") == 1
    assert diag.dropped("vegetation", "missing_values") == 2


def test_single_reading_is_insufficient():
    y1 = pd.DataFrame({"cell": [1, 2], "NDVI_02": [0.3, 0.5]})
    y2 = pd.DataFrame({"cell": [1, 2], "NDVI_02": [0.5, None]})
    diag = Diagnostics()
    out = veg.aggregate_vegetation([y1, y2], diagnostics=diag)
    assert out["cell"].tolist() == [1]
    assert diag.dropped("vegetation", "insufficient_groups") == 1

    relaxed = veg.aggregate_vegetation([y1, y2], min_observations=1)
    assert relaxed["cell"].tolist() == [1, 2]
    assert math.isnan(relaxed.loc[relaxed["cell"] == 2, "veg_sd"].item())


def test_other_index_and_malformed_keys_are_counted():
    y1 = pd.DataFrame({"cell": [1], "NDVI_04": [0.2], "EVI_04": [0.9], "notes": ["x"]})
    y2 = pd.DataFrame({"cell": [1], "NDVI_04": [0.4], "EVI_04": [0.8], "notes": ["y"]})
    diag = Diagnostics()
    out = veg.aggregate_vegetation([y1, y2], diagnostics=diag)
    assert out["veg_mean"].tolist() == [pytest.approx(0.3)]
    assert diag.dropped("vegetation", "other_index_values") == 2
    assert diag.dropped("vegetation", "malformed_keys") == 1
    assert diag.dropped("vegetation", "malformed_key_values") == 2

    evi = veg.aggregate_vegetation([y1, y2], index_tag="evi")
    assert evi["veg_mean"].tolist() == [pytest.approx(0.85)]


def test_long_layout_and_cell_column_name():
    y1 = pd.DataFrame({"cellid": [7, 7], "key": ["NDVI_01", "NDVI_02"], "value": [0.1, 0.2]})
    y2 = pd.DataFrame({"cellid": [7, 7], "key": ["NDVI_01", "NDVI_02"], "value": [0.3, 0.4]})
    out = veg.aggregate_vegetation([y1, y2], cell_column="cellid")
    assert out[["cell", "month"]].values.tolist() == [[7, 1], [7, 2]]
    assert out["veg_mean"].tolist() == [pytest.approx(0.2), pytest.approx(0.3)]


def test_missing_cell_column_is_an_error():
    with pytest.raises(ValueError):
        veg.aggregate_vegetation([pd.DataFrame({"id": [1], "NDVI_01": [0.1]})])


def test_load_vegetation_reads_files(tmp_path):
    pd.DataFrame({"cell": [5], "NDVI_03": [0.40]}).to_csv(tmp_path / "ndvi_2019.csv", index=False)
    pd.DataFrame({"cell": [5], "NDVI_03": [0.60]}).to_csv(tmp_path / "ndvi_2020.csv", index=False)
    diag = Diagnostics()
    out = veg.load_vegetation(sorted(tmp_path.glob("ndvi_*.csv")), diagnostics=diag)
    assert out["veg_mean"].tolist() == [pytest.approx(0.5)]
    assert diag.notes["vegetation"]["years"] == [2019, 2020]


def test_load_vegetation_missing_file_aborts(tmp_path):
    with pytest.raises(SystemExit):
        veg.load_vegetation([tmp_path / "nope.csv"])
    with pytest.raises(SystemExit):
        veg.load_vegetation([])
