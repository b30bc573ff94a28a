#!/usr/bin/env python3
"""phenology.py

Parse species flowering-month ranges into recurring annual intervals.

Each species gets a closed interval [start_month, end_month] placed in a
synthetic reference year. When the season crosses the year boundary
(e.g. November -> February) the end date lands in the following year, and
month membership is tested with wrap-around, so November, December, January
and February all match.

A row whose begin or end month is missing or unreadable is dropped: that
species contributes no flowering signal at all (neither "always" nor
"never" flowering).
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Dict, Optional

import pandas as pd

from bloomgrid.config import require_files
from bloomgrid.diagnostics import Diagnostics
from bloomgrid.errors import ParseError


STAGE = "phenology"

# Arbitrary non-leap year; only month-of-year matters.
REFERENCE_YEAR = 2001

_MONTHS: Dict[str, int] = {}
for _i in range(1, 13):
    _MONTHS[calendar.month_name[_i].lower()] = _i
    _MONTHS[calendar.month_abbr[_i].lower()] = _i
_MONTHS["sept"] = 9


def parse_month(value) -> int:
    """Month name, abbreviation, or number -> 1..12."""
    if value is None or (isinstance(value, float) and pd.isna(value)):
        raise ParseError("Month is missing")
    text = str(value).strip().rstrip(".").lower()
    if not text:
        raise ParseError("Month is empty")
    if text in _MONTHS:
        return _MONTHS[text]
    try:
        number = int(float(text))
    except (ValueError, OverflowError):
        raise ParseError(f"Unrecognized month: {value!r}", details={"value": value}) from None
    if 1 <= number <= 12 and float(text) == number:
        return number
    raise ParseError(f"Month number out of range: {value!r}", details={"value": value})


@dataclass(frozen=True)
class FloweringInterval:
    species: str
    start_month: int
    end_month: int

    def __post_init__(self) -> None:
        for m in (self.start_month, self.end_month):
            if not 1 <= m <= 12:
                raise ValueError(f"{self.species}: month {m} not in 1..12")

    @property
    def wraps(self) -> bool:
        return self.start_month > self.end_month

    @property
    def start_date(self) -> date:
        return date(REFERENCE_YEAR, self.start_month, 1)

    @property
    def end_date(self) -> date:
        year = REFERENCE_YEAR + 1 if self.wraps else REFERENCE_YEAR
        return date(year, self.end_month, calendar.monthrange(year, self.end_month)[1])

    @property
    def months(self) -> frozenset:
        return frozenset(m for m in range(1, 13) if self.contains_month(m))

    def contains_month(self, month: int) -> bool:
        """Closed-closed seasonal membership, wrap-aware."""
        m = ((int(month) - 1) % 12) + 1
        if self.wraps:
            return m >= self.start_month or m <= self.end_month
        return self.start_month <= m <= self.end_month


def parse_phenology(
    table: pd.DataFrame,
    *,
    species_column: str = "species",
    begin_column: str = "begin",
    end_column: str = "end",
    diagnostics: Optional[Diagnostics] = None,
) -> Dict[str, FloweringInterval]:
    """Build species -> FloweringInterval from a phenology table."""
    missing_cols = [c for c in (species_column, begin_column, end_column) if c not in table.columns]
    if missing_cols:
        raise ValueError(f"Phenology table is missing columns {missing_cols}. Columns: {list(table.columns)}")
    diag = diagnostics if diagnostics is not None else Diagnostics()

    intervals: Dict[str, FloweringInterval] = {}
    unparseable = 0
    no_species = 0
    duplicates = 0

    for row in table[[species_column, begin_column, end_column]].itertuples(index=False):
        name, begin, end = row
        if name is None or pd.isna(name) or not str(name).strip():
            no_species += 1
            continue
        name = str(name).strip()
        try:
            start_month = parse_month(begin)
            end_month = parse_month(end)
        except ParseError:
            unparseable += 1
            continue
        if name in intervals:
            duplicates += 1
            continue
        intervals[name] = FloweringInterval(name, start_month, end_month)

    diag.drop(STAGE, "unparseable_months", unparseable)
    diag.drop(STAGE, "missing_species", no_species)
    diag.drop(STAGE, "duplicate_species", duplicates)
    diag.rows(STAGE, "parse", len(intervals))
    diag.note(STAGE, "wrap_around", sum(1 for i in intervals.values() if i.wraps))
    return intervals


def load_phenology(
    path: Path,
    *,
    species_column: str = "species",
    begin_column: str = "begin",
    end_column: str = "end",
    diagnostics: Optional[Diagnostics] = None,
) -> Dict[str, FloweringInterval]:
    require_files([path], "phenology")
    diag = diagnostics if diagnostics is not None else Diagnostics()
    table = pd.read_csv(path)
    intervals = parse_phenology(
        table,
        species_column=species_column,
        begin_column=begin_column,
        end_column=end_column,
        diagnostics=diag,
    )
    print(
        f"[PHENO] {len(intervals)} species with flowering intervals "
        f"({diag.dropped(STAGE, 'unparseable_months')} rows with unreadable months dropped)"
    )
    return intervals
