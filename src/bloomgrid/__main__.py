#!/usr/bin/env python3
"""bloomgrid

Command-line entrypoint for the cell/month integration pipeline.

Subcommands:
- run     -> run every stage and write the unified table
- grid    -> describe the shared grid (and look up a coordinate)
- verify  -> check that every configured input exists

Design notes:
- One config file (--config) drives everything; paths inside it are
  relative to the file.
- Heavy geo modules are imported lazily inside the handlers.
- --dry-run prints the plan without reading data or writing files.

Examples:
  python -m bloomgrid verify --config config/pipeline.yaml
  python -m bloomgrid grid --xy -110.2 33.9
  python -m bloomgrid run --out data/processed/cell_month.parquet --diagnostics data/processed/diagnostics.json
"""

from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import List, Optional

from bloomgrid.config import DEFAULT_PIPELINE_YAML, format_bbox


# -----------------------------------------------------------------------------
# CLI structure
# -----------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="bloomgrid",
        description="Merge vegetation, flowering, elevation and bird data into one cell/month table",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    # --- Global args ---
    ap.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_PIPELINE_YAML,
        help=f"Path to pipeline YAML (default: {DEFAULT_PIPELINE_YAML})",
    )
    ap.add_argument(
        "--dry-run",
        action="store_true",
        help="Print planned actions without reading data or writing files",
    )

    sub = ap.add_subparsers(dest="command", required=True)

    # --- run ---
    run = sub.add_parser(
        "run",
        help="Run the full pipeline",
        description="""
Run every stage in order:
1. vegetation index aggregation
2. phenology parsing
3. range rasterization + monthly flowering richness
4. elevation resampling
5. bird observation aggregation
6. merge + write
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    run.add_argument("--out", type=Path, default=None, help="Output table (.parquet or .csv); overrides config")
    run.add_argument("--diagnostics", type=Path, default=None, help="Write drop counters as JSON; overrides config")

    # --- grid ---
    grid = sub.add_parser("grid", help="Describe the shared grid")
    grid.add_argument("--xy", nargs=2, type=float, metavar=("X", "Y"), default=None, help="Look up the cell id of a coordinate")

    # --- verify ---
    ver = sub.add_parser("verify", help="Verify that every configured input exists")
    ver.add_argument("--json", action="store_true", help="Emit JSON to stdout")

    return ap


# -----------------------------------------------------------------------------
# Command handlers
# -----------------------------------------------------------------------------

def _load_config(args: argparse.Namespace):
    from bloomgrid.pipeline import PipelineConfig

    return PipelineConfig.from_yaml(args.config)


def _handle_run(args: argparse.Namespace) -> int:
    from bloomgrid.pipeline import run_pipeline, write_diagnostics, write_table

    config = _load_config(args)
    out_path = args.out or config.output_path
    diag_path = args.diagnostics or config.diagnostics_path

    if args.dry_run:
        print("[dry-run] Would run pipeline:")
        print(f"  Grid: {config.grid.describe()}")
        for source, paths in config.inputs().items():
            print(f"  {source}: {len(paths)} path(s)" + (f", first {paths[0]}" if paths else ""))
        print(f"  Output: {out_path}")
        if diag_path:
            print(f"  Diagnostics: {diag_path}")
        return 0

    result = run_pipeline(config)
    write_table(result.table, out_path)
    if diag_path:
        write_diagnostics(result.diagnostics, diag_path)

    print("Summary:")
    for line in result.diagnostics.summary_lines():
        print(f"  {line}")
    return 0


def _handle_grid(args: argparse.Namespace) -> int:
    from bloomgrid.errors import OutOfDomainError

    grid = _load_config(args).grid
    print(f"[GRID] {grid.describe()}")
    print(f"  configured extent: {format_bbox((grid.xmin, grid.ymin, grid.xmax, grid.ymax), 3)}")

    if args.xy is None:
        return 0
    x, y = args.xy
    try:
        cell = grid.cell_id(x, y)
    except OutOfDomainError as e:
        print(f"[GRID] {e}")
        return 2
    cx, cy = grid.cell_center(cell)
    print(f"[GRID] ({x}, {y}) -> cell {cell} (center {cx:.4f}, {cy:.4f})")
    return 0


def _handle_verify(args: argparse.Namespace) -> int:
    from bloomgrid.pipeline import verify_inputs

    results = verify_inputs(_load_config(args))
    ok = all(r.get("ok") for r in results)
    if args.json:
        print(json.dumps({"ok": ok, "results": results}, indent=2))
    else:
        for r in results:
            status = "OK" if r.get("ok") else "MISSING"
            print(f"[{status}] {r['source']}")
            if "reason" in r:
                print(f"  - reason: {r['reason']}")
            if "count" in r:
                print(f"  - count: {r['count']}")
            for s in r.get("sample", []):
                print(f"    - {s}")
        print(f"Overall: {'OK' if ok else 'NOT OK'}")
    return 0 if ok else 2


# -----------------------------------------------------------------------------
# Main entrypoint
# -----------------------------------------------------------------------------

def main(argv: Optional[List[str]] = None) -> int:
    ap = build_parser()
    args = ap.parse_args(argv)

    handlers = {
        "run": _handle_run,
        "grid": _handle_grid,
        "verify": _handle_verify,
    }

    handler = handlers.get(args.command)
    if handler is None:
        raise SystemExit(f"Unknown command: {args.command}")

    return handler(args)


if __name__ == "__main__":
    raise SystemExit(main())
