#!/usr/bin/env python3
"""bloomgrid.config

Shared configuration utilities for the bloomgrid pipeline and CLI.

Design notes:
- YAML loading is strict: files must exist and be valid mappings.
- Input paths in the pipeline YAML are resolved relative to the YAML file,
  so a config can travel with its data directory.
- All functions are pure (no side effects on import).
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import yaml


BBox = Tuple[float, float, float, float]


# -----------------------------------------------------------------------------
# YAML loading
# -----------------------------------------------------------------------------

def load_yaml(path: Path) -> Dict[str, Any]:
    """Load a YAML file and return as dict.

    Raises SystemExit on missing file or invalid format (non-mapping).
    Config errors should fail fast, before any stage has run.
    """
    if not path.exists():
        raise SystemExit(f"Config not found: {path}")
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if not isinstance(data, dict):
        raise SystemExit(f"Expected YAML mapping at {path}")
    return data


def section(cfg: Dict[str, Any], name: str) -> Dict[str, Any]:
    """Return a sub-mapping of the config, or {} if absent.

    A present-but-wrong-type section is a config error.
    """
    value = cfg.get(name)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise SystemExit(f"Config section '{name}' must be a mapping, got {type(value).__name__}")
    return value


# -----------------------------------------------------------------------------
# Bounding box utilities
# -----------------------------------------------------------------------------

def coerce_bbox(x: Any) -> Optional[BBox]:
    """Try to coerce [xmin, ymin, xmax, ymax] into a bbox tuple.

    Returns None if input is invalid or missing.
    """
    if x is None:
        return None
    if isinstance(x, (list, tuple)) and len(x) == 4:
        try:
            xmin, ymin, xmax, ymax = map(float, x)
        except (TypeError, ValueError):
            return None
        if xmin >= xmax or ymin >= ymax:
            return None
        return (xmin, ymin, xmax, ymax)
    return None


def format_bbox(b: BBox, precision: int = 5) -> str:
    """Format a bbox tuple as a readable string."""
    return f"[{b[0]:.{precision}f}, {b[1]:.{precision}f}, {b[2]:.{precision}f}, {b[3]:.{precision}f}]"


# -----------------------------------------------------------------------------
# Path helpers
# -----------------------------------------------------------------------------

def resolve_path(value: Any, base_dir: Path) -> Optional[Path]:
    """Resolve a configured path relative to the config file's directory."""
    if value is None or str(value).strip() == "":
        return None
    p = Path(str(value)).expanduser()
    if not p.is_absolute():
        p = base_dir / p
    return p


def resolve_paths(value: Any, base_dir: Path) -> List[Path]:
    """Resolve a list of paths or a single glob pattern into sorted paths.

    Accepts:
    - a list of paths (each resolved, no globbing)
    - a string containing glob characters (expanded relative to base_dir)
    - a plain string path
    """
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        out = [resolve_path(v, base_dir) for v in value]
        return [p for p in out if p is not None]

    text = str(value)
    if any(ch in text for ch in "*?["):
        pattern = Path(text).expanduser()
        if pattern.is_absolute():
            anchor = Path(pattern.anchor)
            return sorted(anchor.glob(str(pattern.relative_to(anchor))))
        return sorted(base_dir.glob(text))

    single = resolve_path(text, base_dir)
    return [single] if single is not None else []


def require_files(paths: Sequence[Path], label: str) -> None:
    """Abort the run if any input file is missing.

    Total absence of an input is the only fatal data condition.
    """
    if not paths:
        raise SystemExit(f"No {label} inputs configured (or glob matched nothing)")
    missing = [str(p) for p in paths if not p.exists()]
    if missing:
        raise SystemExit(f"Missing {label} input(s): {missing}")


# -----------------------------------------------------------------------------
# Default paths
# -----------------------------------------------------------------------------
# Centralized so the CLI and tests use the same defaults.

DEFAULT_PIPELINE_YAML = Path("config/pipeline.yaml")
DEFAULT_OUTPUT = Path("data/processed/cell_month.parquet")
