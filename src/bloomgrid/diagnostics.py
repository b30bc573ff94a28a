"""bloomgrid.diagnostics

Drop counters and row counts collected while the pipeline runs.

Every filter that removes rows records how many it removed, so a shrinking
dataset can be explained after the fact. The same object is handed to each
stage; nothing is global.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple


@dataclass
class Diagnostics:
    drops: Dict[str, Dict[str, int]] = field(default_factory=dict)
    row_counts: Dict[str, List[Tuple[str, int]]] = field(default_factory=dict)
    notes: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    def drop(self, stage: str, reason: str, count: int) -> None:
        """Add `count` dropped items under stage/reason (zero counts are kept)."""
        bucket = self.drops.setdefault(stage, {})
        bucket[reason] = bucket.get(reason, 0) + int(count)

    def rows(self, stage: str, step: str, count: int) -> None:
        self.row_counts.setdefault(stage, []).append((step, int(count)))

    def note(self, stage: str, key: str, value: Any) -> None:
        self.notes.setdefault(stage, {})[key] = value

    def dropped(self, stage: str, reason: str) -> int:
        return self.drops.get(stage, {}).get(reason, 0)

    def row_count(self, stage: str, step: str) -> int:
        for name, count in self.row_counts.get(stage, []):
            if name == step:
                return count
        raise KeyError(f"No row count recorded for {stage}/{step}")

    def as_dict(self) -> Dict[str, Any]:
        """JSON-friendly view."""
        return {
            "drops": {k: dict(v) for k, v in self.drops.items()},
            "row_counts": {k: [{"step": s, "rows": n} for s, n in v] for k, v in self.row_counts.items()},
            "notes": {k: dict(v) for k, v in self.notes.items()},
        }

    def summary_lines(self) -> List[str]:
        lines: List[str] = []
        for stage in sorted(set(self.drops) | set(self.row_counts) | set(self.notes)):
            lines.append(f"{stage}:")
            for step, n in self.row_counts.get(stage, []):
                lines.append(f"  - rows after {step}: {n}")
            for reason, n in sorted(self.drops.get(stage, {}).items()):
                lines.append(f"  - dropped ({reason}): {n}")
            for key, value in sorted(self.notes.get(stage, {}).items()):
                lines.append(f"  - {key}: {value}")
        return lines
