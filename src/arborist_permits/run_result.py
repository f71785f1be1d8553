from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass
class RunResult:
    run_id: str
    run_day: str
    target_day: Optional[str]
    started_at: str
    finished_at: str
    raw_count: int = 0
    incoming_count: int = 0
    inserted: List[str] = field(default_factory=list)
    new: List[str] = field(default_factory=list)
    updated: List[str] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)
    window_count: int = 0
    features_count: int = 0
    geocode_stats: Dict[str, int] = field(default_factory=dict)
    artifacts: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "run_day": self.run_day,
            "target_day": self.target_day,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "raw_count": self.raw_count,
            "incoming_count": self.incoming_count,
            "inserted": list(self.inserted),
            "new": list(self.new),
            "updated": list(self.updated),
            "missing": list(self.missing),
            "window_count": self.window_count,
            "features_count": self.features_count,
            "geocode_stats": dict(self.geocode_stats),
            "artifacts": list(self.artifacts),
            "errors": list(self.errors),
            "warnings": list(self.warnings),
        }
