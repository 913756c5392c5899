"""Type-safe objects passed between the daemon and its reporting surfaces."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

from ingex.dispatcher import DispatchStats
from ingex.ingest.spooler import SpoolStats


@dataclass(slots=True)
class IngestionRunSummary:
    started_at: datetime
    ended_at: datetime
    mode: str
    dry_run: bool
    spool: SpoolStats = field(default_factory=SpoolStats)
    dispatch: DispatchStats = field(default_factory=DispatchStats)
    cancelled: bool = False

    @property
    def duration_seconds(self) -> float:
        return max(0.0, (self.ended_at - self.started_at).total_seconds())

    def to_dict(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat(),
            "duration_seconds": round(self.duration_seconds, 3),
            "mode": self.mode,
            "dry_run": self.dry_run,
            "cancelled": self.cancelled,
            "spool": asdict(self.spool),
            "dispatch": asdict(self.dispatch),
        }
