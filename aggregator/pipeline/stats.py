from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class Trigger(str, Enum):
    SCHEDULED = "SCHEDULED"
    MANUAL = "MANUAL"


class SourceStatus(str, Enum):
    OK = "ok"
    ERROR = "error"
    TIMEOUT = "timeout"
    DISABLED = "disabled"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class SourceStats:
    source: str
    status: SourceStatus = SourceStatus.OK
    fetched: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    dropped: int = 0
    errors: int = 0
    error_message: Optional[str] = None
    warnings: list[str] = field(default_factory=list)
    duration_ms: int = 0

    def to_dict(self) -> dict:
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass
class RunStats:
    run_id: str
    trigger: Trigger
    started_at: datetime
    finished_at: Optional[datetime] = None
    per_source: dict[str, SourceStats] = field(default_factory=dict)
    total_fetched: int = 0
    total_created: int = 0
    total_updated: int = 0
    total_skipped: int = 0
    total_errors: int = 0
    completed_with_errors: bool = False
    duration_ms: int = 0

    def merge(self) -> None:
        """Recompute run totals from the per-source slots.

        Disabled sources are reported but do not count as errors.
        """
        slots = list(self.per_source.values())
        self.total_fetched = sum(s.fetched for s in slots)
        self.total_created = sum(s.created for s in slots)
        self.total_updated = sum(s.updated for s in slots)
        self.total_skipped = sum(s.skipped for s in slots)
        self.total_errors = sum(s.errors for s in slots if s.status is not SourceStatus.DISABLED)
        self.completed_with_errors = self.total_errors > 0

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "trigger": self.trigger.value,
            "started_at": _iso(self.started_at),
            "finished_at": _iso(self.finished_at),
            "per_source": {k: v.to_dict() for k, v in self.per_source.items()},
            "total_fetched": self.total_fetched,
            "total_created": self.total_created,
            "total_updated": self.total_updated,
            "total_skipped": self.total_skipped,
            "total_errors": self.total_errors,
            "completed_with_errors": self.completed_with_errors,
            "duration_ms": self.duration_ms,
        }


@dataclass
class CleanupStats:
    deactivated_count: int
    deleted_count: int
    cutoff_inactive_date: datetime
    cutoff_delete_date: datetime
    executed_at: datetime
    duration_ms: int = 0
    dry_run: bool = False
    source: Optional[str] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["cutoff_inactive_date"] = _iso(self.cutoff_inactive_date)
        data["cutoff_delete_date"] = _iso(self.cutoff_delete_date)
        data["executed_at"] = _iso(self.executed_at)
        return data


__all__ = ["Trigger", "SourceStatus", "SourceStats", "RunStats", "CleanupStats"]
