"""Retire stale listings.

Records are compared on their reference time, the first non-null of
last_refreshed, posted_date and created_at. Anything older than the delete
window is removed outright (active or not); then active records older than
the inactive window are deactivated. Both steps are idempotent.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
import time
from typing import Any, Optional

from aggregator.core.date_parse import utcnow
from aggregator.db.crud import JobStore
from aggregator.errors import ConfigurationError
from aggregator.pipeline.stats import CleanupStats

log = logging.getLogger(__name__)

DEFAULT_INACTIVE_DAYS = 30
DEFAULT_DELETE_DAYS = 60


@dataclass(frozen=True)
class RetentionPolicy:
    inactive_days: int = DEFAULT_INACTIVE_DAYS
    delete_days: int = DEFAULT_DELETE_DAYS

    @classmethod
    def from_settings(cls, settings) -> "RetentionPolicy":
        return cls(inactive_days=settings.inactive_days, delete_days=settings.delete_days)

    def validate(self) -> None:
        if self.inactive_days <= 0 or self.delete_days <= 0:
            raise ConfigurationError("retention windows must be positive")
        if self.delete_days < self.inactive_days:
            raise ConfigurationError(
                f"delete window ({self.delete_days}d) must not be shorter than "
                f"inactive window ({self.inactive_days}d)"
            )

    def cutoffs(self, now: datetime) -> tuple[datetime, datetime]:
        return now - timedelta(days=self.inactive_days), now - timedelta(days=self.delete_days)


def run_cleanup(
    store: JobStore,
    policy: RetentionPolicy,
    *,
    now: Optional[datetime] = None,
    dry_run: bool = False,
    source: Any = None,
) -> CleanupStats:
    """Apply `policy` to the store and report counts.

    Raises ConfigurationError for an inverted or non-positive policy before
    touching anything.
    """
    policy.validate()
    started = time.monotonic()
    now = now or utcnow()
    inactive_cutoff, delete_cutoff = policy.cutoffs(now)

    deleted = store.delete_older_than(delete_cutoff, source=source, dry_run=dry_run)
    deactivated = store.update_active_flag(
        older_than=inactive_cutoff,
        # in a dry run nothing was deleted, so skip what the delete would have taken
        not_before=delete_cutoff if dry_run else None,
        active=False,
        source=source,
        dry_run=dry_run,
    )

    stats = CleanupStats(
        deactivated_count=deactivated,
        deleted_count=deleted,
        cutoff_inactive_date=inactive_cutoff,
        cutoff_delete_date=delete_cutoff,
        executed_at=now,
        duration_ms=int((time.monotonic() - started) * 1000),
        dry_run=dry_run,
        source=getattr(source, "value", source),
    )
    log.info(
        "cleanup-finished deleted=%s deactivated=%s inactive_cutoff=%s delete_cutoff=%s dry_run=%s",
        deleted, deactivated, inactive_cutoff.isoformat(), delete_cutoff.isoformat(), dry_run,
    )
    return stats


__all__ = ["RetentionPolicy", "run_cleanup", "DEFAULT_INACTIVE_DAYS", "DEFAULT_DELETE_DAYS"]
