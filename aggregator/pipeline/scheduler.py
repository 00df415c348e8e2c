from __future__ import annotations

from datetime import datetime
import logging
import threading
from typing import Callable, Optional

from aggregator.core.date_parse import utcnow
from aggregator.core.schedule import DailyRule, next_fire_time
from aggregator.errors import ConfigurationError, RunAlreadyInProgress, StoreError
from aggregator.pipeline.coordinator import AlreadyRunning, RunCoordinator
from aggregator.pipeline.stats import Trigger

log = logging.getLogger(__name__)


class Scheduler:
    """Daemon thread firing scheduled runs (and optionally cleanups) daily.

    Rejections are logged, never raised: a scheduled tick that finds a manual
    run in flight is simply skipped until the next day.
    """

    def __init__(
        self,
        coordinator: RunCoordinator,
        refresh_rule: Optional[DailyRule],
        cleanup_rule: Optional[DailyRule] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.coordinator = coordinator
        self.refresh_rule = refresh_rule
        self.cleanup_rule = cleanup_rule
        self.clock = clock
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_alive():
            return
        if self.refresh_rule is None and self.cleanup_rule is None:
            log.info("scheduler-idle no rules configured")
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="scheduler", daemon=True)
        self._thread.start()
        log.info(
            "scheduler-started refresh=%s cleanup=%s",
            self.refresh_rule.describe() if self.refresh_rule else None,
            self.cleanup_rule.describe() if self.cleanup_rule else None,
        )

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        log.info("scheduler-stopped")

    def next_events(self, now: datetime) -> list[tuple[datetime, str]]:
        events = []
        if self.refresh_rule is not None:
            events.append((next_fire_time(now, self.refresh_rule), "refresh"))
        if self.cleanup_rule is not None:
            events.append((next_fire_time(now, self.cleanup_rule), "cleanup"))
        return sorted(events)

    def fire(self, kind: str) -> None:
        if kind == "refresh":
            result = self.coordinator.trigger_run(Trigger.SCHEDULED)
            if isinstance(result, AlreadyRunning):
                log.warning("scheduled-run-skipped reason=%s", result.reason)
            else:
                log.info("scheduled-run-started run_id=%s", result.run_id)
            return
        try:
            self.coordinator.trigger_cleanup()
        except (RunAlreadyInProgress, ConfigurationError) as exc:
            log.warning("scheduled-cleanup-skipped reason=%s", exc)
        except StoreError as exc:
            log.error("scheduled-cleanup-failed error=%s", exc)

    def _loop(self) -> None:
        after = self.clock()
        while not self._stop.is_set():
            events = self.next_events(after)
            if not events:
                return
            fire_at = events[0][0]
            delay = max(0.0, (fire_at - self.clock()).total_seconds())
            if self._stop.wait(delay):
                return
            for when, kind in events:
                if when == fire_at:
                    self.fire(kind)
            # never fire the same instant twice, even if the wait returned early
            after = max(self.clock(), fire_at)


__all__ = ["Scheduler"]
