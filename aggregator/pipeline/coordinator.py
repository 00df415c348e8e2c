"""Single-flight owner of aggregation runs and cleanups.

State is IDLE or RUNNING (aggregation) plus a separate cleanup flag, all
guarded by one lock. A trigger that finds either busy is rejected right away;
nothing is queued. Fetches fan out on a thread pool, everything after the
barrier (normalize, classify, upsert) runs on the run's own thread.
"""
from __future__ import annotations

from collections import deque
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import datetime
import logging
import threading
import time
from typing import Optional, Sequence, Union
import uuid

from aggregator.core.date_parse import utcnow
from aggregator.core.dedupe import deduplicate_jobs, fingerprint
from aggregator.core.normalize import normalize_batch
from aggregator.core.schedule import DailyRule, next_fire_time, parse_recurrence
from aggregator.core.visa import VisaClassifier, get_classifier
from aggregator.db.crud import JobStore
from aggregator.errors import ConfigurationError, RunAlreadyInProgress, SourceFetchError, StoreError
from aggregator.pipeline.retention import RetentionPolicy, run_cleanup
from aggregator.pipeline.stats import CleanupStats, RunStats, SourceStats, SourceStatus, Trigger
from aggregator.providers import Connector, FetchContext, build_connectors

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunAccepted:
    run_id: str


@dataclass(frozen=True)
class AlreadyRunning:
    reason: str


TriggerResult = Union[RunAccepted, AlreadyRunning]


class RunCoordinator:
    def __init__(
        self,
        connectors: Sequence[Connector],
        store: JobStore,
        classifier: Optional[VisaClassifier] = None,
        *,
        disabled: Optional[dict] = None,
        policy: Optional[RetentionPolicy] = None,
        source_timeout: float = 60.0,
        run_timeout: float = 300.0,
        max_workers: int = 6,
        fetch_defaults: Optional[dict] = None,
        refresh_rule: Optional[DailyRule] = None,
        cleanup_rule: Optional[DailyRule] = None,
        history_size: int = 10,
    ):
        self.connectors = list(connectors)
        self.store = store
        self.classifier = classifier or get_classifier()
        self.disabled = {getattr(k, "value", k): v for k, v in (disabled or {}).items()}
        self.policy = policy or RetentionPolicy()
        self.source_timeout = source_timeout
        self.run_timeout = run_timeout
        self.max_workers = max(1, max_workers)
        self.fetch_defaults = dict(fetch_defaults or {})
        self.refresh_rule = refresh_rule
        self.cleanup_rule = cleanup_rule

        self._lock = threading.Lock()
        self._running_id: Optional[str] = None
        self._cleanup_running = False
        self._idle = threading.Event()
        self._idle.set()
        self._last_run: Optional[RunStats] = None
        self._history: deque[RunStats] = deque(maxlen=max(1, history_size))
        self._last_cleanup: Optional[CleanupStats] = None

        try:
            self.policy.validate()
        except ConfigurationError as exc:
            log.error("retention-policy-invalid error=%s; cleanup will be refused", exc)

    @classmethod
    def from_settings(cls, settings, store: Optional[JobStore] = None) -> "RunCoordinator":
        settings.validate()
        connectors, disabled = build_connectors(settings)
        return cls(
            connectors,
            store or JobStore(),
            get_classifier(settings.signal_table_path),
            disabled=disabled,
            policy=RetentionPolicy.from_settings(settings),
            source_timeout=settings.source_timeout,
            run_timeout=settings.run_timeout,
            max_workers=settings.max_workers,
            fetch_defaults={
                "request_timeout": settings.request_timeout,
                "max_pages": settings.max_pages,
                "page_size": settings.page_size,
                "keywords": settings.search_keywords,
                "location": settings.search_location,
            },
            refresh_rule=parse_recurrence(settings.refresh_schedule, settings.timezone),
            cleanup_rule=parse_recurrence(settings.cleanup_schedule, settings.timezone),
            history_size=settings.history_size,
        )

    # --- state ---------------------------------------------------------------

    def _busy_reason(self) -> Optional[str]:
        if self._running_id is not None:
            return f"aggregation run {self._running_id} is in progress"
        if self._cleanup_running:
            return "cleanup is in progress"
        return None

    def _begin_run(self) -> tuple[Optional[str], Optional[str]]:
        with self._lock:
            reason = self._busy_reason()
            if reason:
                return None, reason
            run_id = uuid.uuid4().hex[:12]
            self._running_id = run_id
            self._idle.clear()
            return run_id, None

    def is_running(self) -> bool:
        with self._lock:
            return self._running_id is not None

    def is_cleanup_running(self) -> bool:
        with self._lock:
            return self._cleanup_running

    def wait_until_idle(self, timeout: Optional[float] = None) -> bool:
        return self._idle.wait(timeout)

    def get_last_run_stats(self) -> Optional[RunStats]:
        with self._lock:
            return self._last_run

    def get_run_history(self) -> list[RunStats]:
        with self._lock:
            return list(self._history)

    def get_cleanup_stats(self) -> Optional[CleanupStats]:
        with self._lock:
            return self._last_cleanup

    def get_next_scheduled_run(self, now: Optional[datetime] = None) -> Optional[datetime]:
        if self.refresh_rule is None:
            return None
        return next_fire_time(now or utcnow(), self.refresh_rule)

    # --- aggregation ---------------------------------------------------------

    def trigger_run(self, trigger: Trigger = Trigger.MANUAL) -> TriggerResult:
        """Start a run on a worker thread, or reject it if anything is in flight."""
        run_id, reason = self._begin_run()
        if run_id is None:
            log.info("run-rejected trigger=%s reason=%s", trigger.value, reason)
            return AlreadyRunning(reason)
        worker = threading.Thread(
            target=self._execute, args=(run_id, trigger), name=f"run-{run_id}", daemon=True
        )
        worker.start()
        return RunAccepted(run_id)

    def run_now(self, trigger: Trigger = Trigger.MANUAL) -> RunStats:
        """Synchronous run; raises RunAlreadyInProgress when busy."""
        run_id, reason = self._begin_run()
        if run_id is None:
            raise RunAlreadyInProgress(reason)
        return self._execute(run_id, trigger)

    def _execute(self, run_id: str, trigger: Trigger) -> RunStats:
        stats = RunStats(run_id=run_id, trigger=trigger, started_at=utcnow())
        started = time.monotonic()
        log.info("run-started run_id=%s trigger=%s sources=%s",
                 run_id, trigger.value, [c.name.value for c in self.connectors])
        try:
            self._run(stats)
            return stats
        except Exception:
            log.exception("run-crashed run_id=%s", run_id)
            stats.completed_with_errors = True
            raise
        finally:
            stats.finished_at = utcnow()
            stats.duration_ms = int((time.monotonic() - started) * 1000)
            with self._lock:
                self._last_run = stats
                self._history.append(stats)
                self._running_id = None
                self._idle.set()
            log.info(
                "run-finished run_id=%s fetched=%s created=%s updated=%s skipped=%s errors=%s duration_ms=%s",
                run_id, stats.total_fetched, stats.total_created, stats.total_updated,
                stats.total_skipped, stats.total_errors, stats.duration_ms,
            )

    def _fetch_one(self, connector: Connector, ctx: FetchContext, started: dict) -> list:
        started[connector.name] = time.monotonic()
        return list(connector.fetch(ctx))

    def _fan_out(self, contexts: dict) -> tuple[dict, dict]:
        """Fetch every connector concurrently.

        Returns ({source: raws}, {source: (status, message)}) for the sources
        that failed or ran out of time.
        """
        results: dict = {}
        failures: dict = {}
        if not self.connectors:
            return results, failures

        started: dict = {}
        executor = ThreadPoolExecutor(max_workers=min(self.max_workers, len(self.connectors)),
                                      thread_name_prefix="fetch")
        try:
            futures: dict[Future, Connector] = {
                executor.submit(self._fetch_one, c, contexts[c.name], started): c for c in self.connectors
            }
            pending = set(futures)
            run_deadline = time.monotonic() + self.run_timeout
            while pending:
                now = time.monotonic()
                if now >= run_deadline:
                    break
                next_deadline = run_deadline
                for fut in pending:
                    began = started.get(futures[fut].name)
                    if began is None:
                        # not picked up by a worker yet
                        next_deadline = min(next_deadline, now + 0.1)
                    else:
                        next_deadline = min(next_deadline, began + self.source_timeout)
                done, pending = wait(pending, timeout=max(0.0, next_deadline - now),
                                     return_when=FIRST_COMPLETED)
                for fut in done:
                    source = futures[fut].name
                    try:
                        results[source] = fut.result()
                    except SourceFetchError as exc:
                        failures[source] = (SourceStatus.ERROR, exc.message)
                        log.warning("source-failed source=%s error=%s", source.value, exc.message)
                    except Exception as exc:
                        failures[source] = (SourceStatus.ERROR, f"{type(exc).__name__}: {exc}")
                        log.exception("source-crashed source=%s", source.value)

                now = time.monotonic()
                for fut in list(pending):
                    source = futures[fut].name
                    began = started.get(source)
                    if began is not None and now - began >= self.source_timeout:
                        pending.discard(fut)
                        contexts[source].cancelled.set()
                        fut.cancel()
                        failures[source] = (SourceStatus.TIMEOUT, f"timed out after {self.source_timeout}s")
                        log.warning("source-timeout source=%s timeout=%s", source.value, self.source_timeout)

            for fut in pending:
                source = futures[fut].name
                contexts[source].cancelled.set()
                fut.cancel()
                failures[source] = (SourceStatus.TIMEOUT, f"run timed out after {self.run_timeout}s")
                log.warning("source-timeout source=%s run_timeout=%s", source.value, self.run_timeout)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)
        return results, failures

    def _process(self, slot: SourceStats, source, raws: list) -> None:
        listings, dropped = normalize_batch(raws, source)
        slot.dropped += dropped
        prepared = []
        for listing in listings:
            classified = self.classifier.apply(listing)
            prepared.append(classified.model_copy(update={"fingerprint": fingerprint(classified)}))
        for listing in deduplicate_jobs(prepared):
            try:
                outcome = self.store.upsert(listing)
            except StoreError as exc:
                slot.errors += 1
                slot.error_message = slot.error_message or str(exc)
                log.error("upsert-failed source=%s error=%s", source.value, exc)
                continue
            if outcome == "created":
                slot.created += 1
            elif outcome == "updated":
                slot.updated += 1
            else:
                slot.skipped += 1

    def _run(self, stats: RunStats) -> None:
        for source, reason in self.disabled.items():
            stats.per_source[source] = SourceStats(
                source=source, status=SourceStatus.DISABLED, error_message=reason
            )

        contexts = {c.name: FetchContext(**self.fetch_defaults) for c in self.connectors}
        fetch_started = time.monotonic()
        results, failures = self._fan_out(contexts)
        fetch_ms = int((time.monotonic() - fetch_started) * 1000)

        for connector in self.connectors:
            source = connector.name
            ctx = contexts[source]
            slot = SourceStats(source=source.value, warnings=list(ctx.warnings), dropped=ctx.dropped)
            stats.per_source[source.value] = slot
            if source in failures:
                status, message = failures[source]
                slot.status = status
                slot.errors = 1
                slot.error_message = message
                slot.duration_ms = fetch_ms
                continue

            began = time.monotonic()
            raws = results.get(source, [])
            slot.fetched = len(raws) + ctx.dropped
            self._process(slot, source, raws)
            slot.duration_ms = fetch_ms + int((time.monotonic() - began) * 1000)
            log.info(
                "source-finished source=%s fetched=%s created=%s updated=%s skipped=%s dropped=%s errors=%s",
                source.value, slot.fetched, slot.created, slot.updated, slot.skipped, slot.dropped, slot.errors,
            )

        stats.merge()

    # --- cleanup -------------------------------------------------------------

    def trigger_cleanup(self, *, dry_run: bool = False, source=None, now: Optional[datetime] = None) -> CleanupStats:
        """Run retention synchronously.

        Raises RunAlreadyInProgress while a run or another cleanup is in
        flight, ConfigurationError for an invalid retention policy.
        """
        with self._lock:
            reason = self._busy_reason()
            if reason:
                raise RunAlreadyInProgress(reason)
            self._cleanup_running = True
        try:
            stats = run_cleanup(self.store, self.policy, now=now, dry_run=dry_run, source=source)
            with self._lock:
                self._last_cleanup = stats
            return stats
        finally:
            with self._lock:
                self._cleanup_running = False

    def _maintenance(self, action, *args, **kwargs):
        with self._lock:
            reason = self._busy_reason()
            if reason:
                raise RunAlreadyInProgress(reason)
            self._cleanup_running = True
        try:
            return action(*args, **kwargs)
        finally:
            with self._lock:
                self._cleanup_running = False

    def remove_source(self, source, *, dry_run: bool = False) -> int:
        """Delete every stored listing of one source; refused while busy."""
        return self._maintenance(self.store.delete_by_source, source, dry_run=dry_run)

    def reactivate_all(self, source=None) -> int:
        """Mark every inactive listing active again; refused while busy."""
        return self._maintenance(self.store.reactivate_all, source=source)


__all__ = ["RunCoordinator", "RunAccepted", "AlreadyRunning", "TriggerResult"]
