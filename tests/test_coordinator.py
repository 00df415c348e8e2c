import threading
import time
import unittest

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from aggregator.core.listing import SourceKind
from aggregator.core.raw import ArbeitnowRaw, RemoteOKRaw
from aggregator.core.visa import VisaClassifier
from aggregator.db.crud import JobStore
from aggregator.db.models import Base
from aggregator.errors import ConfigurationError, RunAlreadyInProgress, SourceFetchError, StoreError
from aggregator.pipeline.coordinator import AlreadyRunning, RunAccepted, RunCoordinator
from aggregator.pipeline.retention import RetentionPolicy
from aggregator.pipeline.stats import SourceStatus, Trigger


class StaticConnector:
    def __init__(self, name, items, dropped=0):
        self.name = name
        self.items = items
        self.dropped = dropped
        self.calls = 0

    def fetch(self, ctx):
        self.calls += 1
        ctx.dropped += self.dropped
        return list(self.items)


class FailingConnector:
    name = SourceKind.REMOTEOK

    def fetch(self, ctx):
        raise SourceFetchError(self.name.value, "HTTP 503 from https://remoteok.com/api")


class GatedConnector:
    """Blocks inside fetch until released; counts concurrent fetches."""

    name = SourceKind.ARBEITNOW

    def __init__(self):
        self.entered = threading.Event()
        self.release = threading.Event()
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def fetch(self, ctx):
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        self.entered.set()
        self.release.wait(5)
        with self._lock:
            self.active -= 1
        return []


class SlowConnector:
    name = SourceKind.JOOBLE

    def __init__(self):
        self.saw_cancel = threading.Event()

    def fetch(self, ctx):
        if ctx.cancelled.wait(5):
            self.saw_cancel.set()
        return []


class BrokenStore:
    def upsert(self, job, now=None):
        raise RuntimeError("disk on fire")


class FlakyStore(JobStore):
    """Refuses one source id with a StoreError, stores everything else."""

    def upsert(self, job, *, now=None):
        if job.source_job_id == "bad":
            raise StoreError("upsert fingerprint=bad failed: database is locked")
        return super().upsert(job, now=now)


def _arbeitnow(*slugs):
    return [ArbeitnowRaw(slug=s, title=f"Engineer {s}", company_name="Acme") for s in slugs]


class RunCoordinatorTests(unittest.TestCase):
    def setUp(self):
        engine = create_engine(
            "sqlite:///:memory:",
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(engine)
        self.Session = sessionmaker(bind=engine, expire_on_commit=False)
        self.store = JobStore(self.Session)
        self.classifier = VisaClassifier()

    def _coordinator(self, connectors, **kw):
        return RunCoordinator(connectors, self.store, self.classifier, **kw)

    def test_run_persists_and_counts(self):
        items = _arbeitnow("a", "b") + [ArbeitnowRaw(slug="c")]
        coordinator = self._coordinator([StaticConnector(SourceKind.ARBEITNOW, items, dropped=1)])
        stats = coordinator.run_now()
        slot = stats.per_source["ARBEITNOW"]
        self.assertEqual(slot.status, SourceStatus.OK)
        self.assertEqual(slot.fetched, 4)
        self.assertEqual(slot.dropped, 2)
        self.assertEqual(slot.created, 2)
        self.assertEqual(stats.total_created, 2)
        self.assertFalse(stats.completed_with_errors)
        self.assertEqual(self.store.count_by_source_or_flag(source=SourceKind.ARBEITNOW), 2)
        self.assertIsNotNone(stats.finished_at)

    def test_second_run_skips_unchanged(self):
        coordinator = self._coordinator([StaticConnector(SourceKind.ARBEITNOW, _arbeitnow("a", "b"))])
        coordinator.run_now()
        stats = coordinator.run_now()
        self.assertEqual((stats.total_created, stats.total_updated, stats.total_skipped), (0, 0, 2))

    def test_duplicates_within_batch_collapse(self):
        coordinator = self._coordinator([StaticConnector(SourceKind.ARBEITNOW, _arbeitnow("a", "a"))])
        stats = coordinator.run_now()
        self.assertEqual(stats.total_created, 1)

    def test_classifies_before_persisting(self):
        raw = ArbeitnowRaw(slug="v", title="Engineer", description="H1B sponsorship available")
        coordinator = self._coordinator([StaticConnector(SourceKind.ARBEITNOW, [raw])])
        coordinator.run_now()
        self.assertEqual(self.store.count_by_source_or_flag(visa_h1b=True), 1)

    def test_partial_failure(self):
        coordinator = self._coordinator([
            StaticConnector(SourceKind.ARBEITNOW, _arbeitnow("a")),
            FailingConnector(),
        ])
        stats = coordinator.run_now()
        self.assertEqual(stats.per_source["ARBEITNOW"].created, 1)
        failed = stats.per_source["REMOTEOK"]
        self.assertEqual(failed.status, SourceStatus.ERROR)
        self.assertIn("HTTP 503", failed.error_message)
        self.assertEqual(stats.total_errors, 1)
        self.assertTrue(stats.completed_with_errors)

    def test_disabled_sources_are_reported_not_errors(self):
        coordinator = self._coordinator(
            [StaticConnector(SourceKind.ARBEITNOW, _arbeitnow("a"))],
            disabled={SourceKind.USAJOBS: "USAJOBS_API_KEY and USAJOBS_USER_AGENT are required"},
        )
        stats = coordinator.run_now()
        self.assertEqual(stats.per_source["USAJOBS"].status, SourceStatus.DISABLED)
        self.assertEqual(stats.total_errors, 0)
        self.assertFalse(stats.completed_with_errors)

    def test_source_timeout_cancels_fetch(self):
        slow = SlowConnector()
        coordinator = self._coordinator(
            [slow, StaticConnector(SourceKind.ARBEITNOW, _arbeitnow("a"))],
            source_timeout=0.3,
        )
        started = time.monotonic()
        stats = coordinator.run_now()
        self.assertLess(time.monotonic() - started, 4)
        self.assertEqual(stats.per_source["JOOBLE"].status, SourceStatus.TIMEOUT)
        self.assertEqual(stats.per_source["ARBEITNOW"].status, SourceStatus.OK)
        self.assertTrue(slow.saw_cancel.wait(2))

    def test_run_timeout_cancels_remaining_sources(self):
        slow = SlowConnector()
        coordinator = self._coordinator(
            [slow, StaticConnector(SourceKind.ARBEITNOW, _arbeitnow("a"))],
            run_timeout=0.3,
        )
        started = time.monotonic()
        stats = coordinator.run_now()
        self.assertLess(time.monotonic() - started, 4)
        timed_out = stats.per_source["JOOBLE"]
        self.assertEqual(timed_out.status, SourceStatus.TIMEOUT)
        self.assertIn("run timed out", timed_out.error_message)
        self.assertEqual(stats.per_source["ARBEITNOW"].status, SourceStatus.OK)
        self.assertEqual(stats.per_source["ARBEITNOW"].created, 1)
        self.assertTrue(slow.saw_cancel.wait(2))

    def test_store_error_skips_listing_and_continues(self):
        store = FlakyStore(self.Session)
        coordinator = RunCoordinator(
            [StaticConnector(SourceKind.ARBEITNOW, _arbeitnow("a", "bad", "c"))], store, self.classifier
        )
        stats = coordinator.run_now()
        slot = stats.per_source["ARBEITNOW"]
        self.assertEqual(slot.status, SourceStatus.OK)
        self.assertEqual(slot.created, 2)
        self.assertEqual(slot.errors, 1)
        self.assertIn("database is locked", slot.error_message)
        self.assertEqual(stats.total_errors, 1)
        self.assertTrue(stats.completed_with_errors)
        self.assertEqual(store.count_by_source_or_flag(source=SourceKind.ARBEITNOW), 2)

    def test_remove_source_and_reactivate(self):
        coordinator = self._coordinator([StaticConnector(SourceKind.ARBEITNOW, _arbeitnow("a", "b"))])
        coordinator.run_now()
        self.assertEqual(coordinator.reactivate_all(), 0)
        self.assertEqual(coordinator.remove_source("arbeitnow"), 2)
        self.assertEqual(self.store.count_by_source_or_flag(), 0)
        self.assertFalse(coordinator.is_cleanup_running())

    def test_single_flight(self):
        gated = GatedConnector()
        coordinator = self._coordinator([gated])
        first = coordinator.trigger_run(Trigger.MANUAL)
        self.assertIsInstance(first, RunAccepted)
        self.assertTrue(gated.entered.wait(2))
        try:
            self.assertTrue(coordinator.is_running())
            second = coordinator.trigger_run(Trigger.SCHEDULED)
            self.assertIsInstance(second, AlreadyRunning)
            with self.assertRaises(RunAlreadyInProgress):
                coordinator.run_now()
            with self.assertRaises(RunAlreadyInProgress):
                coordinator.trigger_cleanup()
            with self.assertRaises(RunAlreadyInProgress):
                coordinator.remove_source("ARBEITNOW")
        finally:
            gated.release.set()
        self.assertTrue(coordinator.wait_until_idle(5))
        self.assertEqual(gated.max_active, 1)
        self.assertFalse(coordinator.is_running())
        self.assertEqual(coordinator.get_last_run_stats().run_id, first.run_id)
        self.assertIsInstance(coordinator.trigger_run(), RunAccepted)
        self.assertTrue(coordinator.wait_until_idle(5))

    def test_crash_returns_to_idle(self):
        coordinator = RunCoordinator(
            [StaticConnector(SourceKind.ARBEITNOW, _arbeitnow("a"))], BrokenStore(), self.classifier
        )
        with self.assertRaises(RuntimeError):
            coordinator.run_now()
        self.assertFalse(coordinator.is_running())
        self.assertTrue(coordinator.get_last_run_stats().completed_with_errors)

    def test_history_is_bounded(self):
        coordinator = self._coordinator([StaticConnector(SourceKind.REMOTEOK, [])], history_size=2)
        ids = [coordinator.run_now().run_id for _ in range(3)]
        self.assertEqual([s.run_id for s in coordinator.get_run_history()], ids[1:])

    def test_trigger_is_recorded(self):
        coordinator = self._coordinator([StaticConnector(SourceKind.REMOTEOK, [RemoteOKRaw(id=1, position="Dev")])])
        stats = coordinator.run_now(Trigger.SCHEDULED)
        self.assertEqual(stats.to_dict()["trigger"], "SCHEDULED")

    def test_cleanup_records_stats(self):
        coordinator = self._coordinator([])
        self.assertIsNone(coordinator.get_cleanup_stats())
        stats = coordinator.trigger_cleanup(dry_run=True)
        self.assertIs(coordinator.get_cleanup_stats(), stats)
        self.assertFalse(coordinator.is_cleanup_running())

    def test_invalid_policy_refuses_cleanup(self):
        coordinator = self._coordinator([], policy=RetentionPolicy(inactive_days=60, delete_days=30))
        with self.assertRaises(ConfigurationError):
            coordinator.trigger_cleanup()
        self.assertFalse(coordinator.is_cleanup_running())

    def test_next_scheduled_run(self):
        from datetime import datetime

        from aggregator.core.schedule import DailyRule

        coordinator = self._coordinator([], refresh_rule=DailyRule(2, 0))
        self.assertEqual(coordinator.get_next_scheduled_run(datetime(2025, 1, 1, 5, 0)), datetime(2025, 1, 2, 2, 0))
        self.assertIsNone(self._coordinator([]).get_next_scheduled_run())


if __name__ == "__main__":
    unittest.main()
