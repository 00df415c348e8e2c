import unittest
from datetime import datetime, timedelta
from unittest import mock

from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from aggregator.core.listing import EmploymentType, JobListing, SalaryRange, SourceKind, VisaSponsorship
from aggregator.db.crud import JobStore
from aggregator.db.models import Base, Job
from aggregator.errors import StoreError

NOW = datetime(2025, 10, 1, 12, 0)


def _job(**kw):
    base = dict(
        source=SourceKind.ARBEITNOW,
        source_job_id="a-1",
        title="Backend Engineer",
        company="Acme",
        location="Berlin",
        description="Django and Postgres",
    )
    base.update(kw)
    return JobListing(**base)


class JobStoreTests(unittest.TestCase):
    def setUp(self):
        self.engine = create_engine(
            "sqlite:///:memory:",
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(self.engine)
        self.Session = sessionmaker(bind=self.engine, expire_on_commit=False)
        self.store = JobStore(self.Session)

    def _row(self):
        with self.Session() as session:
            return session.query(Job).one()

    def test_created_then_skipped_then_updated(self):
        self.assertEqual(self.store.upsert(_job(), now=NOW), "created")
        later = NOW + timedelta(hours=1)
        self.assertEqual(self.store.upsert(_job(), now=later), "skipped")
        self.assertEqual(self._row().last_refreshed, later)

        self.assertEqual(self.store.upsert(_job(description="Django, Postgres and Celery"), now=later), "updated")
        row = self._row()
        self.assertEqual(row.description, "Django, Postgres and Celery")
        self.assertEqual(row.created_at, NOW)
        self.assertEqual(self.store.count_by_source_or_flag(), 1)

    def test_visa_change_alone_is_not_an_update(self):
        self.store.upsert(_job(), now=NOW)
        flagged = _job(visa_sponsorship=VisaSponsorship(h1b=True), visa_confidence=0.5)
        self.assertEqual(self.store.upsert(flagged, now=NOW), "skipped")

    def test_first_posted_date_wins(self):
        self.store.upsert(_job(), now=NOW)
        self.store.upsert(_job(posted_date=datetime(2025, 9, 15)), now=NOW)
        self.store.upsert(_job(posted_date=datetime(2025, 9, 20), description="changed"), now=NOW)
        self.assertEqual(self._row().posted_date, datetime(2025, 9, 15))

    def test_featured_flag_survives_refresh(self):
        self.store.upsert(_job(), now=NOW)
        with self.Session() as session:
            session.query(Job).update({"is_featured": True})
            session.commit()
        self.store.upsert(_job(description="new text"), now=NOW)
        self.assertTrue(self._row().is_featured)

    def test_refresh_reactivates(self):
        self.store.upsert(_job(), now=NOW - timedelta(days=40))
        self.assertEqual(self.store.update_active_flag(older_than=NOW - timedelta(days=30)), 1)
        self.assertFalse(self._row().is_active)
        self.assertEqual(self.store.upsert(_job(), now=NOW), "skipped")
        self.assertTrue(self._row().is_active)

    def test_text_match_from_second_source_keeps_first_owner(self):
        careerjet = _job(source=SourceKind.CAREERJET, source_job_id=None, description="Posted via CareerJet")
        university = _job(source=SourceKind.UNIVERSITY, source_job_id=None, description="Posted on the career page")
        self.assertEqual(self.store.upsert(careerjet, now=NOW), "created")
        later = NOW + timedelta(days=1)
        for _ in range(2):
            self.assertEqual(self.store.upsert(university, now=later), "skipped")
            self.assertEqual(self.store.upsert(careerjet, now=later), "skipped")
        row = self._row()
        self.assertEqual(row.source, "CAREERJET")
        self.assertEqual(row.description, "Posted via CareerJet")
        self.assertEqual(row.last_refreshed, later)

    def test_delete_by_source(self):
        self.store.upsert(_job(), now=NOW)
        self.store.upsert(_job(source=SourceKind.REMOTEOK, source_job_id="r-1"), now=NOW)
        self.assertEqual(self.store.delete_by_source("remoteok", dry_run=True), 1)
        self.assertEqual(self.store.count_by_source_or_flag(), 2)
        self.assertEqual(self.store.delete_by_source(SourceKind.REMOTEOK), 1)
        self.assertEqual(self.store.stats()["by_source"], {"ARBEITNOW": 1})
        with self.assertRaises(ValueError):
            self.store.delete_by_source("monster")
        with self.assertRaises(ValueError):
            self.store.delete_by_source(None)

    def test_reactivate_all(self):
        self.store.upsert(_job(), now=NOW - timedelta(days=40))
        self.store.upsert(_job(source=SourceKind.REMOTEOK, source_job_id="r-1"), now=NOW - timedelta(days=40))
        self.assertEqual(self.store.update_active_flag(older_than=NOW - timedelta(days=30)), 2)
        self.assertEqual(self.store.reactivate_all(source="REMOTEOK"), 1)
        self.assertEqual(self.store.count_by_source_or_flag(is_active=True), 1)
        self.assertEqual(self.store.reactivate_all(), 1)
        self.assertEqual(self.store.reactivate_all(), 0)

    def test_find_by_fingerprint(self):
        job = _job(salary=SalaryRange(min=50000, max=70000, currency="EUR"),
                   employment_type=EmploymentType.CONTRACT)
        self.store.upsert(job, now=NOW)
        fp = self._row().fingerprint
        found = self.store.find_by_fingerprint(fp)
        self.assertEqual(found.title, "Backend Engineer")
        self.assertEqual(found.salary.currency, "EUR")
        self.assertEqual(found.employment_type, EmploymentType.CONTRACT)
        self.assertIsNone(self.store.find_by_fingerprint("0" * 64))

    def test_integrity_error_is_retried_once(self):
        err = IntegrityError("INSERT INTO jobs", {}, Exception("UNIQUE constraint failed"))
        with mock.patch.object(JobStore, "_upsert_in", side_effect=[err, "updated"]) as m:
            self.assertEqual(self.store.upsert(_job(), now=NOW), "updated")
        self.assertEqual(m.call_count, 2)

    def test_database_failure_raises_store_error(self):
        Base.metadata.drop_all(self.engine)
        with self.assertRaises(StoreError):
            self.store.upsert(_job(), now=NOW)
        with self.assertRaises(StoreError):
            self.store.stats()

    def test_search_filters_and_get(self):
        self.store.upsert(_job(), now=NOW)
        self.store.upsert(
            _job(source=SourceKind.REMOTEOK, source_job_id="r-1", title="Remote Data Engineer",
                 remote=True, visa_sponsorship=VisaSponsorship(h1b=True), visa_confidence=0.45),
            now=NOW,
        )
        items, total = self.store.search()
        self.assertEqual(total, 2)

        items, total = self.store.search(remote=True)
        self.assertEqual([i["title"] for i in items], ["Remote Data Engineer"])
        self.assertEqual(self.store.search(h1b=True)[1], 1)
        self.assertEqual(self.store.search(source="arbeitnow")[1], 1)
        self.assertEqual(self.store.search(q="data")[1], 1)
        with self.assertRaises(ValueError):
            self.store.search(source="monster")

        detail = self.store.get(items[0]["id"])
        self.assertEqual(detail["source"], "REMOTEOK")
        self.assertTrue(detail["visa_sponsorship"]["h1b"])
        self.assertIsNone(self.store.get(9999))

    def test_stats(self):
        self.store.upsert(_job(posted_date=datetime(2025, 9, 1)), now=NOW)
        self.store.upsert(_job(source_job_id="a-2", posted_date=datetime(2025, 9, 10)), now=NOW)
        stats = self.store.stats()
        self.assertEqual(stats["total"], 2)
        self.assertEqual(stats["active"], 2)
        self.assertEqual(stats["inactive"], 0)
        self.assertEqual(stats["oldest_posted"], "2025-09-01T00:00:00")
        self.assertEqual(stats["by_source"], {"ARBEITNOW": 2})

    def test_set_visa(self):
        self.store.upsert(_job(), now=NOW)
        job_id = self._row().id
        self.assertTrue(self.store.set_visa(job_id, h1b=True, opt=True, stem_opt=False, confidence=0.6, now=NOW))
        row = self._row()
        self.assertTrue(row.visa_h1b and row.visa_opt)
        self.assertEqual(row.visa_analyzed_at, NOW)
        self.assertFalse(self.store.set_visa(9999, h1b=True, opt=False, stem_opt=False, confidence=0.1))


if __name__ == "__main__":
    unittest.main()
