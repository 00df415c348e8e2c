import unittest
from datetime import datetime

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from aggregator.core.listing import JobListing, SourceKind
from aggregator.core.visa import VisaClassifier
from aggregator.db.crud import JobStore
from aggregator.db.models import Base, Job
from aggregator.pipeline.reclassify import ReclassifyFilter, batch_reclassify

NOW = datetime(2025, 10, 1)


class BatchReclassifyTests(unittest.TestCase):
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
        # stored unclassified, as if written before the signal table changed
        self.store.upsert(JobListing(source=SourceKind.ARBEITNOW, source_job_id="1", title="Engineer",
                                     description="Visa sponsorship available"), now=NOW)
        self.store.upsert(JobListing(source=SourceKind.REMOTEOK, source_job_id="2", title="Engineer",
                                     description="Plain role"), now=NOW)

    def test_updates_changed_verdicts_only(self):
        result = batch_reclassify(self.store, VisaClassifier())
        self.assertEqual(result.analyzed, 2)
        self.assertEqual(result.updated, 1)
        changed = [r for r in result.results if r["changed"]]
        self.assertEqual(len(changed), 1)
        self.assertTrue(changed[0]["h1b"])
        self.assertEqual(self.store.count_by_source_or_flag(visa_h1b=True), 1)

        again = batch_reclassify(self.store, VisaClassifier())
        self.assertEqual(again.updated, 0)

    def test_source_filter_and_limit(self):
        result = batch_reclassify(self.store, VisaClassifier(), ReclassifyFilter(source="REMOTEOK"))
        self.assertEqual(result.analyzed, 1)
        result = batch_reclassify(self.store, VisaClassifier(), ReclassifyFilter(limit=1))
        self.assertEqual(result.analyzed, 1)

    def test_only_unanalyzed(self):
        with self.Session() as session:
            session.query(Job).update({"visa_analyzed_at": None})
            session.commit()
        first = batch_reclassify(self.store, VisaClassifier(), ReclassifyFilter(only_unanalyzed=True))
        self.assertEqual(first.analyzed, 2)
        second = batch_reclassify(self.store, VisaClassifier(), ReclassifyFilter(only_unanalyzed=True))
        self.assertEqual(second.analyzed, 1)

    def test_inactive_rows_skipped_by_default(self):
        with self.Session() as session:
            session.query(Job).update({"is_active": False})
            session.commit()
        self.assertEqual(batch_reclassify(self.store, VisaClassifier()).analyzed, 0)
        flt = ReclassifyFilter(active_only=False)
        self.assertEqual(batch_reclassify(self.store, VisaClassifier(), flt).analyzed, 2)


if __name__ == "__main__":
    unittest.main()
