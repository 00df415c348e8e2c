import threading
import unittest
from datetime import datetime
from unittest import mock

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from aggregator.api.deps import get_coordinator, get_store, get_visa_classifier
from aggregator.api.main import app
from aggregator.core.listing import JobListing, SourceKind
from aggregator.core.raw import ArbeitnowRaw
from aggregator.core.visa import VisaClassifier
from aggregator.db.crud import JobStore
from aggregator.db.models import Base
from aggregator.pipeline.coordinator import RunCoordinator
from aggregator.pipeline.retention import RetentionPolicy

NOW = datetime(2025, 10, 1)


class FeedConnector:
    name = SourceKind.ARBEITNOW

    def __init__(self):
        self.release = threading.Event()
        self.release.set()
        self.entered = threading.Event()

    def fetch(self, ctx):
        self.entered.set()
        self.release.wait(5)
        return [ArbeitnowRaw(slug="feed-1", title="Platform Engineer", company_name="Feedly")]


class ApiTests(unittest.TestCase):
    def setUp(self):
        engine = create_engine(
            "sqlite:///:memory:",
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(engine)
        self.store = JobStore(sessionmaker(bind=engine, expire_on_commit=False))
        self.store.upsert(JobListing(source=SourceKind.ARBEITNOW, source_job_id="1", title="Backend Engineer",
                                     company="Acme", description="We offer H1B sponsorship",
                                     posted_date=datetime(2025, 9, 20)), now=NOW)
        self.store.upsert(JobListing(source=SourceKind.REMOTEOK, source_job_id="2", title="Frontend Engineer",
                                     company="Globex", remote=True), now=NOW)

        self.connector = FeedConnector()
        self.coordinator = RunCoordinator([self.connector], self.store, VisaClassifier())
        classifier = VisaClassifier()
        app.dependency_overrides[get_store] = lambda: self.store
        app.dependency_overrides[get_coordinator] = lambda: self.coordinator
        app.dependency_overrides[get_visa_classifier] = lambda: classifier

        patcher = mock.patch("aggregator.api.main.ADMIN_TOKEN", "secret")
        patcher.start()
        self.addCleanup(patcher.stop)
        self.addCleanup(app.dependency_overrides.clear)
        self.client = TestClient(app)

    def test_list_jobs(self):
        resp = self.client.get("/jobs")
        self.assertEqual(resp.status_code, 200)
        data = resp.json()
        self.assertEqual(data["total"], 2)
        self.assertEqual({j["title"] for j in data["items"]}, {"Backend Engineer", "Frontend Engineer"})

        data = self.client.get("/jobs", params={"remote": "true"}).json()
        self.assertEqual([j["title"] for j in data["items"]], ["Frontend Engineer"])
        data = self.client.get("/jobs", params={"source": "ARBEITNOW"}).json()
        self.assertEqual(data["total"], 1)

    def test_unknown_source_is_422(self):
        self.assertEqual(self.client.get("/jobs", params={"source": "MONSTER"}).status_code, 422)

    def test_job_detail_and_404(self):
        job_id = self.client.get("/jobs", params={"source": "REMOTEOK"}).json()["items"][0]["id"]
        detail = self.client.get(f"/jobs/{job_id}").json()
        self.assertEqual(detail["company"], "Globex")
        self.assertIn("description", detail)
        self.assertEqual(self.client.get("/jobs/9999").status_code, 404)

    def test_classify(self):
        resp = self.client.post("/visa/classify", json={"title": "Engineer", "description": "STEM OPT eligible"})
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertTrue(body["opt"])
        self.assertTrue(body["stem_opt"])
        self.assertGreater(body["confidence"], 0)

    def test_admin_endpoints_require_token(self):
        self.assertEqual(self.client.post("/system/refresh").status_code, 401)
        self.assertEqual(self.client.post("/system/cleanup", headers={"x-token": "nope"}).status_code, 401)
        self.assertEqual(self.client.post("/jobs/batch/analyze-visa").status_code, 401)

    def test_refresh_accepted_then_conflict(self):
        self.connector.release.clear()
        try:
            resp = self.client.post("/system/refresh", headers={"x-token": "secret"})
            self.assertEqual(resp.status_code, 202)
            self.assertTrue(resp.json()["accepted"])
            self.assertTrue(self.connector.entered.wait(2))

            resp = self.client.post("/system/refresh", headers={"x-token": "secret"})
            self.assertEqual(resp.status_code, 409)
            self.assertFalse(resp.json()["accepted"])
            self.assertTrue(self.client.get("/system/refresh-stats").json()["is_running"])
        finally:
            self.connector.release.set()
        self.assertTrue(self.coordinator.wait_until_idle(5))

        stats = self.client.get("/system/refresh-stats").json()
        self.assertFalse(stats["is_running"])
        self.assertEqual(stats["last_run"]["total_created"], 1)
        self.assertEqual(len(stats["history"]), 1)

    def test_cleanup(self):
        resp = self.client.post("/system/cleanup", params={"dry_run": "true"}, headers={"x-token": "secret"})
        self.assertEqual(resp.status_code, 200)
        self.assertTrue(resp.json()["dry_run"])
        stats = self.client.get("/system/cleanup-stats").json()
        self.assertEqual(stats["policy"], {"inactive_days": 30, "delete_days": 60})
        self.assertEqual(stats["store"]["total"], 2)
        self.assertIsNotNone(stats["last_cleanup"])

    def test_cleanup_rejects_invalid_policy(self):
        self.coordinator.policy = RetentionPolicy(inactive_days=60, delete_days=30)
        resp = self.client.post("/system/cleanup", headers={"x-token": "secret"})
        self.assertEqual(resp.status_code, 422)

    def test_remove_source_and_reactivate(self):
        headers = {"x-token": "secret"}
        self.assertEqual(self.client.delete("/system/sources/REMOTEOK/jobs").status_code, 401)
        resp = self.client.delete("/system/sources/remoteok/jobs", params={"dry_run": "true"}, headers=headers)
        self.assertEqual(resp.json(), {"source": "REMOTEOK", "removed": 1, "dry_run": True})
        resp = self.client.delete("/system/sources/REMOTEOK/jobs", headers=headers)
        self.assertEqual(resp.json()["removed"], 1)
        self.assertEqual(self.client.get("/jobs").json()["total"], 1)
        self.assertEqual(self.client.delete("/system/sources/MONSTER/jobs", headers=headers).status_code, 422)

        resp = self.client.post("/system/reactivate", headers=headers)
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"reactivated": 0})

    def test_batch_analyze(self):
        resp = self.client.post("/jobs/batch/analyze-visa", headers={"x-token": "secret"}, json={"limit": 10})
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["analyzed"], 2)

    def test_analyze_single_job(self):
        job_id = self.client.get("/jobs", params={"source": "ARBEITNOW"}).json()["items"][0]["id"]
        resp = self.client.post(f"/jobs/{job_id}/analyze-visa", headers={"x-token": "secret"})
        self.assertEqual(resp.status_code, 200)
        self.assertTrue(resp.json()["h1b"])
        self.assertEqual(self.client.post("/jobs/9999/analyze-visa", headers={"x-token": "secret"}).status_code, 404)

    def test_health(self):
        body = self.client.get("/system/health").json()
        self.assertEqual(body["status"], "ok")
        self.assertEqual(body["jobs"]["active"], 2)
        self.assertEqual(self.client.get("/healthz").json(), {"status": "ok"})


if __name__ == "__main__":
    unittest.main()
