from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime
import logging
import os
from typing import List, Literal, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from aggregator.api.deps import get_coordinator, get_settings, get_store, get_visa_classifier
from aggregator.config import configure_logging
from aggregator.core.visa import ClassificationResult, VisaClassifier
from aggregator.db.crud import JobStore
from aggregator.db.models import Base
from aggregator.db.session import ENGINE
from aggregator.errors import ConfigurationError, RunAlreadyInProgress
from aggregator.pipeline.coordinator import AlreadyRunning, RunCoordinator
from aggregator.pipeline.reclassify import ReclassifyFilter, batch_reclassify
from aggregator.pipeline.scheduler import Scheduler
from aggregator.pipeline.stats import Trigger

ADMIN_TOKEN = os.getenv("AGG_ADMIN_TOKEN", "")
LOGGER = logging.getLogger(__name__)


def require_admin(x_token: str | None) -> None:
    if not ADMIN_TOKEN or x_token != ADMIN_TOKEN:
        raise HTTPException(status_code=401, detail="Unauthorized")


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    Base.metadata.create_all(bind=ENGINE)
    settings = get_settings()
    scheduler = None
    if settings.enable_scheduler:
        coordinator = get_coordinator()
        scheduler = Scheduler(coordinator, coordinator.refresh_rule, coordinator.cleanup_rule)
        scheduler.start()
    yield
    if scheduler is not None:
        scheduler.stop()


# -------------------------
# FastAPI setup
# -------------------------
app = FastAPI(title="Job Aggregator API", version="0.1.0", lifespan=lifespan)

# CORS (open for now; tighten before public deploy)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# -------------------------
# Pydantic request/response models
# -------------------------
class SalaryOut(BaseModel):
    min: Optional[float] = None
    max: Optional[float] = None
    currency: str = "USD"


class VisaOut(BaseModel):
    h1b: bool = False
    opt: bool = False
    stem_opt: bool = False


class JobOut(BaseModel):
    id: int
    source: str
    title: str
    company: str
    location: str
    employment_type: str
    remote: bool
    salary: Optional[SalaryOut] = None
    posted_date: Optional[datetime] = None
    application_url: str
    visa_sponsorship: VisaOut
    visa_confidence: float
    is_active: bool
    is_featured: bool


class JobsResponse(BaseModel):
    items: List[JobOut]
    total: int
    limit: int
    offset: int


class JobDetailOut(JobOut):
    description: str = ""
    skills: List[str] = []
    source_url: str = ""
    metadata: dict = {}
    last_refreshed: Optional[datetime] = None
    created_at: Optional[datetime] = None
    visa_analyzed_at: Optional[datetime] = None


class ClassifyIn(BaseModel):
    title: str = ""
    description: str = ""
    company: str = ""


class BatchAnalyzeIn(BaseModel):
    source: Optional[str] = None
    limit: int = 100
    active_only: bool = True
    only_unanalyzed: bool = False


EmploymentFilter = Literal["FULL_TIME", "PART_TIME", "CONTRACT", "INTERNSHIP", "TEMPORARY"]


# -------------------------
# Routes
# -------------------------
@app.get("/", tags=["meta"])
async def root():
    return {"message": "Job Aggregator API is running"}


@app.get("/healthz", tags=["meta"])
async def healthz():
    return {"status": "ok"}


@app.get("/jobs", response_model=JobsResponse, tags=["data"])
def get_jobs(
    limit: int = Query(25, ge=1, le=100),
    offset: int = Query(0, ge=0),
    q: Optional[str] = Query(None, description="Substring match on title/company"),
    source: Optional[str] = Query(None, description="Source, e.g. REMOTEOK"),
    remote: Optional[bool] = Query(None),
    employment_type: Optional[EmploymentFilter] = Query(None),
    h1b: Optional[bool] = Query(None),
    opt: Optional[bool] = Query(None),
    stem_opt: Optional[bool] = Query(None),
    active: Optional[bool] = Query(True, description="Only active listings by default"),
    store: JobStore = Depends(get_store),
):
    try:
        items, total = store.search(
            q=q, source=source, remote=remote, employment_type=employment_type,
            h1b=h1b, opt=opt, stem_opt=stem_opt, active=active, limit=limit, offset=offset,
        )
    except ValueError:
        raise HTTPException(status_code=422, detail=f"Unknown source {source!r}")
    return {"items": items, "total": total, "limit": limit, "offset": offset}


@app.get("/jobs/{job_id}", response_model=JobDetailOut, tags=["data"])
def get_job(job_id: int, store: JobStore = Depends(get_store)):
    job = store.get(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


# declared before /jobs/{job_id}/... so "batch" is not parsed as an id
@app.post("/jobs/batch/analyze-visa", tags=["admin"])
def batch_analyze_visa(
    payload: Optional[BatchAnalyzeIn] = None,
    x_token: str | None = Header(default=None),
    store: JobStore = Depends(get_store),
    classifier: VisaClassifier = Depends(get_visa_classifier),
):
    require_admin(x_token)
    payload = payload or BatchAnalyzeIn()
    flt = ReclassifyFilter(
        source=payload.source,
        limit=max(1, min(payload.limit, 1000)),
        active_only=payload.active_only,
        only_unanalyzed=payload.only_unanalyzed,
    )
    try:
        result = batch_reclassify(store, classifier, flt)
    except ValueError:
        raise HTTPException(status_code=422, detail=f"Unknown source {payload.source!r}")
    return result.to_dict()


@app.post("/jobs/{job_id}/analyze-visa", tags=["admin"])
def analyze_job_visa(
    job_id: int,
    x_token: str | None = Header(default=None),
    store: JobStore = Depends(get_store),
    classifier: VisaClassifier = Depends(get_visa_classifier),
):
    require_admin(x_token)
    job = store.get(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    result = classifier.detect(job["title"], job["description"], job["company"])
    store.set_visa(job_id, h1b=result.h1b, opt=result.opt, stem_opt=result.stem_opt,
                   confidence=result.confidence)
    return {"id": job_id, **result.model_dump()}


@app.post("/visa/classify", response_model=ClassificationResult, tags=["visa"])
def classify(payload: ClassifyIn, classifier: VisaClassifier = Depends(get_visa_classifier)):
    return classifier.detect(payload.title, payload.description, payload.company)


@app.post("/system/refresh", tags=["admin"])
def trigger_refresh(
    x_token: str | None = Header(default=None),
    coordinator: RunCoordinator = Depends(get_coordinator),
):
    require_admin(x_token)
    result = coordinator.trigger_run(Trigger.MANUAL)
    if isinstance(result, AlreadyRunning):
        return JSONResponse(status_code=409, content={"accepted": False, "reason": result.reason})
    return JSONResponse(status_code=202, content={"accepted": True, "run_id": result.run_id})


@app.get("/system/refresh-stats", tags=["system"])
def refresh_stats(coordinator: RunCoordinator = Depends(get_coordinator)):
    last = coordinator.get_last_run_stats()
    upcoming = coordinator.get_next_scheduled_run()
    return {
        "is_running": coordinator.is_running(),
        "last_run": last.to_dict() if last else None,
        "next_scheduled_run": upcoming.isoformat() if upcoming else None,
        "history": [s.to_dict() for s in coordinator.get_run_history()],
    }


@app.post("/system/cleanup", tags=["admin"])
def trigger_cleanup(
    dry_run: bool = Query(False),
    source: Optional[str] = Query(None),
    x_token: str | None = Header(default=None),
    coordinator: RunCoordinator = Depends(get_coordinator),
):
    require_admin(x_token)
    try:
        stats = coordinator.trigger_cleanup(dry_run=dry_run, source=source)
    except RunAlreadyInProgress as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except ConfigurationError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    except ValueError:
        raise HTTPException(status_code=422, detail=f"Unknown source {source!r}")
    return stats.to_dict()


@app.delete("/system/sources/{source}/jobs", tags=["admin"])
def remove_source_jobs(
    source: str,
    dry_run: bool = Query(False),
    x_token: str | None = Header(default=None),
    coordinator: RunCoordinator = Depends(get_coordinator),
):
    require_admin(x_token)
    try:
        removed = coordinator.remove_source(source, dry_run=dry_run)
    except RunAlreadyInProgress as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except ValueError:
        raise HTTPException(status_code=422, detail=f"Unknown source {source!r}")
    return {"source": source.upper(), "removed": removed, "dry_run": dry_run}


@app.post("/system/reactivate", tags=["admin"])
def reactivate_jobs(
    source: Optional[str] = Query(None),
    x_token: str | None = Header(default=None),
    coordinator: RunCoordinator = Depends(get_coordinator),
):
    require_admin(x_token)
    try:
        count = coordinator.reactivate_all(source)
    except RunAlreadyInProgress as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except ValueError:
        raise HTTPException(status_code=422, detail=f"Unknown source {source!r}")
    return {"reactivated": count}


@app.get("/system/cleanup-stats", tags=["system"])
def cleanup_stats(
    coordinator: RunCoordinator = Depends(get_coordinator),
    store: JobStore = Depends(get_store),
):
    last = coordinator.get_cleanup_stats()
    return {
        "is_running": coordinator.is_cleanup_running(),
        "policy": {
            "inactive_days": coordinator.policy.inactive_days,
            "delete_days": coordinator.policy.delete_days,
        },
        "last_cleanup": last.to_dict() if last else None,
        "store": store.stats(),
    }


@app.get("/system/health", tags=["system"])
def system_health(
    coordinator: RunCoordinator = Depends(get_coordinator),
    store: JobStore = Depends(get_store),
):
    last = coordinator.get_last_run_stats()
    upcoming = coordinator.get_next_scheduled_run()
    counts = store.stats()
    return {
        "status": "degraded" if last and last.completed_with_errors else "ok",
        "jobs": {"total": counts["total"], "active": counts["active"], "inactive": counts["inactive"]},
        "is_running": coordinator.is_running(),
        "last_run": last.to_dict() if last else None,
        "next_scheduled_run": upcoming.isoformat() if upcoming else None,
    }
