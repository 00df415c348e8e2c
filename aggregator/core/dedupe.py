from __future__ import annotations

import hashlib
import json
from typing import Iterable

from aggregator.core.listing import JobListing


def _norm(value: str | None) -> str:
    return " ".join((value or "").lower().split())


def fingerprint_key(job: JobListing) -> str:
    """Readable identity key; `fingerprint` hashes it.

    Sources with a stable id are keyed by (source, id). Everything else falls
    back to title+company+location, which only merges exact (normalized) text
    matches and across sources.
    """
    if job.source_job_id:
        return f"id|{job.source.value}|{job.source_job_id.strip()}"
    return f"text|{_norm(job.title)}|{_norm(job.company)}|{_norm(job.location)}"


def fingerprint(job: JobListing) -> str:
    return hashlib.sha256(fingerprint_key(job).encode("utf-8")).hexdigest()


def content_hash(job: JobListing) -> str:
    """Hash of the mutable fields whose change counts as an update."""
    salary = job.salary.model_dump() if job.salary else None
    payload = {
        "title": job.title,
        "description": job.description,
        "salary": salary,
        "remote": job.remote,
        "employment_type": job.employment_type.value,
    }
    blob = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(blob.encode("utf-8")).hexdigest()


def deduplicate_jobs(jobs: Iterable[JobListing]) -> list[JobListing]:
    """Collapse a batch to one listing per fingerprint (last one wins)."""
    seen: dict[str, JobListing] = {}
    for j in jobs:
        seen[j.fingerprint or fingerprint(j)] = j
    return list(seen.values())
