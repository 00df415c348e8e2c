from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class SourceKind(str, Enum):
    REMOTEOK = "REMOTEOK"
    ARBEITNOW = "ARBEITNOW"
    USAJOBS = "USAJOBS"
    JOOBLE = "JOOBLE"
    CAREERJET = "CAREERJET"
    UNIVERSITY = "UNIVERSITY"
    MANUAL = "MANUAL"


class EmploymentType(str, Enum):
    FULL_TIME = "FULL_TIME"
    PART_TIME = "PART_TIME"
    CONTRACT = "CONTRACT"
    INTERNSHIP = "INTERNSHIP"
    TEMPORARY = "TEMPORARY"


class SalaryRange(BaseModel):
    min: Optional[float] = None
    max: Optional[float] = None
    currency: str = "USD"


class VisaSponsorship(BaseModel):
    h1b: bool = False
    opt: bool = False
    stem_opt: bool = False


class JobListing(BaseModel):
    """Canonical job record shared by every source.

    Normalizers produce it without `fingerprint` and with default sponsorship;
    the classifier and deduplicator fill those in before persistence.
    """

    source: SourceKind
    source_job_id: Optional[str] = None
    fingerprint: Optional[str] = None

    title: str
    company: str = "Unknown Company"
    location: str = "Not Specified"
    description: str = ""
    employment_type: EmploymentType = EmploymentType.FULL_TIME
    remote: bool = False
    salary: Optional[SalaryRange] = None
    skills: list[str] = []
    posted_date: Optional[datetime] = None
    source_url: str = ""
    application_url: str = ""

    visa_sponsorship: VisaSponsorship = Field(default_factory=VisaSponsorship)
    visa_confidence: float = 0.0

    is_active: bool = True
    is_featured: bool = False
    metadata: dict[str, Any] = {}


__all__ = [
    "SourceKind",
    "EmploymentType",
    "SalaryRange",
    "VisaSponsorship",
    "JobListing",
]
