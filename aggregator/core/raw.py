"""Typed raw payload shapes, one per source.

Each connector validates the items of its response into exactly one of these
models, and the normalizer has one mapping case per model. Fields are lenient
(optional, loosely typed where the upstream API is inconsistent) so a single
odd listing reaches the normalizer, where it is dropped on its own instead of
failing the whole page.
"""
from __future__ import annotations

from typing import Any, ClassVar, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from aggregator.core.listing import SourceKind

Scalar = Union[int, float, str, None]


class _Raw(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    source: ClassVar[SourceKind]


class RemoteOKRaw(_Raw):
    source: ClassVar[SourceKind] = SourceKind.REMOTEOK

    id: Scalar = None
    slug: Optional[str] = None
    position: Optional[str] = None
    company: Optional[str] = None
    location: Optional[str] = None
    description: Optional[str] = None
    tags: list[Any] = []
    epoch: Scalar = None
    date: Scalar = None
    salary_min: Scalar = None
    salary_max: Scalar = None
    url: Optional[str] = None
    apply_url: Optional[str] = None


class ArbeitnowRaw(_Raw):
    source: ClassVar[SourceKind] = SourceKind.ARBEITNOW

    slug: Optional[str] = None
    title: Optional[str] = None
    company_name: Optional[str] = None
    location: Optional[str] = None
    description: Optional[str] = None
    remote: Optional[bool] = None
    url: Optional[str] = None
    tags: list[Any] = []
    job_types: list[Any] = []
    created_at: Scalar = None


class USAJobsLocation(_Raw):
    location_name: Optional[str] = Field(default=None, alias="LocationName")


class USAJobsSchedule(_Raw):
    name: Optional[str] = Field(default=None, alias="Name")


class USAJobsRemuneration(_Raw):
    minimum: Scalar = Field(default=None, alias="MinimumRange")
    maximum: Scalar = Field(default=None, alias="MaximumRange")
    interval: Optional[str] = Field(default=None, alias="RateIntervalCode")


class USAJobsDescriptor(_Raw):
    position_id: Scalar = Field(default=None, alias="PositionID")
    title: Optional[str] = Field(default=None, alias="PositionTitle")
    position_uri: Optional[str] = Field(default=None, alias="PositionURI")
    apply_uri: list[str] = Field(default_factory=list, alias="ApplyURI")
    location_display: Optional[str] = Field(default=None, alias="PositionLocationDisplay")
    locations: list[USAJobsLocation] = Field(default_factory=list, alias="PositionLocation")
    organization: Optional[str] = Field(default=None, alias="OrganizationName")
    department: Optional[str] = Field(default=None, alias="DepartmentName")
    schedule: list[USAJobsSchedule] = Field(default_factory=list, alias="PositionSchedule")
    remuneration: list[USAJobsRemuneration] = Field(default_factory=list, alias="PositionRemuneration")
    publication_start: Optional[str] = Field(default=None, alias="PublicationStartDate")
    qualification_summary: Optional[str] = Field(default=None, alias="QualificationSummary")
    user_area: dict[str, Any] = Field(default_factory=dict, alias="UserArea")


class USAJobsRaw(_Raw):
    source: ClassVar[SourceKind] = SourceKind.USAJOBS

    matched_object_id: Scalar = Field(default=None, alias="MatchedObjectId")
    descriptor: USAJobsDescriptor = Field(default_factory=USAJobsDescriptor, alias="MatchedObjectDescriptor")


class JoobleRaw(_Raw):
    source: ClassVar[SourceKind] = SourceKind.JOOBLE

    id: Scalar = None
    title: Optional[str] = None
    company: Optional[str] = None
    location: Optional[str] = None
    snippet: Optional[str] = None
    salary: Optional[str] = None
    type: Optional[str] = None
    link: Optional[str] = None
    updated: Optional[str] = None


class CareerJetRaw(_Raw):
    source: ClassVar[SourceKind] = SourceKind.CAREERJET

    title: Optional[str] = None
    company: Optional[str] = None
    locations: Optional[str] = None
    description: Optional[str] = None
    url: Optional[str] = None
    date: Optional[str] = None
    salary: Optional[str] = None
    salary_min: Scalar = None
    salary_max: Scalar = None
    salary_currency_code: Optional[str] = None
    contract_type: Optional[str] = None
    contract_period: Optional[str] = None


class UniversityRaw(_Raw):
    source: ClassVar[SourceKind] = SourceKind.UNIVERSITY

    university: str
    title: Optional[str] = None
    company: Optional[str] = None
    location: Optional[str] = None
    description: Optional[str] = None
    url: Optional[str] = None
    posted: Optional[str] = None


RawListing = Union[RemoteOKRaw, ArbeitnowRaw, USAJobsRaw, JoobleRaw, CareerJetRaw, UniversityRaw]

__all__ = [
    "RawListing",
    "RemoteOKRaw",
    "ArbeitnowRaw",
    "USAJobsRaw",
    "USAJobsDescriptor",
    "JoobleRaw",
    "CareerJetRaw",
    "UniversityRaw",
]
