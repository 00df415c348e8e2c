from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    Float,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from aggregator.core.date_parse import utcnow
from aggregator.core.listing import (
    EmploymentType,
    JobListing,
    SalaryRange,
    SourceKind,
    VisaSponsorship,
)

# --- SQLAlchemy base ---------------------------------------------------------

class Base(DeclarativeBase):
    """Declarative base for all models."""
    pass


SOURCES = tuple(k.value for k in SourceKind)
EMPLOYMENT_TYPES = tuple(k.value for k in EmploymentType)


# --- Models ------------------------------------------------------------------

class Job(Base):
    __tablename__ = "jobs"
    __table_args__ = (
        # One row per fingerprint; upserts key on it
        UniqueConstraint("fingerprint", name="uq_jobs_fingerprint"),
        Index("ix_jobs_active_refreshed", "is_active", "last_refreshed"),
        Index("ix_jobs_posted_date", "posted_date"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    # Identity
    fingerprint: Mapped[str] = mapped_column(String(64), nullable=False)
    source: Mapped[str] = mapped_column(
        Enum(*SOURCES, name="source_enum", native_enum=False), nullable=False, index=True
    )
    source_job_id: Mapped[Optional[str]] = mapped_column(String(200))

    # Content
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    company: Mapped[str] = mapped_column(String(300), nullable=False, default="Unknown Company")
    location: Mapped[str] = mapped_column(String(300), nullable=False, default="Not Specified")
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    employment_type: Mapped[str] = mapped_column(
        Enum(*EMPLOYMENT_TYPES, name="employment_type_enum", native_enum=False),
        nullable=False,
        default=EmploymentType.FULL_TIME.value,
    )
    remote: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    salary_min: Mapped[Optional[float]] = mapped_column(Float)
    salary_max: Mapped[Optional[float]] = mapped_column(Float)
    salary_currency: Mapped[Optional[str]] = mapped_column(String(8))
    skills: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    posted_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    source_url: Mapped[str] = mapped_column(String(1000), nullable=False, default="")
    application_url: Mapped[str] = mapped_column(String(1000), nullable=False, default="")
    # `metadata` is reserved on declarative classes
    meta: Mapped[dict] = mapped_column("metadata", JSON, default=dict, nullable=False)

    # Sponsorship
    visa_h1b: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)
    visa_opt: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    visa_stem_opt: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    visa_confidence: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    visa_analyzed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    # Lifecycle
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_featured: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    content_hash: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    last_refreshed: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def to_listing(self) -> JobListing:
        salary = None
        if self.salary_min is not None or self.salary_max is not None:
            salary = SalaryRange(min=self.salary_min, max=self.salary_max,
                                 currency=self.salary_currency or "USD")
        return JobListing(
            source=SourceKind(self.source),
            source_job_id=self.source_job_id,
            fingerprint=self.fingerprint,
            title=self.title,
            company=self.company,
            location=self.location,
            description=self.description or "",
            employment_type=EmploymentType(self.employment_type),
            remote=self.remote,
            salary=salary,
            skills=list(self.skills or []),
            posted_date=self.posted_date,
            source_url=self.source_url or "",
            application_url=self.application_url or "",
            visa_sponsorship=VisaSponsorship(h1b=self.visa_h1b, opt=self.visa_opt, stem_opt=self.visa_stem_opt),
            visa_confidence=self.visa_confidence,
            is_active=self.is_active,
            is_featured=self.is_featured,
            metadata=dict(self.meta or {}),
        )

    def to_dict(self) -> dict[str, Any]:
        data = self.to_listing().model_dump(mode="json")
        data.update(
            id=self.id,
            content_hash=self.content_hash,
            visa_analyzed_at=self.visa_analyzed_at.isoformat() if self.visa_analyzed_at else None,
            last_refreshed=self.last_refreshed.isoformat() if self.last_refreshed else None,
            created_at=self.created_at.isoformat() if self.created_at else None,
            updated_at=self.updated_at.isoformat() if self.updated_at else None,
        )
        return data

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<Job id={self.id} source={self.source} title={self.title!r}>"


__all__ = [
    "Base",
    "Job",
    "SOURCES",
    "EMPLOYMENT_TYPES",
]
