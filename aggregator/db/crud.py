"""Persistence operations for canonical job listings.

`JobStore` wraps a session factory (the module-level `get_session` by
default, or any `sessionmaker` in tests). Every public method runs in its own
short transaction; SQLAlchemy failures surface as StoreError.
"""
from __future__ import annotations

from datetime import datetime
import logging
from typing import Any, Callable, Iterator, Literal, Optional, Sequence

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from aggregator.core.date_parse import utcnow
from aggregator.core.dedupe import content_hash, fingerprint
from aggregator.core.listing import JobListing, SourceKind
from aggregator.db.models import Job
from aggregator.db.session import get_session
from aggregator.errors import StoreError

log = logging.getLogger(__name__)

UpsertOutcome = Literal["created", "updated", "skipped"]


def reference_time():
    """SQL expression for the timestamp retention compares against."""
    return func.coalesce(Job.last_refreshed, Job.posted_date, Job.created_at)


def _apply_content(row: Job, job: JobListing) -> None:
    row.source = job.source.value
    row.source_job_id = job.source_job_id
    row.title = job.title
    row.company = job.company
    row.location = job.location
    row.description = job.description
    row.employment_type = job.employment_type.value
    row.remote = job.remote
    row.salary_min = job.salary.min if job.salary else None
    row.salary_max = job.salary.max if job.salary else None
    row.salary_currency = job.salary.currency if job.salary else None
    row.skills = list(job.skills)
    row.source_url = job.source_url
    row.application_url = job.application_url
    row.meta = dict(job.metadata)


def _apply_visa(row: Job, h1b: bool, opt: bool, stem_opt: bool, confidence: float, now: datetime) -> None:
    row.visa_h1b = h1b
    row.visa_opt = opt
    row.visa_stem_opt = stem_opt
    row.visa_confidence = confidence
    row.visa_analyzed_at = now


def _source_value(source: Any) -> Optional[str]:
    if source is None:
        return None
    return source.value if isinstance(source, SourceKind) else SourceKind(str(source).upper()).value


class JobStore:
    def __init__(self, session_factory: Callable[[], Any] | None = None):
        self._session_factory = session_factory or get_session

    # --- identity / upsert ---------------------------------------------------

    def find_by_fingerprint(self, fp: str) -> Optional[JobListing]:
        try:
            with self._session_factory() as session:
                row = session.execute(select(Job).where(Job.fingerprint == fp)).scalar_one_or_none()
                return row.to_listing() if row is not None else None
        except SQLAlchemyError as exc:
            raise StoreError(f"lookup fingerprint={fp[:12]} failed: {exc}") from exc

    def _upsert_in(self, session: Session, job: JobListing, fp: str, digest: str, now: datetime) -> UpsertOutcome:
        visa = job.visa_sponsorship
        row = session.execute(select(Job).where(Job.fingerprint == fp)).scalar_one_or_none()
        if row is None:
            row = Job(
                fingerprint=fp,
                content_hash=digest,
                posted_date=job.posted_date,
                is_active=True,
                is_featured=job.is_featured,
                last_refreshed=now,
                created_at=now,
                updated_at=now,
            )
            _apply_content(row, job)
            _apply_visa(row, visa.h1b, visa.opt, visa.stem_opt, job.visa_confidence, now)
            session.add(row)
            session.flush()
            return "created"

        row.last_refreshed = now
        row.is_active = True
        # first-seen posted date wins; created_at and is_featured stay as they were
        if row.posted_date is None and job.posted_date is not None:
            row.posted_date = job.posted_date
        if row.content_hash == digest:
            return "skipped"
        if row.source != job.source.value:
            # text fingerprint shared across sources; the first source keeps the content
            return "skipped"

        _apply_content(row, job)
        _apply_visa(row, visa.h1b, visa.opt, visa.stem_opt, job.visa_confidence, now)
        row.content_hash = digest
        return "updated"

    def upsert(self, job: JobListing, *, now: datetime | None = None) -> UpsertOutcome:
        """Insert or refresh one classified listing, keyed by fingerprint.

        Returns "created", "updated" (content hash changed) or "skipped"
        (unchanged; only `last_refreshed` is bumped and the row reactivated).
        A concurrent insert of the same fingerprint is retried once as an update.
        """
        now = now or utcnow()
        fp = job.fingerprint or fingerprint(job)
        digest = content_hash(job)
        try:
            with self._session_factory() as session:
                try:
                    outcome = self._upsert_in(session, job, fp, digest, now)
                    session.commit()
                except IntegrityError:
                    session.rollback()
                    log.info("upsert-race fingerprint=%s retrying", fp[:12])
                    outcome = self._upsert_in(session, job, fp, digest, now)
                    session.commit()
                return outcome
        except SQLAlchemyError as exc:
            raise StoreError(f"upsert fingerprint={fp[:12]} failed: {exc}") from exc

    # --- lifecycle -----------------------------------------------------------

    def update_active_flag(
        self,
        *,
        older_than: datetime,
        not_before: datetime | None = None,
        active: bool = False,
        source: Any = None,
        dry_run: bool = False,
    ) -> int:
        """Set `is_active` on rows whose reference time is before `older_than`
        (and not before `not_before`, when given).

        Only rows whose flag actually changes are touched and counted.
        """
        clauses = [reference_time() < older_than, Job.is_active.is_(not active)]
        if not_before is not None:
            clauses.append(reference_time() >= not_before)
        src = _source_value(source)
        if src:
            clauses.append(Job.source == src)
        try:
            with self._session_factory() as session:
                if dry_run:
                    return session.execute(select(func.count(Job.id)).where(*clauses)).scalar_one()
                result = session.execute(
                    update(Job)
                    .where(*clauses)
                    .values(is_active=active, updated_at=utcnow())
                    .execution_options(synchronize_session=False)
                )
                session.commit()
                return result.rowcount or 0
        except SQLAlchemyError as exc:
            raise StoreError(f"update_active_flag failed: {exc}") from exc

    def delete_older_than(self, cutoff: datetime, *, source: Any = None, dry_run: bool = False) -> int:
        """Hard-delete rows (active or not) whose reference time is before `cutoff`."""
        clauses = [reference_time() < cutoff]
        src = _source_value(source)
        if src:
            clauses.append(Job.source == src)
        try:
            with self._session_factory() as session:
                if dry_run:
                    return session.execute(select(func.count(Job.id)).where(*clauses)).scalar_one()
                result = session.execute(
                    delete(Job).where(*clauses).execution_options(synchronize_session=False)
                )
                session.commit()
                return result.rowcount or 0
        except SQLAlchemyError as exc:
            raise StoreError(f"delete_older_than failed: {exc}") from exc

    def delete_by_source(self, source: Any, *, dry_run: bool = False) -> int:
        """Hard-delete every row of one source, active or not."""
        src = _source_value(source)
        if not src:
            raise ValueError("source is required")
        try:
            with self._session_factory() as session:
                if dry_run:
                    return session.execute(
                        select(func.count(Job.id)).where(Job.source == src)
                    ).scalar_one()
                result = session.execute(
                    delete(Job).where(Job.source == src).execution_options(synchronize_session=False)
                )
                session.commit()
        except SQLAlchemyError as exc:
            raise StoreError(f"delete_by_source source={src} failed: {exc}") from exc
        log.info("source-removed source=%s deleted=%s", src, result.rowcount or 0)
        return result.rowcount or 0

    def reactivate_all(self, *, source: Any = None) -> int:
        """Flip every inactive row (optionally of one source) back to active."""
        clauses = [Job.is_active.is_(False)]
        src = _source_value(source)
        if src:
            clauses.append(Job.source == src)
        try:
            with self._session_factory() as session:
                result = session.execute(
                    update(Job)
                    .where(*clauses)
                    .values(is_active=True, updated_at=utcnow())
                    .execution_options(synchronize_session=False)
                )
                session.commit()
        except SQLAlchemyError as exc:
            raise StoreError(f"reactivate_all failed: {exc}") from exc
        log.info("jobs-reactivated source=%s count=%s", src or "*", result.rowcount or 0)
        return result.rowcount or 0

    def count_by_source_or_flag(
        self,
        *,
        source: Any = None,
        is_active: Optional[bool] = None,
        visa_h1b: Optional[bool] = None,
    ) -> int:
        stmt = select(func.count(Job.id))
        src = _source_value(source)
        if src:
            stmt = stmt.where(Job.source == src)
        if is_active is not None:
            stmt = stmt.where(Job.is_active.is_(is_active))
        if visa_h1b is not None:
            stmt = stmt.where(Job.visa_h1b.is_(visa_h1b))
        try:
            with self._session_factory() as session:
                return session.execute(stmt).scalar_one()
        except SQLAlchemyError as exc:
            raise StoreError(f"count failed: {exc}") from exc

    # --- classification ------------------------------------------------------

    def iter_for_reclassify(
        self,
        *,
        source: Any = None,
        active_only: bool = True,
        only_unanalyzed: bool = False,
        limit: int = 100,
    ) -> Iterator[dict]:
        """Yield plain dicts (id, text fields, current flags) for re-analysis."""
        stmt = select(Job).order_by(Job.id.asc()).limit(limit)
        src = _source_value(source)
        if src:
            stmt = stmt.where(Job.source == src)
        if active_only:
            stmt = stmt.where(Job.is_active.is_(True))
        if only_unanalyzed:
            stmt = stmt.where(Job.visa_analyzed_at.is_(None))
        try:
            with self._session_factory() as session:
                rows = [
                    {
                        "id": r.id,
                        "title": r.title,
                        "description": r.description or "",
                        "company": r.company,
                        "h1b": r.visa_h1b,
                        "opt": r.visa_opt,
                        "stem_opt": r.visa_stem_opt,
                        "confidence": r.visa_confidence,
                    }
                    for r in session.execute(stmt).scalars()
                ]
        except SQLAlchemyError as exc:
            raise StoreError(f"reclassify query failed: {exc}") from exc
        yield from rows

    def set_visa(self, job_id: int, *, h1b: bool, opt: bool, stem_opt: bool,
                 confidence: float, now: datetime | None = None) -> bool:
        try:
            with self._session_factory() as session:
                row = session.get(Job, job_id)
                if row is None:
                    return False
                _apply_visa(row, h1b, opt, stem_opt, confidence, now or utcnow())
                session.commit()
                return True
        except SQLAlchemyError as exc:
            raise StoreError(f"set_visa id={job_id} failed: {exc}") from exc

    # --- reads ---------------------------------------------------------------

    def get(self, job_id: int) -> Optional[dict]:
        try:
            with self._session_factory() as session:
                row = session.get(Job, job_id)
                return row.to_dict() if row is not None else None
        except SQLAlchemyError as exc:
            raise StoreError(f"get id={job_id} failed: {exc}") from exc

    def search(
        self,
        *,
        q: Optional[str] = None,
        source: Any = None,
        remote: Optional[bool] = None,
        employment_type: Optional[str] = None,
        h1b: Optional[bool] = None,
        opt: Optional[bool] = None,
        stem_opt: Optional[bool] = None,
        active: Optional[bool] = True,
        limit: int = 25,
        offset: int = 0,
    ) -> tuple[list[dict], int]:
        clauses = []
        src = _source_value(source)
        if src:
            clauses.append(Job.source == src)
        if remote is not None:
            clauses.append(Job.remote.is_(remote))
        if employment_type:
            clauses.append(Job.employment_type == employment_type.upper())
        if h1b is not None:
            clauses.append(Job.visa_h1b.is_(h1b))
        if opt is not None:
            clauses.append(Job.visa_opt.is_(opt))
        if stem_opt is not None:
            clauses.append(Job.visa_stem_opt.is_(stem_opt))
        if active is not None:
            clauses.append(Job.is_active.is_(active))
        if q:
            like = f"%{q.strip()}%"
            clauses.append(or_(Job.title.ilike(like), Job.company.ilike(like)))

        order = (Job.is_featured.desc(), Job.posted_date.desc().nullslast(), Job.id.desc())
        try:
            with self._session_factory() as session:
                total = session.execute(select(func.count(Job.id)).where(*clauses)).scalar_one()
                rows: Sequence[Job] = session.execute(
                    select(Job).where(*clauses).order_by(*order).offset(offset).limit(limit)
                ).scalars().all()
                return [r.to_dict() for r in rows], total
        except SQLAlchemyError as exc:
            raise StoreError(f"search failed: {exc}") from exc

    def stats(self) -> dict:
        """Totals, active/inactive split, posted-date range and per-source counts."""
        try:
            with self._session_factory() as session:
                total = session.execute(select(func.count(Job.id))).scalar_one()
                active = session.execute(
                    select(func.count(Job.id)).where(Job.is_active.is_(True))
                ).scalar_one()
                oldest, newest = session.execute(
                    select(func.min(Job.posted_date), func.max(Job.posted_date))
                ).one()
                by_source = {
                    src: count
                    for src, count in session.execute(
                        select(Job.source, func.count(Job.id)).group_by(Job.source)
                    ).all()
                }
                sponsoring = session.execute(
                    select(func.count(Job.id)).where(
                        or_(Job.visa_h1b.is_(True), Job.visa_opt.is_(True), Job.visa_stem_opt.is_(True))
                    )
                ).scalar_one()
        except SQLAlchemyError as exc:
            raise StoreError(f"stats failed: {exc}") from exc
        return {
            "total": total,
            "active": active,
            "inactive": total - active,
            "oldest_posted": oldest.isoformat() if oldest else None,
            "newest_posted": newest.isoformat() if newest else None,
            "by_source": by_source,
            "visa_sponsoring": sponsoring,
        }


__all__ = ["JobStore", "UpsertOutcome", "reference_time"]
