from __future__ import annotations

import logging
import re
from typing import Any, Callable, Iterable, Optional

from bs4 import BeautifulSoup

from aggregator.core.date_parse import parse_posted_date
from aggregator.core.listing import EmploymentType, JobListing, SalaryRange, SourceKind
from aggregator.core.raw import (
    ArbeitnowRaw,
    CareerJetRaw,
    JoobleRaw,
    RawListing,
    RemoteOKRaw,
    UniversityRaw,
    USAJobsRaw,
)
from aggregator.errors import NormalizationError

log = logging.getLogger(__name__)

REMOTE_HINTS = re.compile(r"\b(remote|telework|work\s+from\s+home|wfh|anywhere)\b", re.I)
SALARY_NUMBER = re.compile(r"(\d[\d,]*(?:\.\d+)?)\s*([kK])?")
CURRENCY_SYMBOLS = {"$": "USD", "€": "EUR", "£": "GBP"}

SKILL_VOCABULARY = (
    "javascript", "typescript", "python", "java", "react", "node.js",
    "angular", "vue", "sql", "mongodb", "aws", "azure", "docker",
    "kubernetes", "machine learning", "data science", "devops",
    "c++", "c#", "golang", "rust", "swift", "kotlin", "flutter",
)


def normalize_text(value: Any) -> str:
    if value is None:
        return ""
    return " ".join(str(value).split()).strip()


def html_to_text(html: Optional[str]) -> str:
    if not html:
        return ""
    if "<" not in html:
        return normalize_text(html)
    text = BeautifulSoup(html, "html.parser").get_text(" ", strip=True)
    return normalize_text(text)


def map_employment_type(value: Optional[str]) -> EmploymentType:
    """Map free-form schedule strings ("Full-time", "Part Time", ...) onto the enum."""
    t = (value or "").lower()
    if not t:
        return EmploymentType.FULL_TIME
    if "intern" in t or "trainee" in t:
        return EmploymentType.INTERNSHIP
    if "part" in t:
        return EmploymentType.PART_TIME
    if "contract" in t or "freelance" in t:
        return EmploymentType.CONTRACT
    if "temp" in t or "seasonal" in t:
        return EmploymentType.TEMPORARY
    return EmploymentType.FULL_TIME


def _to_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if value > 0 else None
    m = SALARY_NUMBER.search(str(value))
    if not m:
        return None
    try:
        number = float(m.group(1).replace(",", ""))
    except ValueError:
        return None
    if m.group(2):
        number *= 1000
    return number if number > 0 else None


def parse_salary(
    minimum: Any = None,
    maximum: Any = None,
    text: Optional[str] = None,
    currency: Optional[str] = None,
) -> Optional[SalaryRange]:
    """Build a SalaryRange from numeric bounds or a free-text salary string.

    Unparseable input yields None rather than a guess.
    """
    lo = _to_number(minimum)
    hi = _to_number(maximum)

    if lo is None and hi is None and text:
        numbers = [_to_number(m.group(0)) for m in SALARY_NUMBER.finditer(text)]
        numbers = [n for n in numbers if n is not None]
        if numbers:
            lo = numbers[0]
            hi = numbers[1] if len(numbers) > 1 else None
        if not currency:
            for symbol, code in CURRENCY_SYMBOLS.items():
                if symbol in text:
                    currency = code
                    break

    if lo is None and hi is None:
        return None
    if lo is not None and hi is not None and lo > hi:
        lo, hi = hi, lo
    return SalaryRange(min=lo, max=hi, currency=(currency or "USD").upper())


def detect_remote(*texts: Optional[str]) -> bool:
    return any(REMOTE_HINTS.search(t) for t in texts if t)


def extract_skills(text: Optional[str]) -> list[str]:
    lowered = (text or "").lower()
    if not lowered:
        return []
    found = []
    for skill in SKILL_VOCABULARY:
        # word-ish boundaries; "java" must not match "javascript"
        pattern = r"(?<![a-z0-9])" + re.escape(skill) + r"(?![a-z0-9+#])"
        if re.search(pattern, lowered):
            found.append(skill)
    return found


def _clean_tags(tags: Iterable[Any]) -> list[str]:
    out: list[str] = []
    for tag in tags or []:
        if isinstance(tag, str) and tag.strip():
            label = normalize_text(tag).lower()
            if label not in out:
                out.append(label)
    return out


def _source_id(value: Any) -> Optional[str]:
    text = normalize_text(value)
    return text or None


# --- per-source cases --------------------------------------------------------

def _normalize_remoteok(raw: RemoteOKRaw) -> JobListing:
    job_id = _source_id(raw.id) or _source_id(raw.slug)
    url = normalize_text(raw.url) or (f"https://remoteok.com/remote-jobs/{job_id}" if job_id else "")
    return JobListing(
        source=SourceKind.REMOTEOK,
        source_job_id=job_id,
        title=normalize_text(raw.position),
        company=normalize_text(raw.company) or "Unknown Company",
        location=normalize_text(raw.location) or "Remote",
        description=html_to_text(raw.description),
        remote=True,
        salary=parse_salary(raw.salary_min, raw.salary_max),
        skills=_clean_tags(raw.tags),
        posted_date=parse_posted_date(raw.epoch) or parse_posted_date(raw.date),
        source_url=url,
        application_url=normalize_text(raw.apply_url) or url,
    )


def _normalize_arbeitnow(raw: ArbeitnowRaw) -> JobListing:
    slug = _source_id(raw.slug)
    url = normalize_text(raw.url) or (f"https://www.arbeitnow.com/jobs/{slug}" if slug else "")
    title = normalize_text(raw.title)
    location = normalize_text(raw.location) or "Europe/Remote"
    job_type = next((t for t in raw.job_types if isinstance(t, str)), None)
    return JobListing(
        source=SourceKind.ARBEITNOW,
        source_job_id=slug,
        title=title,
        company=normalize_text(raw.company_name) or "Unknown Company",
        location=location,
        description=html_to_text(raw.description),
        employment_type=map_employment_type(job_type),
        remote=bool(raw.remote) or detect_remote(title, location),
        skills=_clean_tags(raw.tags),
        posted_date=parse_posted_date(raw.created_at),
        source_url=url,
        application_url=url,
    )


def _normalize_usajobs(raw: USAJobsRaw) -> JobListing:
    d = raw.descriptor
    details = d.user_area.get("Details") if isinstance(d.user_area, dict) else None
    summary = details.get("JobSummary") if isinstance(details, dict) else None
    description = html_to_text(summary) or html_to_text(d.qualification_summary)
    location = normalize_text(d.location_display) or "Not Specified"
    location_names = [loc.location_name for loc in d.locations if loc.location_name]

    salary = None
    if d.remuneration:
        pay = d.remuneration[0]
        salary = parse_salary(pay.minimum, pay.maximum, currency="USD")

    url = normalize_text(d.position_uri)
    return JobListing(
        source=SourceKind.USAJOBS,
        source_job_id=_source_id(d.position_id) or _source_id(raw.matched_object_id),
        title=normalize_text(d.title),
        company=normalize_text(d.organization) or normalize_text(d.department) or "US Government",
        location=location,
        description=description,
        employment_type=map_employment_type(d.schedule[0].name if d.schedule else None),
        remote=detect_remote(location, *location_names),
        salary=salary,
        skills=extract_skills(d.qualification_summary),
        posted_date=parse_posted_date(d.publication_start),
        source_url=url,
        application_url=normalize_text(d.apply_uri[0]) if d.apply_uri else url,
    )


def _normalize_jooble(raw: JoobleRaw) -> JobListing:
    title = normalize_text(raw.title)
    location = normalize_text(raw.location) or "Not Specified"
    description = html_to_text(raw.snippet)
    url = normalize_text(raw.link)
    return JobListing(
        source=SourceKind.JOOBLE,
        source_job_id=_source_id(raw.id),
        title=title,
        company=normalize_text(raw.company) or "Unknown Company",
        location=location,
        description=description,
        employment_type=map_employment_type(raw.type),
        remote=detect_remote(title, location, description),
        salary=parse_salary(text=raw.salary),
        skills=extract_skills(description),
        posted_date=parse_posted_date(raw.updated),
        source_url=url,
        application_url=url,
    )


def _careerjet_employment(raw: CareerJetRaw) -> EmploymentType:
    code = (raw.contract_type or "").strip().lower()
    if code in ("c", "contract"):
        return EmploymentType.CONTRACT
    if code in ("t", "temporary"):
        return EmploymentType.TEMPORARY
    if code in ("i", "training", "internship"):
        return EmploymentType.INTERNSHIP
    period = (raw.contract_period or "").strip().lower()
    if period in ("p", "part", "part-time", "part time"):
        return EmploymentType.PART_TIME
    if len(code) > 1:
        return map_employment_type(code)
    return EmploymentType.FULL_TIME


def _normalize_careerjet(raw: CareerJetRaw) -> JobListing:
    title = normalize_text(raw.title)
    location = normalize_text(raw.locations) or "Not Specified"
    description = html_to_text(raw.description)
    url = normalize_text(raw.url)
    return JobListing(
        source=SourceKind.CAREERJET,
        # CareerJet has no stable id; its URLs carry per-request tracking
        source_job_id=None,
        title=title,
        company=normalize_text(raw.company) or "Unknown Company",
        location=location,
        description=description,
        employment_type=_careerjet_employment(raw),
        remote=detect_remote(title, location, description),
        salary=parse_salary(raw.salary_min, raw.salary_max, raw.salary, raw.salary_currency_code),
        skills=extract_skills(description),
        posted_date=parse_posted_date(raw.date),
        source_url=url,
        application_url=url,
    )


def _normalize_university(raw: UniversityRaw) -> JobListing:
    title = normalize_text(raw.title)
    location = normalize_text(raw.location) or "Not Specified"
    description = html_to_text(raw.description)
    url = normalize_text(raw.url)
    return JobListing(
        source=SourceKind.UNIVERSITY,
        source_job_id=None,
        title=title,
        company=normalize_text(raw.company) or "Unknown Company",
        location=location,
        description=description,
        remote=detect_remote(location, title),
        skills=extract_skills(description),
        posted_date=parse_posted_date(raw.posted),
        source_url=url,
        application_url=url,
        metadata={"university": normalize_text(raw.university)},
    )


_NORMALIZERS: dict[type, Callable[[Any], JobListing]] = {
    RemoteOKRaw: _normalize_remoteok,
    ArbeitnowRaw: _normalize_arbeitnow,
    USAJobsRaw: _normalize_usajobs,
    JoobleRaw: _normalize_jooble,
    CareerJetRaw: _normalize_careerjet,
    UniversityRaw: _normalize_university,
}


def normalize(raw: RawListing, source: SourceKind) -> JobListing:
    """Map one raw listing onto the canonical JobListing.

    The result is unclassified and has no fingerprint yet. Raises
    NormalizationError for a variant that does not belong to `source`, or
    when a required field (title) is missing.
    """
    mapper = _NORMALIZERS.get(type(raw))
    if mapper is None:
        raise NormalizationError(f"no normalizer for {type(raw).__name__}")
    if raw.source != source:
        raise NormalizationError(
            f"{type(raw).__name__} belongs to {raw.source.value}, not {source.value}"
        )
    try:
        listing = mapper(raw)
    except (ValueError, TypeError) as exc:
        raise NormalizationError(f"{source.value}: {exc}") from exc
    if not listing.title:
        raise NormalizationError(f"{source.value}: listing has no title")
    return listing


def normalize_batch(raws: Iterable[RawListing], source: SourceKind) -> tuple[list[JobListing], int]:
    """Normalize a source's batch, dropping (and counting) malformed items."""
    listings: list[JobListing] = []
    dropped = 0
    for raw in raws:
        try:
            listings.append(normalize(raw, source))
        except NormalizationError as exc:
            dropped += 1
            log.debug("normalize-drop source=%s reason=%s", source.value, exc)
    if dropped:
        log.info("normalize source=%s kept=%s dropped=%s", source.value, len(listings), dropped)
    return listings, dropped
