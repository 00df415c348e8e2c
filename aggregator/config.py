"""Runtime settings for the aggregator, read from environment variables.

A `.env` file is loaded first (path from AGG_DOTENV, default ".env"), so the
CLI, the scheduler and the API process all see the same configuration.

Notable variables
-----------------
USAJOBS_API_KEY / USAJOBS_USER_AGENT   both required for USAJobs
JOOBLE_API_KEY                        required for Jooble
CAREERJET_AFFILIATE_ID                optional; CareerJet still runs without it
AGG_SOURCES                           comma list limiting enabled sources
AGG_SEARCH_KEYWORDS / AGG_SEARCH_LOCATION / AGG_PAGE_SIZE / AGG_MAX_PAGES
AGG_SOURCE_TIMEOUT / AGG_RUN_TIMEOUT / AGG_MAX_WORKERS
AGG_INACTIVE_DAYS (30) / AGG_DELETE_DAYS (60)
AGG_REFRESH_SCHEDULE ("0 2 * * *") / AGG_CLEANUP_SCHEDULE ("0 3 * * *") / AGG_TIMEZONE
AGG_ENABLE_SCHEDULER                  start the scheduler thread inside the API
AGG_SIGNAL_TABLE                      YAML file overriding the visa signal table
AGG_UNIVERSITY_TARGETS                JSON file with university career pages
"""
from __future__ import annotations

from dataclasses import dataclass, field
import json
import logging
import os
from pathlib import Path
from typing import Optional, Union

from dotenv import load_dotenv

from aggregator.core.listing import SourceKind
from aggregator.errors import ConfigurationError

load_dotenv(dotenv_path=os.getenv("AGG_DOTENV", ".env"))

log = logging.getLogger(__name__)

DEFAULT_UNIVERSITY_TARGETS: list[dict] = [
    {
        "name": "MIT",
        "url": "https://careers.mit.edu/jobs",
        "selectors": {
            "item": ".job-listing",
            "title": ".job-title",
            "company": ".company-name",
            "location": ".job-location",
            "description": ".job-description",
            "link": "a",
        },
    },
    {
        "name": "Stanford",
        "url": "https://careers.stanford.edu/jobs",
        "selectors": {
            "item": ".job-listing",
            "title": ".job-title",
            "company": ".company-name",
            "location": ".job-location",
            "description": ".job-description",
            "link": "a",
        },
    },
    {
        "name": "Carnegie Mellon",
        "url": "https://www.cmu.edu/career/jobs",
        "selectors": {
            "item": ".job-listing",
            "title": ".job-title",
            "company": ".company-name",
            "location": ".job-location",
            "description": ".job-description",
            "link": "a",
        },
    },
    {
        "name": "UC Berkeley",
        "url": "https://career.berkeley.edu/jobs",
        "selectors": {
            "item": ".job-listing",
            "title": ".job-title",
            "company": ".company-name",
            "location": ".job-location",
            "description": ".job-description",
            "link": "a",
        },
    },
    {
        "name": "UIUC",
        "url": "https://careercenter.illinois.edu/jobs",
        "selectors": {
            "item": ".job-listing",
            "title": ".job-title",
            "company": ".company-name",
            "location": ".job-location",
            "description": ".job-description",
            "link": "a",
        },
    },
]


def _parse_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}


def _int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        log.warning("config-invalid name=%s value=%r default=%s", name, raw, default)
        return default


def _float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        log.warning("config-invalid name=%s value=%r default=%s", name, raw, default)
        return default


def parse_sources(raw: Optional[str]) -> list[SourceKind]:
    if not raw:
        return [k for k in SourceKind if k is not SourceKind.MANUAL]
    out = []
    for token in raw.split(","):
        token = token.strip().upper()
        if not token:
            continue
        try:
            out.append(SourceKind(token))
        except ValueError:
            log.warning("config-unknown-source source=%s", token)
    return out


def load_university_targets(path: Union[str, Path]) -> list[dict]:
    """Read career-page targets from JSON (one object or a list of them)."""
    path = Path(path)
    with path.open(encoding="utf-8") as f:
        data = json.load(f)
    targets = [data] if isinstance(data, dict) else data
    if not isinstance(targets, list) or not all(isinstance(t, dict) and t.get("url") for t in targets):
        raise ConfigurationError(f"{path}: expected target objects with a 'url'")
    return targets


@dataclass
class Settings:
    usajobs_api_key: str = ""
    usajobs_user_agent: str = ""
    jooble_api_key: str = ""
    careerjet_affiliate_id: str = ""

    enabled_sources: list[SourceKind] = field(
        default_factory=lambda: [k for k in SourceKind if k is not SourceKind.MANUAL]
    )
    search_keywords: str = "software engineer"
    search_location: str = "United States"
    page_size: int = 50
    max_pages: int = 3

    source_timeout: float = 60.0
    run_timeout: float = 300.0
    request_timeout: float = 20.0
    max_workers: int = 6
    rate_limit_requests: int = 10
    rate_limit_window: float = 60.0

    inactive_days: int = 30
    delete_days: int = 60

    refresh_schedule: str = "0 2 * * *"
    cleanup_schedule: str = "0 3 * * *"
    timezone: str = "UTC"
    enable_scheduler: bool = False
    history_size: int = 10

    signal_table_path: Optional[str] = None
    university_targets: list[dict] = field(default_factory=lambda: list(DEFAULT_UNIVERSITY_TARGETS))

    admin_token: str = ""

    @classmethod
    def from_env(cls) -> "Settings":
        targets = list(DEFAULT_UNIVERSITY_TARGETS)
        targets_path = os.getenv("AGG_UNIVERSITY_TARGETS")
        if targets_path:
            targets = load_university_targets(targets_path)
        return cls(
            usajobs_api_key=os.getenv("USAJOBS_API_KEY", "").strip(),
            usajobs_user_agent=os.getenv("USAJOBS_USER_AGENT", "").strip(),
            jooble_api_key=os.getenv("JOOBLE_API_KEY", "").strip(),
            careerjet_affiliate_id=os.getenv("CAREERJET_AFFILIATE_ID", "").strip(),
            enabled_sources=parse_sources(os.getenv("AGG_SOURCES")),
            search_keywords=os.getenv("AGG_SEARCH_KEYWORDS", "software engineer"),
            search_location=os.getenv("AGG_SEARCH_LOCATION", "United States"),
            page_size=_int("AGG_PAGE_SIZE", 50),
            max_pages=_int("AGG_MAX_PAGES", 3),
            source_timeout=_float("AGG_SOURCE_TIMEOUT", 60.0),
            run_timeout=_float("AGG_RUN_TIMEOUT", 300.0),
            request_timeout=_float("AGG_REQUEST_TIMEOUT", 20.0),
            max_workers=_int("AGG_MAX_WORKERS", 6),
            rate_limit_requests=_int("AGG_RATE_LIMIT_REQUESTS", 10),
            rate_limit_window=_float("AGG_RATE_LIMIT_WINDOW", 60.0),
            inactive_days=_int("AGG_INACTIVE_DAYS", 30),
            delete_days=_int("AGG_DELETE_DAYS", 60),
            refresh_schedule=os.getenv("AGG_REFRESH_SCHEDULE", "0 2 * * *"),
            cleanup_schedule=os.getenv("AGG_CLEANUP_SCHEDULE", "0 3 * * *"),
            timezone=os.getenv("AGG_TIMEZONE", "UTC"),
            enable_scheduler=_parse_bool(os.getenv("AGG_ENABLE_SCHEDULER")),
            history_size=_int("AGG_RUN_HISTORY", 10),
            signal_table_path=os.getenv("AGG_SIGNAL_TABLE") or None,
            university_targets=targets,
            admin_token=os.getenv("AGG_ADMIN_TOKEN", ""),
        )

    def validate(self) -> list[str]:
        """Return (and log) configuration problems.

        Missing credentials only disable their source; an inverted retention
        window is reported here and refused again when cleanup runs.
        """
        problems: list[str] = []
        if SourceKind.USAJOBS in self.enabled_sources and not (
            self.usajobs_api_key and self.usajobs_user_agent
        ):
            problems.append("USAJOBS_API_KEY and USAJOBS_USER_AGENT are required for USAJOBS")
        if SourceKind.JOOBLE in self.enabled_sources and not self.jooble_api_key:
            problems.append("JOOBLE_API_KEY is required for JOOBLE")
        if SourceKind.CAREERJET in self.enabled_sources and not self.careerjet_affiliate_id:
            problems.append("CAREERJET_AFFILIATE_ID is not set; CareerJet runs unattributed")
        if self.inactive_days <= 0 or self.delete_days <= 0:
            problems.append("retention windows must be positive")
        if self.delete_days < self.inactive_days:
            problems.append(
                f"AGG_DELETE_DAYS ({self.delete_days}) must be >= AGG_INACTIVE_DAYS ({self.inactive_days})"
            )
        if self.max_workers <= 0:
            problems.append("AGG_MAX_WORKERS must be positive")
        for problem in problems:
            log.warning("config-problem %s", problem)
        return problems


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging once for CLI and API entry points."""
    name = (level or os.getenv("AGG_LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(
        level=getattr(logging, name, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
