"""Career pages of a fixed set of universities, scraped with BeautifulSoup.

Each target is a dict::

    {"name": "MIT", "url": "https://...", "selectors": {"item": ".job-listing",
     "title": ".job-title", "company": ".company-name", "location": ".job-location",
     "description": ".job-description", "link": "a", "posted": ".job-date"}}

A failing target becomes a warning on the run; only when every target fails
does the connector raise.
"""
from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup
from bs4.element import Tag
from soupsieve import SelectorSyntaxError

from aggregator.core.listing import SourceKind
from aggregator.core.raw import UniversityRaw
from aggregator.errors import SourceFetchError
from aggregator.providers.base import FetchContext
from aggregator.providers.fetch import RateLimiter, get_text

log = logging.getLogger(__name__)

DEFAULT_SELECTORS = {
    "item": ".job-listing",
    "title": ".job-title",
    "company": ".company-name",
    "location": ".job-location",
    "description": ".job-description",
    "link": "a",
    "posted": ".job-date",
}


def _select_text(node: Tag, selector: Optional[str]) -> Optional[str]:
    if not selector:
        return None
    found = node.select_one(selector)
    if found is None:
        return None
    text = found.get_text(" ", strip=True)
    return text or None


def extract_listings(html: str, target: dict) -> list[UniversityRaw]:
    """Pull one UniversityRaw per matched item node out of a career page."""
    name = target.get("name") or "Unknown University"
    base_url = target.get("url") or ""
    selectors = {**DEFAULT_SELECTORS, **(target.get("selectors") or {})}

    soup = BeautifulSoup(html or "", "html.parser")
    out: list[UniversityRaw] = []
    for node in soup.select(selectors["item"]):
        if not isinstance(node, Tag):
            continue
        title = _select_text(node, selectors.get("title"))
        if not title:
            continue
        link = node.select_one(selectors["link"]) if selectors.get("link") else None
        href = link.get("href") if isinstance(link, Tag) else None
        out.append(
            UniversityRaw(
                university=name,
                title=title,
                company=_select_text(node, selectors.get("company")) or name,
                location=_select_text(node, selectors.get("location")),
                description=_select_text(node, selectors.get("description")),
                url=urljoin(base_url, href) if href else base_url,
                posted=_select_text(node, selectors.get("posted")),
            )
        )
    return out


class UniversityConnector:
    name = SourceKind.UNIVERSITY

    def __init__(self, targets: list[dict], limiter: RateLimiter | None = None):
        self.targets = list(targets)
        self.limiter = limiter or RateLimiter()

    @classmethod
    def from_settings(cls, settings) -> "UniversityConnector":
        return cls(settings.university_targets,
                   RateLimiter(settings.rate_limit_requests, settings.rate_limit_window))

    def fetch(self, ctx: FetchContext) -> list[UniversityRaw]:
        out: list[UniversityRaw] = []
        failures = 0
        for target in self.targets:
            if ctx.cancelled.is_set() or not self.limiter.acquire(ctx.cancelled):
                break
            name = target.get("name") or target.get("url") or "?"
            try:
                html = get_text(self.name.value, target["url"], timeout=ctx.request_timeout)
                found = extract_listings(html, target)
            except (SourceFetchError, SelectorSyntaxError, KeyError) as exc:
                failures += 1
                ctx.warnings.append(f"{name}: {exc}")
                log.warning("university-target-failed university=%s error=%s", name, exc)
                continue
            log.info("university scraped university=%s found=%s", name, len(found))
            out.extend(found)
        if self.targets and failures == len(self.targets):
            raise SourceFetchError(self.name.value, f"all {failures} university targets failed")
        return out
