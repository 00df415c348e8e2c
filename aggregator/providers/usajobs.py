from __future__ import annotations

import logging

from aggregator.core.listing import SourceKind
from aggregator.core.raw import USAJobsRaw
from aggregator.errors import ConfigurationError, SourceFetchError
from aggregator.providers.base import FetchContext
from aggregator.providers.fetch import RateLimiter, get_json, parse_items

log = logging.getLogger(__name__)

API_URL = "https://data.usajobs.gov/api/search"
API_HOST = "data.usajobs.gov"
MAX_RESULTS_PER_PAGE = 500


class USAJobsConnector:
    """USAJobs search API. Needs an API key and the registered email as User-Agent."""

    name = SourceKind.USAJOBS

    def __init__(self, api_key: str, user_agent: str, limiter: RateLimiter | None = None):
        if not api_key or not user_agent:
            raise ConfigurationError("USAJOBS_API_KEY and USAJOBS_USER_AGENT are required")
        self.api_key = api_key
        self.user_agent = user_agent
        self.limiter = limiter or RateLimiter()

    @classmethod
    def from_settings(cls, settings) -> "USAJobsConnector":
        return cls(
            settings.usajobs_api_key,
            settings.usajobs_user_agent,
            RateLimiter(settings.rate_limit_requests, settings.rate_limit_window),
        )

    def _headers(self) -> dict:
        return {
            "Host": API_HOST,
            "User-Agent": self.user_agent,
            "Authorization-Key": self.api_key,
        }

    def fetch(self, ctx: FetchContext) -> list[USAJobsRaw]:
        out: list[USAJobsRaw] = []
        page = 1
        total_pages = max(1, ctx.max_pages)
        while page <= total_pages:
            if ctx.cancelled.is_set() or not self.limiter.acquire(ctx.cancelled):
                break
            params = {
                "Keyword": ctx.keywords,
                "ResultsPerPage": min(ctx.page_size, MAX_RESULTS_PER_PAGE),
                "Page": page,
            }
            if ctx.location:
                params["LocationName"] = ctx.location
            data = get_json(self.name.value, API_URL, params=params,
                            headers=self._headers(), timeout=ctx.request_timeout)
            result = data.get("SearchResult") if isinstance(data, dict) else None
            if not isinstance(result, dict):
                raise SourceFetchError(self.name.value, f"page {page}: missing SearchResult")
            items = result.get("SearchResultItems") or []
            if not isinstance(items, list):
                raise SourceFetchError(self.name.value, f"page {page}: SearchResultItems is not a list")
            if not items:
                break
            out.extend(parse_items(self.name.value, items, USAJobsRaw, ctx))

            reported = (result.get("UserArea") or {}).get("NumberOfPages")
            try:
                total_pages = min(max(1, ctx.max_pages), int(reported))
            except (TypeError, ValueError):
                pass
            page += 1
        log.info("usajobs fetched=%s pages=%s", len(out), page - 1)
        return out
