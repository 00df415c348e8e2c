from __future__ import annotations

import logging

from aggregator.core.listing import SourceKind
from aggregator.core.raw import ArbeitnowRaw
from aggregator.errors import SourceFetchError
from aggregator.providers.base import FetchContext
from aggregator.providers.fetch import RateLimiter, get_json, parse_items

log = logging.getLogger(__name__)

API_URL = "https://www.arbeitnow.com/api/job-board-api"


class ArbeitnowConnector:
    name = SourceKind.ARBEITNOW

    def __init__(self, limiter: RateLimiter | None = None):
        self.limiter = limiter or RateLimiter()

    @classmethod
    def from_settings(cls, settings) -> "ArbeitnowConnector":
        return cls(RateLimiter(settings.rate_limit_requests, settings.rate_limit_window))

    def fetch(self, ctx: FetchContext) -> list[ArbeitnowRaw]:
        out: list[ArbeitnowRaw] = []
        for page in range(1, max(1, ctx.max_pages) + 1):
            if ctx.cancelled.is_set() or not self.limiter.acquire(ctx.cancelled):
                break
            data = get_json(self.name.value, API_URL, params={"page": page}, timeout=ctx.request_timeout)
            if not isinstance(data, dict) or not isinstance(data.get("data"), list):
                raise SourceFetchError(self.name.value, f"page {page}: missing 'data' array")
            items = data["data"]
            if not items:
                break
            out.extend(parse_items(self.name.value, items, ArbeitnowRaw, ctx))
            links = data.get("links") or {}
            if not links.get("next"):
                break
        log.info("arbeitnow fetched=%s", len(out))
        return out
