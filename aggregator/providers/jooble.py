from __future__ import annotations

import logging

from aggregator.core.listing import SourceKind
from aggregator.core.raw import JoobleRaw
from aggregator.errors import ConfigurationError, SourceFetchError
from aggregator.providers.base import FetchContext
from aggregator.providers.fetch import RateLimiter, parse_items, post_json

log = logging.getLogger(__name__)

API_URL = "https://jooble.org/api/{key}"


class JoobleConnector:
    name = SourceKind.JOOBLE

    def __init__(self, api_key: str, limiter: RateLimiter | None = None):
        if not api_key:
            raise ConfigurationError("JOOBLE_API_KEY is required")
        self.api_key = api_key
        self.limiter = limiter or RateLimiter()

    @classmethod
    def from_settings(cls, settings) -> "JoobleConnector":
        return cls(settings.jooble_api_key,
                   RateLimiter(settings.rate_limit_requests, settings.rate_limit_window))

    def fetch(self, ctx: FetchContext) -> list[JoobleRaw]:
        url = API_URL.format(key=self.api_key)
        out: list[JoobleRaw] = []
        for page in range(1, max(1, ctx.max_pages) + 1):
            if ctx.cancelled.is_set() or not self.limiter.acquire(ctx.cancelled):
                break
            body = {
                "keywords": ctx.keywords,
                "location": ctx.location,
                "page": page,
                "ResultOnPage": ctx.page_size,
            }
            data = post_json(self.name.value, url, body=body, timeout=ctx.request_timeout)
            if not isinstance(data, dict) or not isinstance(data.get("jobs", []), list):
                raise SourceFetchError(self.name.value, f"page {page}: missing 'jobs' array")
            items = data.get("jobs") or []
            if not items:
                break
            out.extend(parse_items(self.name.value, items, JoobleRaw, ctx))
        log.info("jooble fetched=%s", len(out))
        return out
