from __future__ import annotations

import logging

from aggregator.core.listing import SourceKind
from aggregator.core.raw import RemoteOKRaw
from aggregator.errors import SourceFetchError
from aggregator.providers.base import FetchContext
from aggregator.providers.fetch import RateLimiter, get_json, parse_items

log = logging.getLogger(__name__)

API_URL = "https://remoteok.com/api"


class RemoteOKConnector:
    """RemoteOK public feed: one unauthenticated GET, no pagination."""

    name = SourceKind.REMOTEOK

    def __init__(self, limiter: RateLimiter | None = None):
        self.limiter = limiter or RateLimiter()

    @classmethod
    def from_settings(cls, settings) -> "RemoteOKConnector":
        return cls(RateLimiter(settings.rate_limit_requests, settings.rate_limit_window))

    def fetch(self, ctx: FetchContext) -> list[RemoteOKRaw]:
        if not self.limiter.acquire(ctx.cancelled):
            return []
        data = get_json(self.name.value, API_URL, timeout=ctx.request_timeout)
        if not isinstance(data, list):
            raise SourceFetchError(self.name.value, f"expected a JSON array, got {type(data).__name__}")
        # element 0 is the feed's legal/metadata notice
        items = parse_items(self.name.value, data[1:], RemoteOKRaw, ctx)
        log.info("remoteok fetched=%s", len(items))
        return items
