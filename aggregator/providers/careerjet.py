from __future__ import annotations

import logging

from aggregator.core.listing import SourceKind
from aggregator.core.raw import CareerJetRaw
from aggregator.errors import SourceFetchError
from aggregator.providers.base import FetchContext
from aggregator.providers.fetch import UA, RateLimiter, get_json, parse_items

log = logging.getLogger(__name__)

API_URL = "https://public.api.careerjet.net/search"


class CareerJetConnector:
    """CareerJet public search. The affiliate id only attributes traffic, so it is optional."""

    name = SourceKind.CAREERJET

    def __init__(self, affiliate_id: str = "", limiter: RateLimiter | None = None,
                 locale: str = "en_US", user_ip: str = "127.0.0.1"):
        self.affiliate_id = affiliate_id
        self.locale = locale
        self.user_ip = user_ip
        self.limiter = limiter or RateLimiter()
        if not affiliate_id:
            log.warning("careerjet affiliate id not set; fetching unattributed")

    @classmethod
    def from_settings(cls, settings) -> "CareerJetConnector":
        return cls(settings.careerjet_affiliate_id,
                   RateLimiter(settings.rate_limit_requests, settings.rate_limit_window))

    def fetch(self, ctx: FetchContext) -> list[CareerJetRaw]:
        out: list[CareerJetRaw] = []
        pages = max(1, ctx.max_pages)
        page = 1
        while page <= pages:
            if ctx.cancelled.is_set() or not self.limiter.acquire(ctx.cancelled):
                break
            params = {
                "keywords": ctx.keywords,
                "location": ctx.location,
                "pagesize": ctx.page_size,
                "page": page,
                "sort": "date",
                "locale_code": self.locale,
                "user_ip": self.user_ip,
                "user_agent": UA["User-Agent"],
            }
            if self.affiliate_id:
                params["affid"] = self.affiliate_id
            data = get_json(self.name.value, API_URL, params=params, timeout=ctx.request_timeout)
            if not isinstance(data, dict):
                raise SourceFetchError(self.name.value, f"page {page}: expected a JSON object")
            kind = str(data.get("type", "")).upper()
            if kind == "ERROR":
                raise SourceFetchError(self.name.value, str(data.get("error") or "API returned an error"))
            if kind == "LOCATIONS":
                # ambiguous location; CareerJet answers with candidates instead of jobs
                ctx.warnings.append(f"ambiguous location {ctx.location!r}")
                break
            items = data.get("jobs") or []
            if not isinstance(items, list):
                raise SourceFetchError(self.name.value, f"page {page}: 'jobs' is not a list")
            if not items:
                break
            out.extend(parse_items(self.name.value, items, CareerJetRaw, ctx))
            try:
                pages = min(max(1, ctx.max_pages), int(data.get("pages") or page))
            except (TypeError, ValueError):
                pass
            page += 1
        log.info("careerjet fetched=%s", len(out))
        return out
