"""HTTP helpers shared by the connectors.

Every helper raises SourceFetchError for transport failures, non-2xx
responses and undecodable bodies, so connectors never leak `requests`
exceptions into the run.
"""
from __future__ import annotations

from collections import deque
import logging
import threading
import time
from typing import Any, Iterable, Optional, Type, TypeVar

import requests
from pydantic import BaseModel, ValidationError

from aggregator.errors import SourceFetchError

log = logging.getLogger(__name__)

UA = {"User-Agent": "Mozilla/5.0 (compatible; JobAggregator/1.0; +https://example.invalid/bot)",
      "Accept": "application/json,text/html;q=0.9,*/*;q=0.8",
      "Accept-Language": "en-US,en;q=0.8"}

M = TypeVar("M", bound=BaseModel)


class RateLimiter:
    """Sliding-window limiter: at most `max_requests` per `window` seconds."""

    def __init__(self, max_requests: int = 10, window: float = 60.0):
        self.max_requests = max(1, max_requests)
        self.window = window
        self._stamps: deque[float] = deque()
        self._lock = threading.Lock()

    def acquire(self, cancelled: Optional[threading.Event] = None) -> bool:
        """Block until a slot frees up. Returns False if cancelled while waiting."""
        while True:
            with self._lock:
                now = time.monotonic()
                while self._stamps and now - self._stamps[0] >= self.window:
                    self._stamps.popleft()
                if len(self._stamps) < self.max_requests:
                    self._stamps.append(now)
                    return True
                wait = self.window - (now - self._stamps[0])
            log.debug("rate-limit wait=%.2fs", wait)
            if cancelled is not None:
                if cancelled.wait(wait):
                    return False
            else:
                time.sleep(wait)


def _request(source: str, method: str, url: str, *, timeout: float, **kwargs) -> requests.Response:
    headers = {**UA, **(kwargs.pop("headers", None) or {})}
    try:
        resp = requests.request(method, url, timeout=timeout, headers=headers, **kwargs)
        resp.raise_for_status()
    except requests.HTTPError as exc:
        status = exc.response.status_code if exc.response is not None else "?"
        raise SourceFetchError(source, f"HTTP {status} from {url}") from exc
    except requests.RequestException as exc:
        raise SourceFetchError(source, f"request to {url} failed: {exc}") from exc
    return resp


def get_json(source: str, url: str, *, params: Optional[dict] = None,
             headers: Optional[dict] = None, timeout: float = 20) -> Any:
    resp = _request(source, "GET", url, params=params, headers=headers, timeout=timeout)
    try:
        return resp.json()
    except ValueError as exc:
        raise SourceFetchError(source, f"invalid JSON from {url}") from exc


def post_json(source: str, url: str, *, body: dict,
              headers: Optional[dict] = None, timeout: float = 20) -> Any:
    resp = _request(source, "POST", url, json=body, headers=headers, timeout=timeout)
    try:
        return resp.json()
    except ValueError as exc:
        raise SourceFetchError(source, f"invalid JSON from {url}") from exc


def get_text(source: str, url: str, *, headers: Optional[dict] = None, timeout: float = 20) -> str:
    return _request(source, "GET", url, headers=headers, timeout=timeout).text


def parse_items(source: str, items: Iterable[Any], model: Type[M], ctx: Any = None) -> list[M]:
    """Validate payload items into `model`, skipping ones that are not objects.

    Skipped items are added to `ctx.dropped` when a FetchContext is given.
    """
    out: list[M] = []
    skipped = 0
    for item in items:
        if not isinstance(item, dict):
            skipped += 1
            continue
        try:
            out.append(model.model_validate(item))
        except ValidationError as exc:
            skipped += 1
            log.debug("raw-skip source=%s error=%s", source, exc.errors()[:1])
    if skipped:
        if ctx is not None:
            ctx.dropped += skipped
        log.warning("raw-skip source=%s skipped=%s kept=%s", source, skipped, len(out))
    return out
