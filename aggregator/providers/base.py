from __future__ import annotations

from dataclasses import dataclass, field
import threading
from typing import Protocol, Sequence

from aggregator.core.listing import SourceKind
from aggregator.core.raw import RawListing


@dataclass
class FetchContext:
    """Per-source, per-run knobs handed to `Connector.fetch`.

    Connectors check `cancelled` between pages and stop early once it is set.
    `warnings` and `dropped` are reported back into the source's stats.
    """

    request_timeout: float = 20.0
    max_pages: int = 3
    page_size: int = 50
    keywords: str = "software engineer"
    location: str = "United States"
    cancelled: threading.Event = field(default_factory=threading.Event)
    warnings: list[str] = field(default_factory=list)
    dropped: int = 0


class Connector(Protocol):
    name: SourceKind

    def fetch(self, ctx: FetchContext) -> Sequence[RawListing]: ...
