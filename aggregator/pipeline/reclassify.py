from __future__ import annotations

from dataclasses import asdict, dataclass, field
import logging
from typing import Optional

from aggregator.core.date_parse import utcnow
from aggregator.core.visa import VisaClassifier
from aggregator.db.crud import JobStore

log = logging.getLogger(__name__)


@dataclass
class ReclassifyFilter:
    source: Optional[str] = None
    limit: int = 100
    active_only: bool = True
    only_unanalyzed: bool = False


@dataclass
class BatchReclassifyResult:
    analyzed: int = 0
    updated: int = 0
    results: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


def batch_reclassify(
    store: JobStore,
    classifier: VisaClassifier,
    flt: Optional[ReclassifyFilter] = None,
) -> BatchReclassifyResult:
    """Re-run the classifier over stored listings, writing back changed verdicts."""
    flt = flt or ReclassifyFilter()
    out = BatchReclassifyResult()
    now = utcnow()
    for row in store.iter_for_reclassify(
        source=flt.source,
        active_only=flt.active_only,
        only_unanalyzed=flt.only_unanalyzed,
        limit=flt.limit,
    ):
        result = classifier.detect(row["title"], row["description"], row["company"])
        out.analyzed += 1
        changed = (
            (result.h1b, result.opt, result.stem_opt) != (row["h1b"], row["opt"], row["stem_opt"])
            or abs(result.confidence - (row["confidence"] or 0.0)) > 1e-9
        )
        if changed:
            store.set_visa(
                row["id"],
                h1b=result.h1b,
                opt=result.opt,
                stem_opt=result.stem_opt,
                confidence=result.confidence,
                now=now,
            )
            out.updated += 1
        out.results.append(
            {
                "id": row["id"],
                "title": row["title"],
                "company": row["company"],
                "h1b": result.h1b,
                "opt": result.opt,
                "stem_opt": result.stem_opt,
                "confidence": result.confidence,
                "changed": changed,
            }
        )
    log.info("reclassify analyzed=%s updated=%s source=%s", out.analyzed, out.updated, flt.source)
    return out


__all__ = ["ReclassifyFilter", "BatchReclassifyResult", "batch_reclassify"]
