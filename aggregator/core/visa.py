"""Heuristic visa-sponsorship classifier.

The classifier is a pure function of its input text and a signal table:

  - positive signals map a phrase to one or more categories (h1b, opt,
    stem_opt) and carry a specificity (``exact`` phrase or generic
    ``keyword``); any match sets the category flag;
  - negative signals ("no sponsorship", "us citizens only", ...) suppress all
    three flags and zero the confidence, whatever else matched;
  - known sponsor companies add a weak h1b signal from the company name.

Confidence is ``1 - prod(1 - w)`` over the distinct matched positive signals,
so it never drops when a signal is added and an exact phrase outweighs a
generic keyword. The table can be replaced from a YAML file without touching
this module (see `load_signal_table`).
"""
from __future__ import annotations

from dataclasses import dataclass, field
from functools import lru_cache
import logging
from pathlib import Path
import re
from typing import Iterable, Optional, Union

import yaml
from pydantic import BaseModel

from aggregator.core.listing import JobListing, VisaSponsorship
from aggregator.errors import ConfigurationError

log = logging.getLogger(__name__)

CATEGORIES = ("h1b", "opt", "stem_opt")
DEFAULT_WEIGHTS = {"exact": 0.45, "keyword": 0.2, "company": 0.15}


@dataclass(frozen=True)
class PositiveSignal:
    phrase: str
    categories: tuple[str, ...]
    specificity: str = "exact"


@dataclass(frozen=True)
class SignalTable:
    positive: tuple[PositiveSignal, ...]
    negative: tuple[str, ...]
    known_sponsors: tuple[str, ...] = ()
    weights: dict = field(default_factory=lambda: dict(DEFAULT_WEIGHTS))


def _p(phrase: str, *categories: str, specificity: str = "exact") -> PositiveSignal:
    return PositiveSignal(phrase=phrase, categories=tuple(categories), specificity=specificity)


DEFAULT_TABLE = SignalTable(
    positive=(
        _p("h1b sponsorship", "h1b"),
        _p("h-1b sponsorship", "h1b"),
        _p("h1b visa", "h1b"),
        _p("h-1b visa", "h1b"),
        _p("h1b transfer", "h1b"),
        _p("sponsor h1b", "h1b"),
        _p("sponsor h-1b", "h1b"),
        _p("will sponsor", "h1b"),
        _p("visa sponsorship", "h1b"),
        _p("sponsorship available", "h1b"),
        _p("sponsor visa", "h1b"),
        _p("sponsor work visa", "h1b"),
        _p("immigration sponsorship", "h1b"),
        _p("green card sponsorship", "h1b"),
        _p("cap-exempt", "h1b"),
        _p("stem opt", "opt", "stem_opt"),
        _p("stem extension", "stem_opt"),
        _p("stem opt extension", "stem_opt"),
        _p("f-1 opt", "opt"),
        _p("f1 opt", "opt"),
        _p("f-1 visa", "opt"),
        _p("f1 visa", "opt"),
        _p("optional practical training", "opt"),
        _p("curricular practical training", "opt"),
        _p("opt eligible", "opt"),
        _p("accept opt", "opt"),
        _p("opt candidates", "opt"),
        _p("opt students", "opt"),
        _p("opt/cpt", "opt"),
        _p("international students welcome", "opt"),
        _p("h1b", "h1b", specificity="keyword"),
        _p("h-1b", "h1b", specificity="keyword"),
        _p("sponsorship", "h1b", specificity="keyword"),
        _p("opt", "opt", specificity="keyword"),
        _p("cpt", "opt", specificity="keyword"),
        _p("international students", "opt", specificity="keyword"),
        _p("international candidates", "h1b", specificity="keyword"),
    ),
    negative=(
        "no sponsorship",
        "no visa sponsorship",
        "sponsorship is not available",
        "sponsorship not available",
        "not eligible for sponsorship",
        "unable to sponsor",
        "not able to sponsor",
        "cannot sponsor",
        "can not sponsor",
        "will not sponsor",
        "won't sponsor",
        "do not sponsor",
        "does not sponsor",
        "without sponsorship",
        "without visa sponsorship",
        "without the need for sponsorship",
        "without requiring sponsorship",
        "us citizens only",
        "us citizen only",
        "u.s. citizens only",
        "u.s. citizen only",
        "must be a us citizen",
        "must be a u.s. citizen",
        "citizenship required",
        "security clearance required",
        "usc/gc only",
        "usc or gc only",
        "green card holders only",
        "green card holder only",
        "no h1b",
        "no h-1b",
        "no opt",
        "no cpt",
    ),
    known_sponsors=(
        "amazon", "google", "microsoft", "meta", "facebook", "apple", "netflix",
        "tesla", "nvidia", "adobe", "salesforce", "oracle", "ibm", "intel",
        "cisco", "qualcomm", "broadcom", "vmware", "servicenow", "workday",
        "deloitte", "accenture", "pwc", "kpmg", "cognizant", "infosys",
        "tata consultancy services", "wipro", "hcl", "tech mahindra", "capgemini",
        "jpmorgan", "goldman sachs", "morgan stanley", "bank of america",
        "wells fargo", "citigroup", "capital one", "uber", "lyft", "airbnb",
        "stripe", "paypal", "spotify", "pinterest", "reddit", "dropbox",
        "atlassian", "twilio", "docusign", "okta", "cloudflare", "datadog",
        "snowflake", "databricks", "mongodb", "confluent", "hashicorp",
        "red hat", "dell", "samsung", "bosch", "siemens", "honeywell",
        "lockheed martin", "boeing", "raytheon", "northrop grumman",
        "pfizer", "merck", "abbvie", "eli lilly", "amgen", "gilead",
        "walmart", "fedex", "verizon", "t-mobile",
    ),
)


class ClassificationResult(BaseModel):
    h1b: bool = False
    opt: bool = False
    stem_opt: bool = False
    confidence: float = 0.0
    category_confidence: dict[str, float] = {}
    signals: list[str] = []
    negative_signals: list[str] = []

    def sponsorship(self) -> VisaSponsorship:
        return VisaSponsorship(h1b=self.h1b, opt=self.opt, stem_opt=self.stem_opt)


def _phrase_pattern(phrase: str) -> re.Pattern:
    parts = [re.escape(p) for p in phrase.lower().split()]
    tail = r"(?![a-z0-9])"
    if parts and parts[-1] == "opt":
        # "opt-out", "opt in" are consent boilerplate
        tail += r"(?![- ]?(?:out|in)(?![a-z0-9]))"
    return re.compile(r"(?<![a-z0-9])" + r"\s+".join(parts) + tail)


def _prepare(text: str) -> str:
    text = (text or "").lower().replace("’", "'").replace("‐", "-").replace("‑", "-")
    return " ".join(text.split())


def _combine(weights: Iterable[float]) -> float:
    remaining = 1.0
    for w in weights:
        remaining *= 1.0 - min(max(w, 0.0), 1.0)
    return round(min(max(1.0 - remaining, 0.0), 1.0), 4)


class VisaClassifier:
    """Compiled form of a SignalTable; `detect` is pure and deterministic."""

    def __init__(self, table: SignalTable | None = None):
        self.table = table or DEFAULT_TABLE
        self._weights = {**DEFAULT_WEIGHTS, **(self.table.weights or {})}
        self._positive = [(s, _phrase_pattern(s.phrase)) for s in self.table.positive]
        self._negative = [(n, _phrase_pattern(n)) for n in self.table.negative]
        self._sponsors = [(c, _phrase_pattern(c)) for c in self.table.known_sponsors]

    def detect(self, title: str, description: str, company: str) -> ClassificationResult:
        text = _prepare(f"{title or ''} {description or ''} {company or ''}")

        negatives = [phrase for phrase, pattern in self._negative if pattern.search(text)]
        if negatives:
            log.debug("visa negative signals=%s title=%s", negatives, title)
            return ClassificationResult(
                category_confidence={c: 0.0 for c in CATEGORIES},
                negative_signals=negatives,
            )

        matched: list[tuple[str, tuple[str, ...], float]] = []
        for signal, pattern in self._positive:
            if pattern.search(text):
                weight = self._weights.get(signal.specificity, self._weights["keyword"])
                matched.append((signal.phrase, signal.categories, weight))

        company_text = _prepare(company)
        if company_text:
            for name, pattern in self._sponsors:
                if pattern.search(company_text):
                    matched.append((f"known_sponsor:{name}", ("h1b",), self._weights["company"]))
                    break

        per_category = {
            c: _combine(w for _, cats, w in matched if c in cats) for c in CATEGORIES
        }
        flags = {c: any(c in cats for _, cats, _ in matched) for c in CATEGORIES}
        return ClassificationResult(
            h1b=flags["h1b"],
            opt=flags["opt"],
            stem_opt=flags["stem_opt"],
            confidence=_combine(w for _, _, w in matched),
            category_confidence=per_category,
            signals=[phrase for phrase, _, _ in matched],
        )

    def classify_many(self, jobs: Iterable[dict]) -> list[ClassificationResult]:
        results = [
            self.detect(j.get("title", ""), j.get("description", ""), j.get("company", ""))
            for j in jobs
        ]
        sponsoring = sum(1 for r in results if r.h1b or r.opt or r.stem_opt)
        log.info("visa batch analyzed=%s sponsoring=%s", len(results), sponsoring)
        return results

    def apply(self, job: JobListing) -> JobListing:
        """Return a copy of `job` carrying this classifier's verdict."""
        result = self.detect(job.title, job.description, job.company)
        return job.model_copy(
            update={"visa_sponsorship": result.sponsorship(), "visa_confidence": result.confidence}
        )


def load_signal_table(path: Union[str, Path]) -> SignalTable:
    """Load a signal table from YAML.

    Expected shape::

        weights: {exact: 0.45, keyword: 0.2, company: 0.15}
        positive:
          - {phrase: "h1b sponsorship", categories: [h1b], specificity: exact}
        negative: ["no sponsorship", ...]
        known_sponsors: [google, ...]
    """
    path = Path(path)
    with path.open(encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"signal table {path} must be a mapping")

    weights = {**DEFAULT_WEIGHTS, **(data.get("weights") or {})}
    positive: list[PositiveSignal] = []
    for entry in data.get("positive") or []:
        phrase = str(entry.get("phrase", "")).strip() if isinstance(entry, dict) else ""
        if not phrase:
            raise ConfigurationError(f"signal table {path}: positive entry without phrase")
        categories = tuple(entry.get("categories") or ())
        unknown = [c for c in categories if c not in CATEGORIES]
        if not categories or unknown:
            raise ConfigurationError(f"signal table {path}: bad categories for {phrase!r}")
        specificity = entry.get("specificity", "exact")
        if specificity not in weights:
            raise ConfigurationError(f"signal table {path}: unknown specificity {specificity!r}")
        positive.append(PositiveSignal(phrase=phrase, categories=categories, specificity=specificity))

    return SignalTable(
        positive=tuple(positive),
        negative=tuple(str(n).strip() for n in data.get("negative") or [] if str(n).strip()),
        known_sponsors=tuple(str(c).strip() for c in data.get("known_sponsors") or [] if str(c).strip()),
        weights=weights,
    )


@lru_cache(maxsize=4)
def get_classifier(table_path: Optional[str] = None) -> VisaClassifier:
    if table_path:
        return VisaClassifier(load_signal_table(table_path))
    return VisaClassifier(DEFAULT_TABLE)


def detect(title: str, description: str, company: str) -> ClassificationResult:
    return get_classifier().detect(title, description, company)
