from __future__ import annotations

import logging
from typing import Callable, Dict

from aggregator.core.listing import SourceKind
from aggregator.errors import ConfigurationError

from .base import Connector, FetchContext
from .remoteok import RemoteOKConnector
from .arbeitnow import ArbeitnowConnector
from .usajobs import USAJobsConnector
from .jooble import JoobleConnector
from .careerjet import CareerJetConnector
from .university import UniversityConnector

log = logging.getLogger(__name__)

# Connector factories keyed by source
REGISTRY: Dict[SourceKind, Callable] = {}


def register(source: SourceKind, factory: Callable) -> None:
    REGISTRY[source] = factory


def get(source: SourceKind) -> Callable:
    return REGISTRY[source]


register(SourceKind.REMOTEOK, RemoteOKConnector.from_settings)
register(SourceKind.ARBEITNOW, ArbeitnowConnector.from_settings)
register(SourceKind.USAJOBS, USAJobsConnector.from_settings)
register(SourceKind.JOOBLE, JoobleConnector.from_settings)
register(SourceKind.CAREERJET, CareerJetConnector.from_settings)
register(SourceKind.UNIVERSITY, UniversityConnector.from_settings)


def build_connectors(settings) -> tuple[list[Connector], dict[SourceKind, str]]:
    """Instantiate the enabled connectors.

    Returns the runnable connectors plus a {source: reason} map of sources
    disabled for missing credentials (ConfigurationError from the factory).
    """
    connectors: list[Connector] = []
    disabled: dict[SourceKind, str] = {}
    for source in settings.enabled_sources:
        factory = REGISTRY.get(source)
        if factory is None:
            continue
        try:
            connectors.append(factory(settings))
        except ConfigurationError as exc:
            disabled[source] = str(exc)
            log.warning("source-disabled source=%s reason=%s", source.value, exc)
    return connectors, disabled


__all__ = [
    "FetchContext",
    "Connector",
    "REGISTRY",
    "register",
    "get",
    "build_connectors",
    "RemoteOKConnector",
    "ArbeitnowConnector",
    "USAJobsConnector",
    "JoobleConnector",
    "CareerJetConnector",
    "UniversityConnector",
]
