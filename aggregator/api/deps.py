from __future__ import annotations

from functools import lru_cache

from aggregator.config import Settings
from aggregator.core.visa import VisaClassifier, get_classifier
from aggregator.db.crud import JobStore
from aggregator.pipeline.coordinator import RunCoordinator


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()


@lru_cache(maxsize=1)
def get_store() -> JobStore:
    """FastAPI dependency returning the process-wide JobStore.

    Usage in route handlers:
        def handler(store: JobStore = Depends(get_store)):
            ...
    """
    return JobStore()


@lru_cache(maxsize=1)
def get_coordinator() -> RunCoordinator:
    return RunCoordinator.from_settings(get_settings(), store=get_store())


def get_visa_classifier() -> VisaClassifier:
    return get_classifier(get_settings().signal_table_path)


__all__ = ["get_settings", "get_store", "get_coordinator", "get_visa_classifier"]
