"""Exception hierarchy for the aggregation pipeline."""

from __future__ import annotations


class AggregatorError(Exception):
    """Base exception for all pipeline errors."""


class SourceFetchError(AggregatorError):
    """Raised by a connector when its source cannot be fetched or parsed.

    Scoped to one source; the run records it and moves on.
    """

    def __init__(self, source: str, message: str):
        super().__init__(f"{source}: {message}")
        self.source = source
        self.message = message


class NormalizationError(AggregatorError):
    """Raised when a single raw listing cannot be mapped to a JobListing."""


class RunAlreadyInProgress(AggregatorError):
    """Raised when a run or cleanup is triggered while one is in flight."""


class StoreError(AggregatorError):
    """Raised when the job store fails to read or write a record."""


class ConfigurationError(AggregatorError):
    """Raised when settings are invalid or a required key is missing."""
