"""Error taxonomy for the query and ingest paths.

Client errors derive from :class:`ValueError` and are never retried server
side. :class:`StoreUnavailable` marks a transient backend fault that callers
may retry with backoff.
"""

from __future__ import annotations


class TelemetryError(Exception):
    """Base class for telemetry service failures."""


class InvalidArgument(TelemetryError, ValueError):
    """A query parameter (page size, journey id, spacecraft name) is invalid."""


class InvalidCursor(TelemetryError, ValueError):
    """A page state token is corrupt, stale or was issued for another stream."""


class InvalidReading(TelemetryError, ValueError):
    """A reading in an ingest batch failed validation."""

    def __init__(self, index: int, reason: str) -> None:
        super().__init__(f"Reading at index {index} is invalid: {reason}")
        self.index = index
        self.reason = reason


class StoreUnavailable(TelemetryError, RuntimeError):
    """The backing store failed or timed out; the call may be retried."""
