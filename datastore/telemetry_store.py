"""Capability contract the service layer requires from ordered storage."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import ContextManager, Optional, Protocol, Sequence, Tuple

from models.readings import MeasurementKind, PartitionKey, Reading


@dataclass(frozen=True, slots=True)
class ScanPosition:
    """Resume point inside a partition.

    A scan resumes after every row older than ``timestamp`` and after the
    first ``skip`` rows stamped exactly ``timestamp``. Rows sharing a
    timestamp keep their insertion order, so this is stable across calls.
    """

    timestamp: datetime
    skip: int = 1


@dataclass(frozen=True, slots=True)
class ScanResult:
    readings: Tuple[Reading, ...]
    has_more: bool


class StoreConnection(Protocol):

    def scan(
        self,
        kind: MeasurementKind,
        partition: PartitionKey,
        after: Optional[ScanPosition],
        limit: int,
    ) -> ScanResult:
        """Return at most ``limit`` rows ordered by timestamp, strictly after ``after``."""
        ...

    def batch_append(self, readings: Sequence[Reading]) -> None:
        """Append readings; raise ``StoreUnavailable`` on a backend fault."""
        ...


class TelemetryStore(Protocol):

    def connection(self) -> ContextManager[StoreConnection]:
        """Acquire a pooled connection for the duration of one call."""
        ...
