from __future__ import annotations

import json
import logging
from bisect import bisect_left, bisect_right, insort_right
from contextlib import contextmanager
from datetime import datetime
from functools import lru_cache
from pathlib import Path
from threading import BoundedSemaphore, Lock
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple
from uuid import UUID

from datastore.telemetry_store import ScanPosition, ScanResult
from models.readings import Location, MeasurementKind, PartitionKey, Reading
from services.errors import StoreUnavailable
from settings import BATCH_VISIBILITY_MODES, get_settings

logger = logging.getLogger(__name__)

_PartitionId = Tuple[MeasurementKind, PartitionKey]


def _timestamp_key(reading: Reading) -> datetime:
    return reading.timestamp


class _MemoryConnection:
    """Connection handle bound to one :class:`InMemoryTelemetryStore`."""

    def __init__(self, store: InMemoryTelemetryStore) -> None:
        self._store = store

    def scan(
        self,
        kind: MeasurementKind,
        partition: PartitionKey,
        after: Optional[ScanPosition],
        limit: int,
    ) -> ScanResult:
        return self._store._scan(kind, partition, after, limit)

    def batch_append(self, readings: Sequence[Reading]) -> None:
        self._store._batch_append(readings)


class InMemoryTelemetryStore:
    """Ordered, partitioned reading store with an optional JSON snapshot.

    Each ``(kind, partition)`` stream is a list kept sorted by timestamp.
    Readings sharing a timestamp are all retained in insertion order.
    """

    def __init__(
        self,
        persistence_path: Optional[Path] = None,
        pool_size: int = 8,
        batch_visibility: str = "atomic",
        acquire_timeout: float = 1.0,
    ) -> None:
        if batch_visibility not in BATCH_VISIBILITY_MODES:
            raise ValueError(f"Unknown batch visibility mode {batch_visibility!r}.")
        self._partitions: Dict[_PartitionId, List[Reading]] = {}
        self.persistence_path = persistence_path
        self.pool_size = pool_size
        self.batch_visibility = batch_visibility
        self.acquire_timeout = acquire_timeout
        self._lock = Lock()
        self._pool = BoundedSemaphore(pool_size)
        if persistence_path:
            persistence_path.parent.mkdir(parents=True, exist_ok=True)
            self._load_from_disk()

    @contextmanager
    def connection(self) -> Iterator[_MemoryConnection]:
        if not self._pool.acquire(timeout=self.acquire_timeout):
            raise StoreUnavailable("No store connection available.")
        try:
            yield _MemoryConnection(self)
        finally:
            self._pool.release()

    def count(self, kind: MeasurementKind, partition: PartitionKey) -> int:
        with self._lock:
            return len(self._partitions.get((kind, partition), ()))

    def _scan(
        self,
        kind: MeasurementKind,
        partition: PartitionKey,
        after: Optional[ScanPosition],
        limit: int,
    ) -> ScanResult:
        with self._lock:
            rows = self._partitions.get((kind, partition))
            if not rows:
                return ScanResult(readings=(), has_more=False)

            start = 0
            if after is not None:
                first_equal = bisect_left(rows, after.timestamp, key=_timestamp_key)
                past_equal = bisect_right(rows, after.timestamp, key=_timestamp_key)
                start = min(first_equal + after.skip, past_equal)

            end = start + limit
            return ScanResult(readings=tuple(rows[start:end]), has_more=end < len(rows))

    def _batch_append(self, readings: Sequence[Reading]) -> None:
        if self.batch_visibility == "atomic":
            with self._lock:
                for reading in readings:
                    self._insert(reading)
                self._persist_or_rollback(readings)
            return

        for reading in readings:
            with self._lock:
                self._insert(reading)
        with self._lock:
            self._persist_or_rollback(readings)

    def _insert(self, reading: Reading) -> None:
        rows = self._partitions.setdefault((reading.kind, reading.partition), [])
        insort_right(rows, reading, key=_timestamp_key)

    def _remove(self, reading: Reading) -> None:
        partition_id = (reading.kind, reading.partition)
        rows = self._partitions.get(partition_id)
        if not rows:
            return
        try:
            rows.remove(reading)
        except ValueError:
            return
        if not rows:
            del self._partitions[partition_id]

    def _persist_or_rollback(self, readings: Sequence[Reading]) -> None:
        try:
            self._persist()
        except OSError as exc:
            for reading in readings:
                self._remove(reading)
            logger.error(
                "Failed to persist telemetry snapshot",
                extra={"reason": str(exc), "item_count": len(readings)},
            )
            raise StoreUnavailable("Telemetry store could not persist the batch.") from exc

    def _persist(self) -> None:
        if not self.persistence_path:
            return
        payload = [
            _reading_to_json(reading)
            for rows in self._partitions.values()
            for reading in rows
        ]
        staging = self.persistence_path.with_suffix(self.persistence_path.suffix + ".tmp")
        staging.write_text(json.dumps(payload, indent=2))
        staging.replace(self.persistence_path)

    def _load_from_disk(self) -> None:
        if not self.persistence_path or not self.persistence_path.exists():
            return

        try:
            raw = self.persistence_path.read_text() or "[]"
            data = json.loads(raw)
        except (OSError, json.JSONDecodeError):
            logger.warning(
                "Ignoring unreadable telemetry snapshot",
                extra={"reason": str(self.persistence_path)},
            )
            data = []

        if not isinstance(data, list):
            logger.warning(
                "Ignoring telemetry snapshot that is not a list of readings",
                extra={"reason": str(self.persistence_path)},
            )
            data = []

        for index, payload in enumerate(data):
            try:
                reading = _reading_from_json(payload)
            except (KeyError, TypeError, ValueError, AttributeError) as exc:
                logger.warning(
                    "Skipping malformed snapshot entry",
                    extra={"reading_index": index, "reason": repr(exc)},
                )
                continue
            self._insert(reading)


def _reading_to_json(reading: Reading) -> Dict[str, Any]:
    value: Any = list(reading.value) if isinstance(reading.value, Location) else reading.value
    return {
        "kind": reading.kind.value,
        "spacecraft_name": reading.spacecraft_name,
        "journey_id": str(reading.journey_id),
        "timestamp": reading.timestamp.isoformat(),
        "value": value,
    }


def _reading_from_json(payload: Dict[str, Any]) -> Reading:
    kind = MeasurementKind(payload["kind"])
    raw_value = payload["value"]
    value = Location(*raw_value) if kind is MeasurementKind.location else float(raw_value)
    return Reading(
        kind=kind,
        spacecraft_name=payload["spacecraft_name"],
        journey_id=UUID(payload["journey_id"]),
        timestamp=datetime.fromisoformat(payload["timestamp"]),
        value=value,
    )


@lru_cache
def build_default_store(path: Optional[str] = None) -> InMemoryTelemetryStore:
    settings = get_settings()
    store_path = settings.store_path if path is None else path
    persistence = Path(store_path) if store_path else None
    return InMemoryTelemetryStore(
        persistence_path=persistence,
        pool_size=settings.pool_size,
        batch_visibility=settings.batch_visibility,
    )
