"""Query and ingest orchestration for instrument readings."""

from __future__ import annotations

import contextvars
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from functools import lru_cache
from typing import Callable, NoReturn, Optional, Sequence, TypeVar, Union
from uuid import UUID

from datastore.memory_store import build_default_store
from datastore.telemetry_store import ScanPosition, ScanResult, StoreConnection, TelemetryStore
from models.readings import MeasurementKind, PagedResult, PartitionKey, Reading
from services.cursor import CursorCodec
from services.errors import InvalidArgument, InvalidReading, StoreUnavailable
from services.validation import RawReading, build_reading, parse_journey_id
from settings import get_settings

logger = logging.getLogger(__name__)

R = TypeVar("R")


class TelemetryService:
    """Stateless front for paging through and appending instrument readings.

    Pagination state lives entirely in the opaque tokens handed back to the
    caller, so any service instance can serve any page. Reads are not
    guaranteed to observe an ingest that is still in flight.
    """

    def __init__(
        self,
        store: TelemetryStore,
        codec: CursorCodec,
        default_page_size: int = 10,
        max_page_size: int = 1000,
        workers: int = 4,
        store_timeout: float = 5.0,
    ) -> None:
        self.store = store
        self.codec = codec
        self.default_page_size = default_page_size
        self.max_page_size = max_page_size
        self.store_timeout = store_timeout
        self.executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="telemetry-store")

    def query(
        self,
        kind: MeasurementKind,
        spacecraft_name: str,
        journey_id: Union[str, UUID],
        page_size: Optional[int] = None,
        page_state: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> PagedResult[Reading]:
        """Fetch one page of ``kind`` readings for a journey, oldest first."""
        partition = self.partition_for(spacecraft_name, journey_id)
        limit = self._resolve_page_size(page_size)
        after = self.codec.decode(page_state, kind, partition) if page_state else None

        result: ScanResult = self._call_store(
            lambda conn: conn.scan(kind, partition, after, limit),
            timeout,
        )
        items = result.readings

        next_cursor = None
        if result.has_more and items:
            next_cursor = self.codec.encode(kind, partition, self._resume_position(items, after))

        logger.debug(
            "Fetched telemetry page",
            extra={
                "kind": kind.value,
                "spacecraft_name": partition.spacecraft_name,
                "journey_id": str(partition.journey_id),
                "page_size": limit,
                "item_count": len(items),
                "has_more": next_cursor is not None,
            },
        )
        return PagedResult(items=items, next_cursor=next_cursor)

    def ingest(
        self,
        kind: MeasurementKind,
        readings: Optional[Sequence[RawReading]],
        partition: Optional[PartitionKey] = None,
        timeout: Optional[float] = None,
    ) -> int:
        """Validate and append a batch; return the number of readings written.

        Any invalid entry rejects the whole batch before the store is
        contacted. When ``partition`` is given every reading must belong to it.
        """
        if not readings:
            return 0

        batch: list[Reading] = []
        for index, raw in enumerate(readings):
            try:
                reading = build_reading(kind, raw)
            except ValueError as exc:
                self._reject(kind, index, str(exc))
            if partition is not None and reading.partition != partition:
                self._reject(kind, index, f"reading belongs to {reading.partition}, not {partition}")
            batch.append(reading)

        start_time = time.perf_counter()
        self._call_store(lambda conn: conn.batch_append(batch), timeout)
        logger.info(
            "Ingested telemetry batch",
            extra={
                "kind": kind.value,
                "item_count": len(batch),
                "elapsed_ms": int((time.perf_counter() - start_time) * 1000),
            },
        )
        return len(batch)

    def shutdown(self) -> None:
        """Release worker threads during application shutdown."""
        self.executor.shutdown(wait=False, cancel_futures=True)

    def _call_store(self, operation: Callable[[StoreConnection], R], timeout: Optional[float]) -> R:
        def run() -> R:
            with self.store.connection() as conn:
                return operation(conn)

        deadline = self.store_timeout if timeout is None else timeout
        # Store workers log under the caller's request context.
        future = self.executor.submit(contextvars.copy_context().run, run)
        try:
            return future.result(timeout=deadline)
        except FutureTimeoutError as exc:
            future.cancel()
            logger.error("Telemetry store call timed out", extra={"reason": f"after {deadline}s"})
            raise StoreUnavailable(f"Telemetry store did not respond within {deadline} seconds.") from exc
        except StoreUnavailable as exc:
            logger.error("Telemetry store unavailable", extra={"reason": str(exc)})
            raise

    def partition_for(self, spacecraft_name: str, journey_id: Union[str, UUID]) -> PartitionKey:
        """Build a partition key from caller input, raising ``InvalidArgument``."""
        if not spacecraft_name or not spacecraft_name.strip():
            raise InvalidArgument("Spacecraft name must not be empty.")
        try:
            parsed = parse_journey_id(journey_id)
        except ValueError as exc:
            raise InvalidArgument(str(exc)) from exc
        return PartitionKey(spacecraft_name=spacecraft_name, journey_id=parsed)

    def _resolve_page_size(self, page_size: Optional[int]) -> int:
        if page_size is None:
            return self.default_page_size
        if page_size <= 0:
            raise InvalidArgument(f"Page size must be positive, got {page_size}.")
        return min(page_size, self.max_page_size)

    @staticmethod
    def _resume_position(items: Sequence[Reading], after: Optional[ScanPosition]) -> ScanPosition:
        last_timestamp = items[-1].timestamp
        skip = 0
        for reading in reversed(items):
            if reading.timestamp != last_timestamp:
                break
            skip += 1
        # Page made only of rows at the previous resume timestamp.
        if skip == len(items) and after is not None and after.timestamp == last_timestamp:
            skip += after.skip
        return ScanPosition(timestamp=last_timestamp, skip=skip)

    @staticmethod
    def _reject(kind: MeasurementKind, index: int, reason: str) -> NoReturn:
        logger.warning(
            "Rejecting telemetry batch",
            extra={"kind": kind.value, "reading_index": index, "reason": reason},
        )
        raise InvalidReading(index, reason)


@lru_cache
def build_default_service(workers: Optional[int] = None) -> TelemetryService:
    """Factory that wires the service with the configured store."""
    settings = get_settings()
    secret = settings.cursor_secret.encode("utf-8") if settings.cursor_secret else None
    return TelemetryService(
        store=build_default_store(),
        codec=CursorCodec(secret),
        default_page_size=settings.default_page_size,
        max_page_size=settings.max_page_size,
        workers=workers or settings.service_workers,
        store_timeout=settings.store_timeout,
    )
