from __future__ import annotations

import logging
import math
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Iterator, List
from uuid import UUID

import pytest

from datastore.memory_store import InMemoryTelemetryStore
from logging_config import RequestContextFilter, bind_request_id, reset_request_id
from models.readings import MeasurementKind, PartitionKey
from services.cursor import CursorCodec
from services.errors import InvalidArgument, InvalidCursor, InvalidReading, StoreUnavailable
from services.telemetry import TelemetryService

JOURNEY = "abb7c000-c310-11ac-8080-808080808080"
PARTITION = PartitionKey("gemini3", UUID(JOURNEY))
BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)
TEMPERATURE = MeasurementKind.temperature


def _payload(seconds: int, value: float = 21.5, name: str = "gemini3") -> dict:
    return {
        "spacecraft_name": name,
        "journey_id": JOURNEY,
        "timestamp": (BASE_TIME + timedelta(seconds=seconds)).isoformat(),
        "temperature": value,
    }


class CountingStore(InMemoryTelemetryStore):
    """Store that records how many connections were opened."""

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.connections = 0

    @contextmanager
    def connection(self):
        self.connections += 1
        with super().connection() as conn:
            yield conn


@pytest.fixture()
def store() -> CountingStore:
    return CountingStore()


@pytest.fixture()
def service(store: CountingStore) -> Iterator[TelemetryService]:
    svc = TelemetryService(store=store, codec=CursorCodec(b"test"), max_page_size=50, workers=2)
    yield svc
    svc.shutdown()


def _page_through(service: TelemetryService, page_size: int) -> List[List[float]]:
    pages: List[List[float]] = []
    state = None
    while True:
        result = service.query(TEMPERATURE, "gemini3", JOURNEY, page_size=page_size, page_state=state)
        pages.append([reading.value for reading in result.items])
        state = result.next_cursor
        if state is None:
            return pages


def test_single_reading_round_trip(service: TelemetryService) -> None:
    service.ingest(TEMPERATURE, [_payload(0)])

    result = service.query(TEMPERATURE, "gemini3", JOURNEY, page_size=10)

    assert len(result.items) == 1
    reading = result.items[0]
    assert reading.spacecraft_name == "gemini3"
    assert reading.journey_id == UUID(JOURNEY)
    assert reading.timestamp == BASE_TIME
    assert reading.value == 21.5
    assert result.next_cursor is None


def test_twenty_five_readings_page_as_ten_ten_five(service: TelemetryService) -> None:
    service.ingest(TEMPERATURE, [_payload(i, value=float(i)) for i in range(25)])

    pages = _page_through(service, page_size=10)

    assert [len(page) for page in pages] == [10, 10, 5]
    assert [value for page in pages for value in page] == [float(i) for i in range(25)]


@pytest.mark.parametrize("count", [0, 1, 9, 10, 11, 30])
@pytest.mark.parametrize("page_size", [1, 3, 10])
def test_pages_cover_partition_without_gaps_or_duplicates(
    service: TelemetryService, count: int, page_size: int
) -> None:
    # Inserted out of order; pages must come back sorted.
    service.ingest(TEMPERATURE, [_payload(i, value=float(i)) for i in reversed(range(count))])

    pages = _page_through(service, page_size=page_size)

    assert len(pages) == max(1, math.ceil(count / page_size))
    assert [value for page in pages for value in page] == [float(i) for i in range(count)]


def test_duplicate_timestamps_straddling_pages_are_not_skipped(service: TelemetryService) -> None:
    readings = [_payload(0, value=0.0)]
    readings += [_payload(1, value=float(v)) for v in range(1, 8)]
    readings += [_payload(2, value=8.0)]
    service.ingest(TEMPERATURE, readings)

    pages = _page_through(service, page_size=3)

    assert [value for page in pages for value in page] == [float(v) for v in range(9)]


def test_default_page_size_is_ten(service: TelemetryService) -> None:
    service.ingest(TEMPERATURE, [_payload(i) for i in range(12)])

    result = service.query(TEMPERATURE, "gemini3", JOURNEY)

    assert len(result.items) == 10
    assert result.next_cursor is not None


def test_page_size_is_clamped_to_maximum(service: TelemetryService) -> None:
    service.ingest(TEMPERATURE, [_payload(i) for i in range(60)])

    result = service.query(TEMPERATURE, "gemini3", JOURNEY, page_size=500)

    assert len(result.items) == 50


@pytest.mark.parametrize("page_size", [0, -1])
def test_non_positive_page_size_is_invalid(service: TelemetryService, store: CountingStore, page_size: int) -> None:
    with pytest.raises(InvalidArgument):
        service.query(TEMPERATURE, "gemini3", JOURNEY, page_size=page_size)
    assert store.connections == 0


def test_malformed_journey_id_is_invalid_argument(service: TelemetryService) -> None:
    with pytest.raises(InvalidArgument):
        service.query(TEMPERATURE, "gemini3", "not-a-uuid")


def test_empty_spacecraft_name_is_invalid_argument(service: TelemetryService) -> None:
    with pytest.raises(InvalidArgument):
        service.query(TEMPERATURE, " ", JOURNEY)


def test_cursor_from_other_partition_is_rejected(service: TelemetryService) -> None:
    other_journey = "00000000-0000-0000-0000-000000000001"
    service.ingest(TEMPERATURE, [_payload(i) for i in range(3)])
    first = service.query(TEMPERATURE, "gemini3", JOURNEY, page_size=1)
    assert first.next_cursor is not None

    with pytest.raises(InvalidCursor):
        service.query(TEMPERATURE, "gemini3", other_journey, page_state=first.next_cursor)
    with pytest.raises(InvalidCursor):
        service.query(MeasurementKind.pressure, "gemini3", JOURNEY, page_state=first.next_cursor)


def test_corrupt_cursor_is_rejected_before_store_access(service: TelemetryService, store: CountingStore) -> None:
    with pytest.raises(InvalidCursor):
        service.query(TEMPERATURE, "gemini3", JOURNEY, page_state="garbage")
    assert store.connections == 0


def test_cursor_survives_service_instances_with_shared_secret(store: CountingStore) -> None:
    first_service = TelemetryService(store=store, codec=CursorCodec(b"shared"), workers=1)
    second_service = TelemetryService(store=store, codec=CursorCodec(b"shared"), workers=1)
    try:
        first_service.ingest(TEMPERATURE, [_payload(i, value=float(i)) for i in range(4)])
        page = first_service.query(TEMPERATURE, "gemini3", JOURNEY, page_size=2)
        rest = second_service.query(TEMPERATURE, "gemini3", JOURNEY, page_size=2, page_state=page.next_cursor)
    finally:
        first_service.shutdown()
        second_service.shutdown()

    assert [r.value for r in rest.items] == [2.0, 3.0]
    assert rest.next_cursor is None


@pytest.mark.parametrize("readings", [None, []])
def test_empty_ingest_does_not_contact_store(service: TelemetryService, store: CountingStore, readings) -> None:
    assert service.ingest(TEMPERATURE, readings) == 0
    assert store.connections == 0


def test_one_invalid_reading_rejects_whole_batch(service: TelemetryService, store: CountingStore) -> None:
    batch = [_payload(i) for i in range(10)]
    batch.insert(4, _payload(99, value=float("nan")))

    with pytest.raises(InvalidReading) as excinfo:
        service.ingest(TEMPERATURE, batch)

    assert excinfo.value.index == 4
    assert "finite" in excinfo.value.reason
    assert "index 4" in str(excinfo.value)
    assert store.connections == 0
    assert store.count(TEMPERATURE, PARTITION) == 0


@pytest.mark.parametrize("timestamp", ["0001-01-01T00:00:00+01:00", "9999-12-31T23:59:59-01:00"])
def test_timestamp_beyond_utc_range_is_invalid_reading(
    service: TelemetryService, store: CountingStore, timestamp: str
) -> None:
    batch = [_payload(0), {**_payload(1), "timestamp": timestamp}]

    with pytest.raises(InvalidReading) as excinfo:
        service.ingest(TEMPERATURE, batch)

    assert excinfo.value.index == 1
    assert excinfo.value.reason == "invalid timestamp"
    assert store.count(TEMPERATURE, PARTITION) == 0


def test_ingest_rejects_reading_outside_request_partition(service: TelemetryService) -> None:
    batch = [_payload(0), _payload(1, name="apollo11")]

    with pytest.raises(InvalidReading) as excinfo:
        service.ingest(TEMPERATURE, batch, partition=PARTITION)

    assert excinfo.value.index == 1


def test_ingest_returns_acknowledged_count(service: TelemetryService, store: CountingStore) -> None:
    assert service.ingest(TEMPERATURE, [_payload(0), _payload(0)], partition=PARTITION) == 2
    assert store.count(TEMPERATURE, PARTITION) == 2


def test_store_calls_run_under_callers_request_context() -> None:
    seen: List[object] = []

    class TaggingStore(InMemoryTelemetryStore):
        @contextmanager
        def connection(self):
            record = logging.LogRecord("datastore", logging.INFO, __file__, 1, "scan", (), None)
            RequestContextFilter().filter(record)
            seen.append(record.request_id)
            with super().connection() as conn:
                yield conn

    svc = TelemetryService(store=TaggingStore(), codec=CursorCodec(b"test"), workers=1)
    token = bind_request_id("req-store")
    try:
        svc.ingest(TEMPERATURE, [_payload(0)])
        svc.query(TEMPERATURE, "gemini3", JOURNEY)
    finally:
        reset_request_id(token)
        svc.shutdown()

    assert seen == ["req-store", "req-store"]


def test_store_fault_is_surfaced_unchanged(store: CountingStore) -> None:
    class FailingStore(InMemoryTelemetryStore):
        def _batch_append(self, readings) -> None:
            raise StoreUnavailable("backend offline")

    service = TelemetryService(store=FailingStore(), codec=CursorCodec(b"x"), workers=1)
    try:
        with pytest.raises(StoreUnavailable, match="backend offline"):
            service.ingest(TEMPERATURE, [_payload(0)])
    finally:
        service.shutdown()


def test_slow_store_times_out_as_store_unavailable() -> None:
    release = threading.Event()

    class SlowStore(InMemoryTelemetryStore):
        def _scan(self, *args, **kwargs):
            release.wait(timeout=5)
            return super()._scan(*args, **kwargs)

    service = TelemetryService(store=SlowStore(), codec=CursorCodec(b"x"), workers=1, store_timeout=0.05)
    try:
        with pytest.raises(StoreUnavailable, match="did not respond"):
            service.query(TEMPERATURE, "gemini3", JOURNEY)
    finally:
        release.set()
        service.shutdown()


def test_rejected_batch_is_logged(service: TelemetryService, caplog) -> None:
    with caplog.at_level(logging.WARNING):
        with pytest.raises(InvalidReading):
            service.ingest(TEMPERATURE, [_payload(0), {"journey_id": JOURNEY}])

    records = [record for record in caplog.records if record.name == "services.telemetry"]
    assert records, "Expected a warning for the rejected batch."
    assert getattr(records[0], "reading_index", None) == 1
    assert getattr(records[0], "reason", None) == "missing spacecraftName"


def test_concurrent_queries_during_ingest_see_whole_batches(store: CountingStore) -> None:
    service = TelemetryService(store=store, codec=CursorCodec(b"x"), workers=4)
    observed: List[int] = []
    batches = 20

    def ingest() -> None:
        for batch in range(batches):
            service.ingest(TEMPERATURE, [_payload(batch * 5 + i) for i in range(5)])

    def query() -> None:
        for _ in range(batches):
            observed.append(len(service.query(TEMPERATURE, "gemini3", JOURNEY, page_size=50).items))

    try:
        writer = threading.Thread(target=ingest)
        reader = threading.Thread(target=query)
        writer.start()
        reader.start()
        writer.join()
        reader.join()
    finally:
        service.shutdown()

    # Atomic batch visibility: readers never observe part of a batch.
    assert all(count % 5 == 0 for count in observed)
    assert store.count(TEMPERATURE, PARTITION) == batches * 5
