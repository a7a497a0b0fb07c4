"""Domain models shared across services."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Generic, NamedTuple, Optional, Tuple, TypeVar, Union
from uuid import UUID


class MeasurementKind(str, Enum):
    """Instruments recorded during a journey."""

    temperature = "temperature"
    pressure = "pressure"
    speed = "speed"
    location = "location"

    @property
    def is_scalar(self) -> bool:
        return self is not MeasurementKind.location


class Location(NamedTuple):
    latitude: float
    longitude: float
    altitude: float


ReadingValue = Union[float, Location]


@dataclass(frozen=True, slots=True)
class PartitionKey:
    """One ordered stream of readings: a spacecraft on a given journey."""

    spacecraft_name: str
    journey_id: UUID

    def __str__(self) -> str:
        return f"{self.spacecraft_name}/{self.journey_id}"


@dataclass(frozen=True, slots=True)
class Reading:
    """A single instrument sample.

    ``kind`` selects the payload shape: a float for scalar instruments and a
    :class:`Location` for ``location``. Readings are addressed by their
    partition plus ``timestamp``; there is no surrogate identifier.
    """

    kind: MeasurementKind
    spacecraft_name: str
    journey_id: UUID
    timestamp: datetime
    value: ReadingValue

    @property
    def partition(self) -> PartitionKey:
        return PartitionKey(self.spacecraft_name, self.journey_id)


T = TypeVar("T")


@dataclass(frozen=True)
class PagedResult(Generic[T]):
    """A page of results plus the opaque token for the page after it.

    ``next_cursor`` is ``None`` once the scan has reached the end of the
    partition.
    """

    items: Tuple[T, ...]
    next_cursor: Optional[str] = None

    @property
    def has_more(self) -> bool:
        return self.next_cursor is not None
