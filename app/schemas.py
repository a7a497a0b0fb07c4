"""Pydantic schemas for the HTTP API layer."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Generic, List, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from models.readings import Location, MeasurementKind, PagedResult, Reading


def _format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


class ReadingJSON(BaseModel):
    """Fields shared by every instrument reading on the wire.

    Fields are optional and loosely typed so that an incomplete or mistyped
    entry is reported by the ingest validation with its position in the batch.
    """

    model_config = ConfigDict(populate_by_name=True)

    spacecraft_name: Any = Field(
        default=None, alias="spacecraftName", examples=["gemini3"]
    )
    journey_id: Any = Field(
        default=None,
        alias="journeyId",
        examples=["abb7c000-c310-11ac-8080-808080808080"],
    )
    timestamp: Any = Field(
        default=None,
        description="ISO-8601 instant; a trailing Z or an explicit offset is accepted.",
        examples=["2024-01-01T00:00:00Z"],
    )

    @classmethod
    def from_reading(cls, reading: Reading) -> "ReadingJSON":
        return cls(
            spacecraft_name=reading.spacecraft_name,
            journey_id=str(reading.journey_id),
            timestamp=_format_timestamp(reading.timestamp),
            **cls.value_fields(reading),
        )

    @staticmethod
    def value_fields(reading: Reading) -> Dict[str, float]:
        return {reading.kind.value: float(reading.value)}  # type: ignore[arg-type]


class TemperatureReadingJSON(ReadingJSON):
    temperature: Any = Field(default=None, description="Degrees Celsius.")


class PressureReadingJSON(ReadingJSON):
    pressure: Any = None


class SpeedReadingJSON(ReadingJSON):
    speed: Any = None


class LocationReadingJSON(ReadingJSON):
    latitude: Any = Field(default=None, description="Degrees, -90 to 90.")
    longitude: Any = Field(default=None, description="Degrees, -180 to 180.")
    altitude: Any = None

    @staticmethod
    def value_fields(reading: Reading) -> Dict[str, float]:
        if not isinstance(reading.value, Location):
            raise TypeError(f"expected a location reading, got {reading.kind.value}")
        return reading.value._asdict()


SCHEMAS_BY_KIND: Dict[MeasurementKind, Type[ReadingJSON]] = {
    MeasurementKind.temperature: TemperatureReadingJSON,
    MeasurementKind.pressure: PressureReadingJSON,
    MeasurementKind.speed: SpeedReadingJSON,
    MeasurementKind.location: LocationReadingJSON,
}

ReadingT = TypeVar("ReadingT", bound=ReadingJSON)


class PagedReadings(BaseModel, Generic[ReadingT]):
    """One page of readings and the token that fetches the next one."""

    items: List[ReadingT] = Field(default_factory=list)
    pagestate: Optional[str] = Field(
        default=None,
        description="Opaque token; echo it back to fetch the next page. Absent on the last page.",
    )

    @classmethod
    def from_result(
        cls, schema: Type[ReadingJSON], result: PagedResult[Reading]
    ) -> "PagedReadings":
        return cls(
            items=[schema.from_reading(reading) for reading in result.items],
            pagestate=result.next_cursor,
        )
