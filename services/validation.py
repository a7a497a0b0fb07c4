"""Validation rules applied to readings before they reach the store."""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Mapping, Union
from uuid import UUID

from models.readings import Location, MeasurementKind, Reading

ABSOLUTE_ZERO_CELSIUS = -273.15

# Lowest physically plausible value per scalar instrument.
_SCALAR_FLOORS = {
    MeasurementKind.temperature: ABSOLUTE_ZERO_CELSIUS,
    MeasurementKind.pressure: 0.0,
    MeasurementKind.speed: 0.0,
}

_LOCATION_BOUNDS = {
    "latitude": (-90.0, 90.0),
    "longitude": (-180.0, 180.0),
}

RawReading = Union[Reading, Mapping[str, Any]]


def parse_timestamp(value: Union[str, datetime]) -> datetime:
    """Parse an ISO-8601 instant into an aware UTC datetime."""
    if isinstance(value, datetime):
        parsed = value
    else:
        candidate = value.strip()
        if not candidate:
            raise ValueError("Timestamp is empty.")

        if candidate.endswith("Z"):
            candidate = candidate[:-1] + "+00:00"

        try:
            parsed = datetime.fromisoformat(candidate)
        except ValueError as exc:
            raise ValueError("Invalid timestamp format") from exc

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)

    try:
        return parsed.astimezone(timezone.utc)
    except OverflowError as exc:
        raise ValueError("Timestamp is outside the representable UTC range") from exc


def parse_journey_id(value: Union[str, UUID]) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value).strip())
    except ValueError as exc:
        raise ValueError(f"Journey id {value!r} is not a valid UUID.") from exc


def _finite(name: str, raw: Any) -> float:
    if raw is None:
        raise ValueError(f"missing {name}")
    if isinstance(raw, bool):
        raise ValueError(f"{name} must be a number")
    try:
        value = float(raw)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{name} must be a number") from exc
    if not math.isfinite(value):
        raise ValueError(f"{name} must be a finite number")
    return value


def _scalar_value(kind: MeasurementKind, raw: Any) -> float:
    value = _finite(kind.value, raw)
    floor = _SCALAR_FLOORS[kind]
    if value < floor:
        if kind is MeasurementKind.temperature:
            raise ValueError("temperature is below absolute zero")
        raise ValueError(f"{kind.value} must not be negative")
    return value


def _location_value(raw: Mapping[str, Any]) -> Location:
    coordinates = {}
    for name in ("latitude", "longitude", "altitude"):
        coordinates[name] = _finite(name, raw.get(name))
    for name, (low, high) in _LOCATION_BOUNDS.items():
        if not low <= coordinates[name] <= high:
            raise ValueError(f"{name} must be within [{low:g}, {high:g}]")
    return Location(**coordinates)


def _as_mapping(kind: MeasurementKind, reading: Reading) -> Mapping[str, Any]:
    if reading.kind is not kind:
        raise ValueError(f"expected a {kind.value} reading, got {reading.kind.value}")
    payload: dict[str, Any] = {
        "spacecraft_name": reading.spacecraft_name,
        "journey_id": reading.journey_id,
        "timestamp": reading.timestamp,
    }
    if isinstance(reading.value, Location):
        payload.update(reading.value._asdict())
    else:
        payload[kind.value] = reading.value
    return payload


def build_reading(kind: MeasurementKind, raw: RawReading) -> Reading:
    """Validate ``raw`` as a ``kind`` reading.

    ``raw`` is either a :class:`Reading` or a mapping keyed by
    ``spacecraft_name``, ``journey_id``, ``timestamp`` and the kind's payload
    fields. Raises ``ValueError`` with a short reason on the first problem.
    """
    payload = _as_mapping(kind, raw) if isinstance(raw, Reading) else raw

    name = payload.get("spacecraft_name")
    if not isinstance(name, str) or not name.strip():
        raise ValueError("missing spacecraftName")

    journey_raw = payload.get("journey_id")
    if journey_raw is None or journey_raw == "":
        raise ValueError("missing journeyId")
    try:
        journey_id = parse_journey_id(journey_raw)
    except ValueError as exc:
        raise ValueError("invalid journeyId") from exc

    timestamp_raw = payload.get("timestamp")
    if timestamp_raw is None or timestamp_raw == "":
        raise ValueError("missing timestamp")
    try:
        timestamp = parse_timestamp(timestamp_raw)
    except (TypeError, AttributeError, ValueError) as exc:
        raise ValueError("invalid timestamp") from exc

    if kind.is_scalar:
        value: Union[float, Location] = _scalar_value(kind, payload.get(kind.value))
    else:
        value = _location_value(payload)

    return Reading(
        kind=kind,
        spacecraft_name=name,
        journey_id=journey_id,
        timestamp=timestamp,
        value=value,
    )
