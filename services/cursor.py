"""Opaque page state tokens.

A token is URL-safe base64 (unpadded) over::

    version (1 byte) | JSON body | HMAC-SHA256(secret, version | body)[:16]

The body names the instrument kind and partition it was issued for, so a
token echoed against any other stream is rejected instead of resuming at an
unrelated position. Unknown versions fail to decode like any other bad token.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from datastore.telemetry_store import ScanPosition
from models.readings import MeasurementKind, PartitionKey
from services.errors import InvalidCursor

CURSOR_VERSION = 1
_SIGNATURE_BYTES = 16
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _to_micros(value: datetime) -> int:
    return (value - _EPOCH) // timedelta(microseconds=1)


def _from_micros(value: int) -> datetime:
    return _EPOCH + timedelta(microseconds=value)


class CursorCodec:

    def __init__(self, secret: Optional[bytes] = None) -> None:
        self._secret = secret or secrets.token_bytes(32)

    def encode(
        self,
        kind: MeasurementKind,
        partition: PartitionKey,
        position: ScanPosition,
    ) -> str:
        body = json.dumps(
            {
                "k": kind.value,
                "s": partition.spacecraft_name,
                "j": str(partition.journey_id),
                "t": _to_micros(position.timestamp),
                "n": position.skip,
            },
            separators=(",", ":"),
            sort_keys=True,
        ).encode("utf-8")
        signed = bytes([CURSOR_VERSION]) + body
        token = signed + self._sign(signed)
        return base64.urlsafe_b64encode(token).rstrip(b"=").decode("ascii")

    def decode(
        self,
        token: str,
        kind: MeasurementKind,
        partition: PartitionKey,
    ) -> ScanPosition:
        """Return the resume position, or raise ``InvalidCursor``."""
        try:
            padded = token + "=" * (-len(token) % 4)
            raw = base64.urlsafe_b64decode(padded.encode("ascii"))
        except (binascii.Error, UnicodeEncodeError, ValueError) as exc:
            raise InvalidCursor("Page state is not a valid token.") from exc

        if len(raw) <= 1 + _SIGNATURE_BYTES:
            raise InvalidCursor("Page state is truncated.")
        if raw[0] != CURSOR_VERSION:
            raise InvalidCursor(f"Page state version {raw[0]} is not supported.")

        signed, signature = raw[:-_SIGNATURE_BYTES], raw[-_SIGNATURE_BYTES:]
        if not hmac.compare_digest(signature, self._sign(signed)):
            raise InvalidCursor("Page state failed its integrity check.")

        try:
            body = json.loads(signed[1:].decode("utf-8"))
            issued_kind = body["k"]
            issued_name = body["s"]
            issued_journey = body["j"]
            timestamp = _from_micros(int(body["t"]))
            skip = int(body["n"])
        except (UnicodeDecodeError, json.JSONDecodeError, KeyError, TypeError, ValueError, OverflowError) as exc:
            raise InvalidCursor("Page state body is malformed.") from exc

        if (
            issued_kind != kind.value
            or issued_name != partition.spacecraft_name
            or issued_journey != str(partition.journey_id)
        ):
            raise InvalidCursor(f"Page state was issued for a different stream than {kind.value} of {partition}.")
        if skip < 1:
            raise InvalidCursor("Page state body is malformed.")

        return ScanPosition(timestamp=timestamp, skip=skip)

    def _sign(self, payload: bytes) -> bytes:
        return hmac.new(self._secret, payload, hashlib.sha256).digest()[:_SIGNATURE_BYTES]
