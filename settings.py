from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


_STORE_PATH_ENV = "TELEMETRY_STORE_PATH"
_BATCH_VISIBILITY_ENV = "TELEMETRY_BATCH_VISIBILITY"
_POOL_SIZE_ENV = "TELEMETRY_POOL_SIZE"
_DEFAULT_PAGE_SIZE_ENV = "TELEMETRY_DEFAULT_PAGE_SIZE"
_MAX_PAGE_SIZE_ENV = "TELEMETRY_MAX_PAGE_SIZE"
_CURSOR_SECRET_ENV = "TELEMETRY_CURSOR_SECRET"
_STORE_TIMEOUT_ENV = "TELEMETRY_STORE_TIMEOUT"
_WORKER_COUNT_ENV = "SERVICE_WORKER_COUNT"
_LOG_LEVEL_ENV = "LOG_LEVEL"

BATCH_VISIBILITY_MODES = ("atomic", "incremental")


@dataclass(frozen=True)
class Settings:
    store_path: Optional[str]
    batch_visibility: str
    pool_size: int
    default_page_size: int
    max_page_size: int
    cursor_secret: Optional[str]
    store_timeout: float
    service_workers: int
    log_level: str


def _read_optional_env(name: str, default: Optional[str]) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    return candidate or None


def _read_positive_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = int(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_positive_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = float(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _read_batch_visibility(default: str) -> str:
    value = os.getenv(_BATCH_VISIBILITY_ENV)
    if value is None:
        return default
    candidate = value.strip().lower()
    return candidate if candidate in BATCH_VISIBILITY_MODES else default


def _read_log_level(default: str) -> str:
    value = os.getenv(_LOG_LEVEL_ENV)
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    return candidate.upper()


@lru_cache
def get_settings() -> Settings:
    default_page_size = _read_positive_int(_DEFAULT_PAGE_SIZE_ENV, 10)
    max_page_size = _read_positive_int(_MAX_PAGE_SIZE_ENV, 1000)
    return Settings(
        store_path=_read_optional_env(_STORE_PATH_ENV, None),
        batch_visibility=_read_batch_visibility("atomic"),
        pool_size=_read_positive_int(_POOL_SIZE_ENV, 8),
        default_page_size=min(default_page_size, max_page_size),
        max_page_size=max_page_size,
        cursor_secret=_read_optional_env(_CURSOR_SECRET_ENV, None),
        store_timeout=_read_positive_float(_STORE_TIMEOUT_ENV, 5.0),
        service_workers=_read_positive_int(_WORKER_COUNT_ENV, 4),
        log_level=_read_log_level("INFO"),
    )
