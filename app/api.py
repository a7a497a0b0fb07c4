"""HTTP route definitions for the service."""

# No postponed annotations here: route signatures close over per-kind schemas.

import logging
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Path, Query, status
from fastapi.responses import PlainTextResponse
from starlette.concurrency import run_in_threadpool

from app.schemas import SCHEMAS_BY_KIND, PagedReadings
from models.readings import MeasurementKind
from services.errors import InvalidArgument, InvalidCursor, InvalidReading, StoreUnavailable, TelemetryError
from services.telemetry import TelemetryService, build_default_service

logger = logging.getLogger(__name__)

INSTRUMENTS_PREFIX = "/api/spacecraft/{spacecraft_name}/{journey_id}/instruments"
STORE_RETRY_AFTER_SECONDS = 1

router = APIRouter()
instruments_router = APIRouter(prefix=INSTRUMENTS_PREFIX, tags=["instruments"])


def get_service() -> TelemetryService:
    return build_default_service()


def _http_error(exc: TelemetryError) -> HTTPException:
    if isinstance(exc, StoreUnavailable):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
            headers={"Retry-After": str(STORE_RETRY_AFTER_SECONDS)},
        )
    if isinstance(exc, (InvalidArgument, InvalidCursor, InvalidReading)):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


def _register_instrument_routes(kind: MeasurementKind) -> None:
    schema = SCHEMAS_BY_KIND[kind]
    page_model = PagedReadings[schema]  # type: ignore[valid-type]

    @instruments_router.get(
        f"/{kind.value}",
        response_model=page_model,
        response_model_exclude_none=True,
        name=f"get_{kind.value}_readings",
        summary=f"Retrieve {kind.value} readings for a journey.",
    )
    async def read_readings(
        spacecraft_name: str = Path(..., examples=["gemini3"]),
        journey_id: str = Path(
            ..., examples=["abb7c000-c310-11ac-8080-808080808080"]
        ),
        page_size: Optional[int] = Query(
            None, alias="pagesize", description="Requested page size, default is 10."
        ),
        page_state: Optional[str] = Query(
            None, alias="pagestate", description="Token from a previous page."
        ),
        service: TelemetryService = Depends(get_service),
    ) -> PagedReadings:
        logger.debug(
            "Retrieving readings",
            extra={"kind": kind.value, "spacecraft_name": spacecraft_name, "journey_id": journey_id},
        )
        try:
            result = await run_in_threadpool(
                service.query,
                kind,
                spacecraft_name,
                journey_id,
                page_size=page_size,
                page_state=page_state,
            )
        except TelemetryError as exc:
            raise _http_error(exc) from exc
        return page_model.from_result(schema, result)

    @instruments_router.post(
        f"/{kind.value}",
        response_class=PlainTextResponse,
        name=f"save_{kind.value}_readings",
        summary=f"Save {kind.value} readings for a journey.",
    )
    async def save_readings(
        spacecraft_name: str = Path(..., examples=["gemini3"]),
        journey_id: str = Path(
            ..., examples=["abb7c000-c310-11ac-8080-808080808080"]
        ),
        readings: Optional[List[schema]] = Body(default=None),  # type: ignore[valid-type]
        service: TelemetryService = Depends(get_service),
    ) -> str:
        logger.debug(
            "Saving readings",
            extra={
                "kind": kind.value,
                "spacecraft_name": spacecraft_name,
                "journey_id": journey_id,
                "item_count": len(readings or ()),
            },
        )
        try:
            partition = service.partition_for(spacecraft_name, journey_id)
            payloads = [reading.model_dump() for reading in readings or ()]
            await run_in_threadpool(service.ingest, kind, payloads, partition=partition)
        except TelemetryError as exc:
            raise _http_error(exc) from exc
        return "OK"


for _kind in MeasurementKind:
    _register_instrument_routes(_kind)

router.include_router(instruments_router)


@router.get(
    "/health",
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.get(
    "/",
    summary="Root endpoint mirrors health information.",
    status_code=status.HTTP_200_OK,
)
async def root() -> dict[str, str]:
    return {"status": "ok", "detail": "See /health for service status."}
