"""HTTP route definitions for the service."""

from __future__ import annotations

from typing import List, Union

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.schemas import (
    HistoryResponse,
    LiveResponse,
    NoiseDataIn,
    RangeMode,
    SensorModel,
    StoredReading,
    VerdictModel,
)
from datastore.noise_store import NoiseReadingStore, build_default_store
from services.aggregator import chart_bounds
from services.backend_client import FetchFailure
from services.classifier import classify
from services.feed import SensorFeedService, build_default_feed

router = APIRouter()
ingest_router = APIRouter(prefix="/api", tags=["ingest"])


def get_feed() -> SensorFeedService:
    return build_default_feed()


def get_store() -> NoiseReadingStore:
    return build_default_store()


def _upstream_error(exc: FetchFailure) -> HTTPException:
    if exc.status_code == status.HTTP_404_NOT_FOUND:
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.reason)
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=exc.reason)


@router.get(
    "/sensors",
    response_model=List[SensorModel],
    summary="List sensors known to the backend for map display.",
)
async def list_sensors(
    feed: SensorFeedService = Depends(get_feed),
) -> List[SensorModel]:
    try:
        sensors = await feed.list_sensors()
    except FetchFailure as exc:
        raise _upstream_error(exc) from exc
    return [SensorModel.from_summary(sensor) for sensor in sensors]


@router.get(
    "/sensors/{sensor_id}/history",
    response_model=HistoryResponse,
    summary="Bucketed trend series for a sensor.",
)
async def get_history(
    sensor_id: str,
    range_mode: RangeMode = Query(RangeMode.week, alias="range"),
    daily: bool = Query(False, description="Aggregate each calendar day instead of sampling it."),
    feed: SensorFeedService = Depends(get_feed),
) -> HistoryResponse:
    load = feed.load_daily if daily else feed.load_history
    try:
        view = await load(sensor_id, range_mode.value)
    except FetchFailure as exc:
        raise _upstream_error(exc) from exc
    return HistoryResponse.from_view(view, chart_bounds(view.points))


@router.get(
    "/sensors/{sensor_id}/live",
    response_model=LiveResponse,
    summary="Latest reading in sensor-local time with its WHO verdict.",
)
async def get_live(
    sensor_id: str,
    feed: SensorFeedService = Depends(get_feed),
) -> LiveResponse:
    try:
        view = await feed.fetch_live(sensor_id)
    except FetchFailure as exc:
        raise _upstream_error(exc) from exc
    return LiveResponse.from_view(view)


@router.get(
    "/classify",
    response_model=VerdictModel,
    summary="Classify a level against the WHO day or night limit.",
)
async def classify_level(
    level: float = Query(..., description="A-weighted level in dB."),
    night: bool = Query(False),
) -> VerdictModel:
    verdict = classify(level, night)
    return VerdictModel(label=verdict.value, color=verdict.color, advisory=verdict.advisory)


@router.get(
    "/health",
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@ingest_router.post(
    "/noise-data",
    status_code=status.HTTP_201_CREATED,
    response_model=StoredReading,
    summary="Store an instantaneous reading sent by an ESP32 node.",
)
async def post_noise_data(
    payload: NoiseDataIn,
    store: NoiseReadingStore = Depends(get_store),
) -> StoredReading:
    if payload.dba_instant is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="dba_instant is required",
        )
    return store.add(payload.dba_instant)


@ingest_router.get(
    "/live",
    response_model=Union[StoredReading, dict],
    summary="Latest stored reading.",
)
async def get_latest_reading(
    store: NoiseReadingStore = Depends(get_store),
) -> Union[StoredReading, dict]:
    latest = store.latest()
    if latest is None:
        return {"dba_instant": 0}
    return latest


@ingest_router.get(
    "/hourly",
    response_model=List[StoredReading],
    summary="Last 60 stored readings, newest first.",
)
async def get_recent_readings(
    store: NoiseReadingStore = Depends(get_store),
) -> List[StoredReading]:
    return store.recent(limit=60)
