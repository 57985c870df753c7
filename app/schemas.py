"""Pydantic schemas for the HTTP API layer."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from models.readings import NormalizedPoint, SensorLocation, SensorSummary
from services.feed import HistoryView, LiveView


class RangeMode(str, Enum):
    """Historical ranges offered by the upstream backend."""

    alltime = "alltime"
    day = "day"
    week = "week"
    month = "month"


class PointModel(BaseModel):
    timestamp: str
    laeq: float
    lamax: float
    lamin: float

    @classmethod
    def from_point(cls, point: NormalizedPoint) -> "PointModel":
        return cls(timestamp=point.timestamp, laeq=point.laeq, lamax=point.lamax, lamin=point.lamin)


class LocationModel(BaseModel):
    latitude: float
    longitude: float
    altitude: Optional[float] = None
    country_code: str = ""
    indoor: bool = False
    source: Optional[str] = None
    timezone: Optional[str] = Field(
        default=None, description="IANA zone resolved from the coordinates."
    )

    @classmethod
    def from_location(cls, location: SensorLocation) -> "LocationModel":
        return cls(
            latitude=location.latitude,
            longitude=location.longitude,
            altitude=location.altitude,
            country_code=location.country_code,
            indoor=location.indoor,
            source=location.source,
            timezone=location.timezone,
        )


class HistoryResponse(BaseModel):
    """Bucketed trend series for one sensor."""

    sensor_id: str
    range: RangeMode
    granularity: str
    points: List[PointModel] = Field(default_factory=list)
    location: Optional[LocationModel] = None
    y_min: int
    y_max: int

    @classmethod
    def from_view(cls, view: HistoryView, bounds: tuple[int, int]) -> "HistoryResponse":
        return cls(
            sensor_id=view.sensor_id,
            range=RangeMode(view.range_mode),
            granularity=view.granularity.value,
            points=[PointModel.from_point(point) for point in view.points],
            location=LocationModel.from_location(view.location) if view.location else None,
            y_min=bounds[0],
            y_max=bounds[1],
        )


class VerdictModel(BaseModel):
    label: str
    color: str
    advisory: str


class LiveResponse(BaseModel):
    """Latest reading in sensor-local time with its WHO verdict."""

    sensor_id: str
    timestamp: str = Field(..., description="Sensor-local ISO-8601, empty when unknown.")
    laeq: float
    lamax: float
    lamin: float
    is_night: bool
    verdict: VerdictModel

    @classmethod
    def from_view(cls, view: LiveView) -> "LiveResponse":
        return cls(
            sensor_id=view.sensor_id,
            timestamp=view.reading.timestamp,
            laeq=view.reading.noise_equivalent,
            lamax=view.reading.noise_max,
            lamin=view.reading.noise_min,
            is_night=view.is_night,
            verdict=VerdictModel(
                label=view.verdict.value,
                color=view.verdict.color,
                advisory=view.verdict.advisory,
            ),
        )


class SensorModel(BaseModel):
    id: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    country: Optional[str] = None
    source: Optional[str] = None

    @classmethod
    def from_summary(cls, summary: SensorSummary) -> "SensorModel":
        return cls(
            id=summary.id,
            latitude=summary.latitude,
            longitude=summary.longitude,
            country=summary.country,
            source=summary.source,
        )


class NoiseDataIn(BaseModel):
    """Payload posted by an ESP32 node."""

    dba_instant: Optional[float] = Field(default=None, description="Instantaneous level in dB(A).")


class StoredReading(BaseModel):
    """A raw instantaneous reading kept by the ingest store."""

    id: int = Field(..., ge=1)
    dba_instant: float
    timestamp: datetime
