"""Domain models shared across services."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Mapping, Optional


class SensorSource(str, Enum):
    """Upstream networks a sensor can report through."""

    sensorcommunity = "sensorcommunity"
    nightingale = "nightingale"


def _as_float(value: Any) -> float:
    if value is None:
        return 0.0
    return float(value)


def _as_optional_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    return float(value)


@dataclass(frozen=True, slots=True)
class Reading:
    """A raw noise reading as received from a source."""

    timestamp: str
    noise_equivalent: float
    noise_max: float
    noise_min: float

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "Reading":
        timestamp = payload.get("timestamp")
        if "noise_LAeq" not in payload and "dba_instant" in payload:
            # ESP32 rows only carry the instantaneous level.
            level = _as_float(payload.get("dba_instant"))
            return cls(
                timestamp=str(timestamp or ""),
                noise_equivalent=level,
                noise_max=level,
                noise_min=level,
            )
        return cls(
            timestamp=str(timestamp or ""),
            noise_equivalent=_as_float(payload.get("noise_LAeq")),
            noise_max=_as_float(payload.get("noise_LAmax")),
            noise_min=_as_float(payload.get("noise_LAmin")),
        )


@dataclass(frozen=True, slots=True)
class NormalizedPoint:
    """One bucketed point of a historical series."""

    timestamp: str
    laeq: float
    lamax: float
    lamin: float

    def as_reading(self) -> Reading:
        return Reading(
            timestamp=self.timestamp,
            noise_equivalent=self.laeq,
            noise_max=self.lamax,
            noise_min=self.lamin,
        )


@dataclass(frozen=True, slots=True)
class LivePoint:
    """A chart sample: epoch milliseconds and the A-weighted level."""

    t: int
    dba: float


@dataclass(frozen=True, slots=True)
class SensorLocation:
    latitude: float
    longitude: float
    altitude: Optional[float] = None
    country_code: str = ""
    indoor: bool = False
    source: Optional[str] = None
    timezone: Optional[str] = None

    @classmethod
    def from_payload(
        cls, payload: Mapping[str, Any], source: Optional[str] = None
    ) -> "SensorLocation":
        return cls(
            latitude=_as_float(payload.get("latitude")),
            longitude=_as_float(payload.get("longitude")),
            altitude=_as_optional_float(payload.get("altitude")),
            country_code=str(payload.get("country") or "").upper(),
            indoor=bool(payload.get("indoor") or False),
            source=source,
        )


@dataclass(frozen=True, slots=True)
class SensorSummary:
    """Map-level description of a sensor."""

    id: str
    latitude: Optional[float]
    longitude: Optional[float]
    country: Optional[str]
    source: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "SensorSummary":
        return cls(
            id=str(payload.get("id")),
            latitude=_as_optional_float(payload.get("latitude")),
            longitude=_as_optional_float(payload.get("longitude")),
            country=payload.get("country"),
            source=payload.get("source"),
        )


@dataclass(slots=True)
class HistoricalBatch:
    readings: List[Reading] = field(default_factory=list)
    location: Optional[SensorLocation] = None
