"""Offline coordinate to IANA timezone lookup."""

from __future__ import annotations

import dataclasses
import logging
import math
from functools import lru_cache
from threading import Lock
from typing import Dict, Optional, Tuple

from timezonefinder import TimezoneFinder

from models.readings import SensorLocation

logger = logging.getLogger(__name__)


class InvalidCoordinate(ValueError):
    """Raised when a latitude/longitude pair is outside the valid ranges."""


def _nautical_zone(longitude: float) -> str:
    # Etc/GMT names use inverted signs: Etc/GMT-2 is UTC+2.
    offset = int(round(longitude / 15.0))
    if offset == 0:
        return "Etc/GMT"
    return f"Etc/GMT{-offset:+d}"


def validate_coordinate(latitude: float, longitude: float) -> Tuple[float, float]:
    try:
        lat = float(latitude)
        lon = float(longitude)
    except (TypeError, ValueError) as exc:
        raise InvalidCoordinate(
            f"Coordinate ({latitude!r}, {longitude!r}) is not numeric."
        ) from exc
    if not (math.isfinite(lat) and math.isfinite(lon)):
        raise InvalidCoordinate(f"Coordinate ({lat}, {lon}) is not finite.")
    if not -90.0 <= lat <= 90.0:
        raise InvalidCoordinate(f"Latitude {lat} is outside [-90, 90].")
    if not -180.0 <= lon <= 180.0:
        raise InvalidCoordinate(f"Longitude {lon} is outside [-180, 180].")
    return lat, lon


class TimezoneResolver:
    """Maps coordinates to timezone identifiers without network access."""

    def __init__(self, finder: Optional[TimezoneFinder] = None) -> None:
        self._finder = finder or TimezoneFinder()
        self._cache: Dict[Tuple[float, float], str] = {}
        self._lock = Lock()

    def resolve(self, latitude: float, longitude: float) -> str:
        key = validate_coordinate(latitude, longitude)
        with self._lock:
            cached = self._cache.get(key)
        if cached is not None:
            return cached

        lat, lon = key
        zone = self._finder.timezone_at(lng=lon, lat=lat)
        if zone is None:
            zone = _nautical_zone(lon)
            logger.debug("No zone polygon at coordinate, using nautical zone", extra={"zone": zone})

        with self._lock:
            self._cache[key] = zone
        return zone

    def localize(self, location: SensorLocation) -> SensorLocation:
        """Return ``location`` with its timezone resolved."""
        if location.timezone:
            return location
        zone = self.resolve(location.latitude, location.longitude)
        return dataclasses.replace(location, timezone=zone)


@lru_cache
def build_default_resolver() -> TimezoneResolver:
    return TimezoneResolver()
