"""WHO day/night noise classification."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from services.normalizer import parse_timestamp

logger = logging.getLogger(__name__)

DAY_LIMIT_DB = 55.0
NIGHT_LIMIT_DB = 45.0
BAND_DB = 5.0

NIGHT_START_HOUR = 23
NIGHT_END_HOUR = 7


class Verdict(str, Enum):
    ok = "OK"
    caution = "Caution"
    high = "High"

    @property
    def color(self) -> str:
        return _COLORS[self]

    @property
    def advisory(self) -> str:
        return _ADVISORIES[self]


_COLORS = {
    Verdict.ok: "#10B981",
    Verdict.caution: "#F59E0B",
    Verdict.high: "#DC2626",
}

_ADVISORIES = {
    Verdict.ok: (
        "Noise levels are within safe limits. Chronic exposure at this level is "
        "unlikely to impose major cardiovascular strain."
    ),
    Verdict.caution: (
        "Noise levels are approaching recommended limits. Prolonged exposure can "
        "raise heart rate and blood pressure; allow periods of quiet where possible."
    ),
    Verdict.high: (
        "Noise levels are high. Repeated or long-term exposure at this level "
        "contributes to cardiovascular risk; limit exposure and take quiet breaks."
    ),
}


def classify(level: float, is_night: bool) -> Verdict:
    """Bands are ``(-inf, limit-5)``, ``[limit-5, limit+5]`` and above."""
    limit = NIGHT_LIMIT_DB if is_night else DAY_LIMIT_DB
    if level < limit - BAND_DB:
        return Verdict.ok
    if level <= limit + BAND_DB:
        return Verdict.caution
    return Verdict.high


def is_night_hour(hour: int) -> bool:
    return hour >= NIGHT_START_HOUR or hour < NIGHT_END_HOUR


def is_night_at(timestamp: str, zone: Optional[str] = None) -> bool:
    """Night flag for a sensor-local timestamp.

    Empty or unparseable timestamps count as daytime.
    """
    try:
        parsed = parse_timestamp(timestamp)
    except ValueError:
        return False

    if zone and parsed.tzinfo is not None:
        try:
            parsed = parsed.astimezone(ZoneInfo(zone))
        except (ValueError, ZoneInfoNotFoundError) as exc:
            logger.warning(
                "Unknown sensor zone; using the timestamp's own offset",
                extra={"timestamp": timestamp, "zone": zone, "reason": str(exc)},
            )
    return is_night_hour(parsed.hour)
