"""Timestamp parsing and conversion into sensor-local time."""

from __future__ import annotations

import dataclasses
import logging
from datetime import datetime, time, timezone
from typing import Literal, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from models.readings import Reading, SensorLocation

logger = logging.getLogger(__name__)

FALLBACK_FORMAT = "%Y-%m-%d %H:%M:%S"

SourceZoneHint = Literal["UTC", "unspecified"]


class UnparseableTimestamp(ValueError):
    """Raised when a timestamp matches neither ISO-8601 nor the fallback pattern."""


def parse_timestamp(raw: str) -> datetime:
    """Parse ``raw`` as ISO-8601, then as ``YYYY-MM-DD HH:MM:SS``.

    The result is naive unless ``raw`` carries an offset.
    """
    candidate = (raw or "").strip()
    if not candidate:
        raise UnparseableTimestamp("Timestamp is empty.")

    iso_candidate = candidate
    if iso_candidate.endswith(("Z", "z")):
        iso_candidate = iso_candidate[:-1] + "+00:00"

    try:
        return datetime.fromisoformat(iso_candidate)
    except ValueError:
        pass

    try:
        return datetime.strptime(candidate, FALLBACK_FORMAT)
    except ValueError as exc:
        raise UnparseableTimestamp(f"Could not parse timestamp {raw!r}.") from exc


def parse_clock(raw: str) -> Optional[time]:
    """Parse a bare ``HH:MM`` / ``HH:MM:SS`` time of day, or return None."""
    candidate = (raw or "").strip()
    if ":" not in candidate or "-" in candidate or "T" in candidate:
        return None
    try:
        return time.fromisoformat(candidate)
    except ValueError:
        return None


def format_iso(value: datetime) -> str:
    timespec = "milliseconds" if value.microsecond else "seconds"
    return value.isoformat(timespec=timespec)


def normalize_timestamp(
    raw: str,
    source_zone: SourceZoneHint = "UTC",
    target_zone: str = "UTC",
) -> str:
    """Re-express ``raw`` in ``target_zone`` as ISO-8601 with offset.

    An explicit offset in ``raw`` wins over ``source_zone``. Naive values are
    read as UTC for the ``"UTC"`` hint and as target-zone wall clock for
    ``"unspecified"``.
    """
    if source_zone not in ("UTC", "unspecified"):
        raise ValueError(f"Unsupported source zone hint {source_zone!r}.")

    target = ZoneInfo(target_zone)
    parsed = parse_timestamp(raw)
    if parsed.tzinfo is None:
        if source_zone == "UTC":
            parsed = parsed.replace(tzinfo=timezone.utc)
        else:
            parsed = parsed.replace(tzinfo=target)

    return format_iso(parsed.astimezone(target))


def localize_reading(
    reading: Reading,
    location: Optional[SensorLocation] = None,
    source_zone: SourceZoneHint = "UTC",
) -> Reading:
    """Rewrite the reading's timestamp into the sensor's local time.

    Never raises: a reading without location context comes back unchanged, and
    one whose timestamp cannot be converted comes back with an empty timestamp.
    """
    if location is None or not location.timezone or not reading.timestamp:
        return reading

    try:
        local = normalize_timestamp(reading.timestamp, source_zone, location.timezone)
    except (ValueError, ZoneInfoNotFoundError) as exc:
        logger.warning(
            "Could not localize reading timestamp",
            extra={
                "timestamp": reading.timestamp,
                "zone": location.timezone,
                "reason": str(exc),
            },
        )
        return dataclasses.replace(reading, timestamp="")

    return dataclasses.replace(reading, timestamp=local)
