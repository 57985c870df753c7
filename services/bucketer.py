"""Deduplicate and bucket historical readings by calendar unit."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Dict, Iterable, List, Optional

from models.readings import NormalizedPoint, Reading
from services.normalizer import UnparseableTimestamp, parse_clock, parse_timestamp

logger = logging.getLogger(__name__)


class Granularity(str, Enum):
    hour_minute = "hour-minute"
    calendar_day = "calendar-day"


RANGE_MODES = ("alltime", "day", "week", "month")

_RANGE_GRANULARITY = {
    "day": Granularity.hour_minute,
    "week": Granularity.calendar_day,
    "month": Granularity.calendar_day,
    "alltime": Granularity.calendar_day,
}


def granularity_for(range_mode: str) -> Granularity:
    """Intraday views bucket per minute, multi-day views per calendar day."""
    try:
        return _RANGE_GRANULARITY[range_mode]
    except KeyError:
        raise ValueError(
            f"Unknown range mode {range_mode!r}; expected one of {', '.join(RANGE_MODES)}."
        ) from None


def bucket_key(timestamp: str, granularity: Granularity) -> Optional[str]:
    """Return the zero-padded bucket key for ``timestamp``, or None to skip it.

    Keys use the wall clock as written; offsets are not applied.
    """
    try:
        parsed = parse_timestamp(timestamp)
    except UnparseableTimestamp:
        if granularity is Granularity.hour_minute:
            clock = parse_clock(timestamp)
            if clock is not None:
                return f"{clock.hour:02d}:{clock.minute:02d}"
        return None

    if granularity is Granularity.hour_minute:
        return f"{parsed.hour:02d}:{parsed.minute:02d}"
    return parsed.date().isoformat()


class Bucketer:
    """Pure bucketing component that can be unit tested in isolation."""

    def bucket(
        self, readings: Iterable[Reading], granularity: Granularity | str
    ) -> List[NormalizedPoint]:
        granularity = Granularity(granularity)
        first_seen: Dict[str, Reading] = {}
        skipped = 0

        for reading in readings:
            key = bucket_key(reading.timestamp, granularity)
            if key is None:
                skipped += 1
                continue
            # First reading per key wins.
            if key not in first_seen:
                first_seen[key] = reading

        if skipped:
            logger.debug(
                "Skipped %d readings without a usable timestamp",
                skipped,
                extra={"reason": "unparseable timestamp"},
            )

        return [
            NormalizedPoint(
                timestamp=key,
                laeq=reading.noise_equivalent,
                lamax=reading.noise_max,
                lamin=reading.noise_min,
            )
            for key, reading in sorted(first_seen.items(), key=lambda item: item[0])
        ]
