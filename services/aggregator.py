"""Daily aggregation of raw noise readings."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, Iterable, List, Sequence, Tuple

from models.readings import NormalizedPoint, Reading
from services.bucketer import Granularity, bucket_key

DEFAULT_CHART_FLOOR = 35.0
DEFAULT_CHART_CEILING = 85.0
CHART_MARGIN = 5.0


@dataclass
class _DayAccumulator:
    count: int = 0
    laeq_total: float = 0.0
    lamax: float | None = None
    lamin: float | None = None

    def add(self, reading: Reading) -> None:
        self.count += 1
        self.laeq_total += reading.noise_equivalent
        if self.lamax is None or reading.noise_max > self.lamax:
            self.lamax = reading.noise_max
        if self.lamin is None or reading.noise_min < self.lamin:
            self.lamin = reading.noise_min


class DailyAggregator:
    """Rolls instantaneous readings up into one point per calendar day.

    LAeq is averaged, LAmax is the day's maximum and LAmin the day's minimum.
    """

    def aggregate(self, readings: Iterable[Reading]) -> List[NormalizedPoint]:
        days: Dict[str, _DayAccumulator] = {}

        for reading in readings:
            key = bucket_key(reading.timestamp, Granularity.calendar_day)
            if key is None:
                continue
            days.setdefault(key, _DayAccumulator()).add(reading)

        return [
            NormalizedPoint(
                timestamp=day,
                laeq=acc.laeq_total / acc.count,
                lamax=acc.lamax if acc.lamax is not None else 0.0,
                lamin=acc.lamin if acc.lamin is not None else 0.0,
            )
            for day, acc in sorted(days.items())
        ]


def chart_bounds(points: Sequence[NormalizedPoint]) -> Tuple[int, int]:
    """Y-axis domain for a trend chart with a margin around the data."""
    if points:
        low = min(point.lamin for point in points)
        high = max(point.lamax for point in points)
    else:
        low, high = DEFAULT_CHART_FLOOR, DEFAULT_CHART_CEILING
    return math.floor(low - CHART_MARGIN), math.ceil(high + CHART_MARGIN)
