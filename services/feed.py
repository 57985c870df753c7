"""Per-sensor feed orchestration: fetch, localize, bucket and classify."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Callable, Dict, List, Optional

from models.readings import NormalizedPoint, Reading, SensorLocation, SensorSummary
from services.aggregator import DailyAggregator
from services.backend_client import FetchFailure, NoiseBackendClient
from services.bucketer import Bucketer, Granularity, granularity_for
from services.classifier import Verdict, classify, is_night_at
from services.normalizer import localize_reading
from services.sampler import AnySubscription, LiveSampler, SampleCallback
from services.timezones import InvalidCoordinate, TimezoneResolver, build_default_resolver
from settings import get_settings

logger = logging.getLogger(__name__)

# Cheapest range that still reports the sensor location and source.
LOCATION_RANGE = "day"


@dataclass
class HistoryView:
    sensor_id: str
    range_mode: str
    granularity: Granularity
    points: List[NormalizedPoint] = field(default_factory=list)
    location: Optional[SensorLocation] = None


@dataclass
class LiveView:
    sensor_id: str
    reading: Reading
    verdict: Verdict
    is_night: bool


LiveCallback = Callable[[LiveView], None]


class SensorFeedService:
    """Coordinates the backend client with the normalization engine."""

    def __init__(
        self,
        client: NoiseBackendClient,
        resolver: TimezoneResolver,
        bucketer: Bucketer,
        sampler: Optional[LiveSampler] = None,
        aggregator: Optional[DailyAggregator] = None,
    ) -> None:
        self.client = client
        self.resolver = resolver
        self.bucketer = bucketer
        self.aggregator = aggregator or DailyAggregator()
        self.sampler = sampler or LiveSampler(
            self._fetch_localized, window_capacity=get_settings().window_capacity
        )
        self._locations: Dict[str, SensorLocation] = {}

    def location(self, sensor_id: str) -> Optional[SensorLocation]:
        return self._locations.get(sensor_id)

    async def ensure_location(self, sensor_id: str) -> Optional[SensorLocation]:
        """Return the cached location, fetching the sensor's day batch when unknown.

        A failed fetch is logged and yields None; readings then stay unlocalized.
        """
        known = self._locations.get(sensor_id)
        if known is not None:
            return known
        try:
            batch = await self.client.fetch_historical(sensor_id, LOCATION_RANGE)
        except FetchFailure as exc:
            logger.warning(
                "Sensor location unavailable; timestamps stay unlocalized",
                extra={"sensor_id": sensor_id, "status_code": exc.status_code, "reason": exc.reason},
            )
            return None
        return self._remember_location(sensor_id, batch.location)

    async def list_sensors(self) -> List[SensorSummary]:
        return await self.client.fetch_all_sensors()

    async def load_history(self, sensor_id: str, range_mode: str) -> HistoryView:
        """Fetch a historical batch and bucket it for ``range_mode``."""
        granularity = granularity_for(range_mode)
        batch = await self.client.fetch_historical(sensor_id, range_mode)
        location = self._remember_location(sensor_id, batch.location)
        points = self.bucketer.bucket(batch.readings, granularity)
        logger.info(
            "Bucketed %d readings into %d points",
            len(batch.readings),
            len(points),
            extra={"sensor_id": sensor_id, "range_mode": range_mode},
        )
        return HistoryView(
            sensor_id=sensor_id,
            range_mode=range_mode,
            granularity=granularity,
            points=points,
            location=location,
        )

    async def load_daily(self, sensor_id: str, range_mode: str) -> HistoryView:
        """Per-day mean LAeq, max LAmax and min LAmin over ``range_mode``."""
        granularity_for(range_mode)
        batch = await self.client.fetch_historical(sensor_id, range_mode)
        location = self._remember_location(sensor_id, batch.location)
        points = self.aggregator.aggregate(batch.readings)
        logger.info(
            "Aggregated %d readings into %d days",
            len(batch.readings),
            len(points),
            extra={"sensor_id": sensor_id, "range_mode": range_mode},
        )
        return HistoryView(
            sensor_id=sensor_id,
            range_mode=range_mode,
            granularity=Granularity.calendar_day,
            points=points,
            location=location,
        )

    async def fetch_live(self, sensor_id: str) -> LiveView:
        """Latest reading in sensor-local time with its verdict.

        The location is fetched on first use; the reading is returned
        unlocalized only when it cannot be obtained.
        """
        await self.ensure_location(sensor_id)
        reading = await self._fetch_localized(sensor_id)
        return self._view(sensor_id, reading)

    def start_live(
        self,
        sensor_id: str,
        on_update: Optional[LiveCallback] = None,
        on_sample: Optional[SampleCallback] = None,
        source: Optional[str] = None,
    ) -> AnySubscription:
        """Poll ``sensor_id`` using the policy of its source.

        The source defaults to the one reported with the sensor's location, so
        ``load_history`` is normally called first.
        """
        if source is None:
            location = self._locations.get(sensor_id)
            source = location.source if location is not None else None

        def publish(reading: Reading) -> None:
            if on_update is not None:
                on_update(self._view(sensor_id, reading))

        return self.sampler.start_polling(
            sensor_id, source, on_reading=publish, on_sample=on_sample
        )

    def stop_live(self, sensor_id: str) -> None:
        self.sampler.stop(sensor_id)

    async def aclose(self) -> None:
        self.sampler.stop_all()
        await self.client.aclose()

    async def _fetch_localized(self, sensor_id: str) -> Reading:
        reading = await self.client.fetch_recent(sensor_id)
        return localize_reading(reading, self._locations.get(sensor_id))

    def _view(self, sensor_id: str, reading: Reading) -> LiveView:
        location = self._locations.get(sensor_id)
        zone = location.timezone if location is not None else None
        night = is_night_at(reading.timestamp, zone)
        return LiveView(
            sensor_id=sensor_id,
            reading=reading,
            verdict=classify(reading.noise_equivalent, night),
            is_night=night,
        )

    def _remember_location(
        self, sensor_id: str, location: Optional[SensorLocation]
    ) -> Optional[SensorLocation]:
        if location is None:
            return self._locations.get(sensor_id)
        try:
            location = self.resolver.localize(location)
        except InvalidCoordinate as exc:
            logger.warning(
                "Sensor location has an invalid coordinate; timestamps stay unlocalized",
                extra={"sensor_id": sensor_id, "reason": str(exc)},
            )
        self._locations[sensor_id] = location
        return location


@lru_cache
def build_default_feed(base_url: Optional[str] = None) -> SensorFeedService:
    """Factory that wires the feed with the configured backend."""
    return SensorFeedService(
        client=NoiseBackendClient(base_url=base_url),
        resolver=build_default_resolver(),
        bucketer=Bucketer(),
    )
