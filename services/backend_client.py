"""Async HTTP client for the upstream noise backend."""

from __future__ import annotations

import logging
from typing import Any, List, Optional

import httpx

from models.readings import HistoricalBatch, Reading, SensorLocation, SensorSummary
from services.bucketer import RANGE_MODES
from settings import get_settings

logger = logging.getLogger(__name__)


class FetchFailure(RuntimeError):
    """Network error or non-2xx response from the upstream backend."""

    def __init__(self, reason: str, status_code: Optional[int] = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.status_code = status_code


class NoiseBackendClient:
    """Minimal async client for the sensor backend."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        settings = get_settings()
        self.base_url = (base_url or settings.backend_url).rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout if timeout is not None else settings.http_timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def fetch_recent(self, sensor_id: str) -> Reading:
        payload = await self._get_json(f"/recentdata/{sensor_id}")
        if not isinstance(payload, dict):
            raise FetchFailure(f"Unexpected recent-data payload for sensor {sensor_id!r}.")
        return Reading.from_payload(payload)

    async def fetch_historical(self, sensor_id: str, range_mode: str) -> HistoricalBatch:
        if range_mode not in RANGE_MODES:
            raise ValueError(
                f"Unknown range mode {range_mode!r}; expected one of {', '.join(RANGE_MODES)}."
            )
        payload = await self._get_json(f"/{range_mode}/{sensor_id}")
        if not isinstance(payload, dict):
            raise FetchFailure(f"Unexpected historical payload for sensor {sensor_id!r}.")

        source = payload.get("source")
        raw_location = payload.get("locationResponse") or payload.get("location")
        location = None
        if isinstance(raw_location, dict):
            location = SensorLocation.from_payload(raw_location, source=source)

        raw_noises = payload.get("noiseResponses") or payload.get("noises") or []
        readings = [Reading.from_payload(item) for item in raw_noises if isinstance(item, dict)]
        logger.debug(
            "Fetched %d historical readings",
            len(readings),
            extra={"sensor_id": sensor_id, "range_mode": range_mode, "source": source},
        )
        return HistoricalBatch(readings=readings, location=location)

    async def fetch_all_sensors(self) -> List[SensorSummary]:
        payload = await self._get_json("/allsensors")
        if not isinstance(payload, list):
            raise FetchFailure("Unexpected sensor list payload.")
        return [SensorSummary.from_payload(item) for item in payload if isinstance(item, dict)]

    async def _get_json(self, path: str) -> Any:
        try:
            response = await self._client.get(path)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise FetchFailure(
                f"Request to {path} failed with status {exc.response.status_code}.",
                status_code=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            raise FetchFailure(f"Request to {path} failed: {exc}") from exc

        try:
            return response.json()
        except ValueError as exc:
            raise FetchFailure(f"Response from {path} is not valid JSON.") from exc
