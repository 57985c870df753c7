"""Shared fakes for tests that talk to the upstream backend."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx
import pytest

from services.backend_client import NoiseBackendClient
from services.bucketer import Bucketer
from services.feed import SensorFeedService
from services.timezones import TimezoneResolver

BACKEND_URL = "http://backend.test/api"


class StubFinder:
    """Stands in for ``TimezoneFinder`` with a fixed answer."""

    def __init__(self, zone: Optional[str]) -> None:
        self.zone = zone
        self.calls = 0

    def timezone_at(self, *, lng: float, lat: float) -> Optional[str]:
        self.calls += 1
        return self.zone


def _history_payload(noises: List[Dict[str, Any]], source: str = "nightingale") -> Dict[str, Any]:
    return {
        "locationResponse": {
            "country": "fr",
            "latitude": 48.8566,
            "longitude": 2.3522,
            "altitude": 35.0,
            "indoor": False,
        },
        "noiseResponses": noises,
        "source": source,
    }


class FakeBackend:
    def __init__(self) -> None:
        self.recent: Dict[str, Dict[str, Any]] = {
            "abc": {
                "timestamp": "2024-01-15T22:30:00Z",
                "noise_LAeq": 48.0,
                "noise_LAmax": 60.0,
                "noise_LAmin": 40.0,
            }
        }
        self.history: Dict[tuple[str, str], Dict[str, Any]] = {
            ("day", "abc"): _history_payload(
                [
                    {"timestamp": "2024-01-15T10:31:00", "noise_LAeq": 52.0, "noise_LAmax": 61.0, "noise_LAmin": 44.0},
                    {"timestamp": "2024-01-15T10:30:05", "noise_LAeq": 50.0, "noise_LAmax": 60.0, "noise_LAmin": 42.0},
                    {"timestamp": "2024-01-15T10:30:40", "noise_LAeq": 99.0, "noise_LAmax": 99.0, "noise_LAmin": 99.0},
                    {"timestamp": None, "noise_LAeq": 70.0, "noise_LAmax": 71.0, "noise_LAmin": 69.0},
                ]
            ),
            ("week", "abc"): _history_payload(
                [
                    {"timestamp": "2024-01-16T00:00", "noise_LAeq": 47.0, "noise_LAmax": 72.0, "noise_LAmin": 38.0},
                    {"timestamp": "2024-01-15T00:00", "noise_LAeq": 51.0, "noise_LAmax": 65.0, "noise_LAmin": 41.5},
                ]
            ),
        }
        self.sensors: List[Dict[str, Any]] = [
            {"id": "abc", "latitude": 48.8566, "longitude": 2.3522, "country": "FR", "source": "nightingale"},
            {"id": "def", "latitude": None, "longitude": None, "country": None, "source": "sensorcommunity"},
        ]
        self.fail_status: Dict[str, int] = {}
        self.requests: List[str] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.startswith("/api"):
            path = path[len("/api"):]
        self.requests.append(path)

        if path in self.fail_status:
            return httpx.Response(self.fail_status[path], json={"error": "upstream failure"})

        parts = path.strip("/").split("/")
        if parts == ["allsensors"]:
            return httpx.Response(200, json=self.sensors)
        if len(parts) == 2 and parts[0] == "recentdata" and parts[1] in self.recent:
            return httpx.Response(200, json=self.recent[parts[1]])
        if len(parts) == 2 and (parts[0], parts[1]) in self.history:
            return httpx.Response(200, json=self.history[(parts[0], parts[1])])
        return httpx.Response(404, json={"error": "not found"})

    def client(self) -> NoiseBackendClient:
        return NoiseBackendClient(
            base_url=BACKEND_URL,
            transport=httpx.MockTransport(self.handler),
        )


@pytest.fixture()
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture()
def paris_resolver() -> TimezoneResolver:
    return TimezoneResolver(finder=StubFinder("Europe/Paris"))  # type: ignore[arg-type]


@pytest.fixture()
def feed(fake_backend: FakeBackend, paris_resolver: TimezoneResolver) -> SensorFeedService:
    return SensorFeedService(
        client=fake_backend.client(),
        resolver=paris_resolver,
        bucketer=Bucketer(),
    )
