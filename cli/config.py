from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

DEFAULT_BASE_URL = "http://localhost:8080/api"
DEFAULT_WATCH_SECONDS = 60.0

_BASE_URL_ENV = "NOISE_API_BASE_URL"
_WATCH_SECONDS_ENV = "CLI_WATCH_SECONDS"


@dataclass(frozen=True)
class CLIConfig:
    base_url: str = DEFAULT_BASE_URL
    watch_seconds: float = DEFAULT_WATCH_SECONDS


def _read_float(value: Optional[str], default: float) -> float:
    if value is None:
        return default
    candidate = value.strip()
    if not candidate:
        return default
    try:
        parsed = float(candidate)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def load_config(
    base_url: Optional[str] = None,
    watch_seconds: Optional[float] = None,
) -> CLIConfig:
    url = base_url or os.getenv(_BASE_URL_ENV) or DEFAULT_BASE_URL
    if watch_seconds is None:
        watch_seconds = _read_float(os.getenv(_WATCH_SECONDS_ENV), DEFAULT_WATCH_SECONDS)
    return CLIConfig(
        base_url=url.rstrip("/"),
        watch_seconds=watch_seconds,
    )
