from __future__ import annotations
import json
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from threading import Lock
from typing import Dict, List, Optional

from app.schemas import StoredReading
from settings import get_settings


class NoiseReadingStore:
    """Append-only store of instantaneous readings posted by ESP32 nodes.

    Rows get an auto-incrementing id and default to the current UTC time.
    """

    def __init__(self, name: str, persistence_path: Optional[Path] = None) -> None:
        self.name = name
        self._items: Dict[int, StoredReading] = {}
        self._next_id = 1
        self.persistence_path = persistence_path
        self._lock = Lock()
        if persistence_path:
            persistence_path.parent.mkdir(parents=True, exist_ok=True)
            self._load_from_disk()

    def add(self, dba_instant: float, timestamp: Optional[datetime] = None) -> StoredReading:
        recorded_at = timestamp or datetime.now(timezone.utc)
        if recorded_at.tzinfo is None:
            recorded_at = recorded_at.replace(tzinfo=timezone.utc)
        with self._lock:
            item = StoredReading(
                id=self._next_id,
                dba_instant=dba_instant,
                timestamp=recorded_at,
            )
            self._items[item.id] = item
            self._next_id += 1
            self._persist()
            return item.model_copy(deep=True)

    def latest(self) -> Optional[StoredReading]:
        recent = self.recent(limit=1)
        return recent[0] if recent else None

    def recent(self, limit: int = 60) -> List[StoredReading]:
        """Return up to ``limit`` readings, newest first."""
        if limit <= 0:
            return []
        with self._lock:
            ordered = sorted(
                self._items.values(),
                key=lambda item: (item.timestamp, item.id),
                reverse=True,
            )
            return [item.model_copy(deep=True) for item in ordered[:limit]]

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def _persist(self) -> None:
        if not self.persistence_path:
            return
        payload = {
            str(item_id): item.model_dump(mode="json") for item_id, item in self._items.items()
        }
        self.persistence_path.write_text(json.dumps(payload, indent=2, sort_keys=True))

    def _load_from_disk(self) -> None:
        if not self.persistence_path or not self.persistence_path.exists():
            return

        try:
            raw = self.persistence_path.read_text() or "{}"
            data = json.loads(raw)
        except (OSError, json.JSONDecodeError):
            data = {}

        for payload in data.values():
            item = StoredReading.model_validate(payload)
            self._items[item.id] = item
        if self._items:
            self._next_id = max(self._items) + 1


@lru_cache
def build_default_store(
    name: Optional[str] = None,
    path: Optional[str] = None,
) -> NoiseReadingStore:
    settings = get_settings()
    store_path = settings.store_path if path is None else path
    persistence = Path(store_path) if store_path else None
    return NoiseReadingStore(name=name or "noise_readings", persistence_path=persistence)
