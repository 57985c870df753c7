"""Live polling with a per-source cadence and a bounded chart window.

Each subscription owns its timer task, its sample window and its gating state,
so several sensors can be polled on one event loop without sharing anything.
A tick fetches the latest reading, publishes it, and appends a chart sample
only when the source's minimum sample spacing has elapsed.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable, Deque, Dict, List, Optional, Set, Union

from models.readings import LivePoint, Reading, SensorSource
from services.backend_client import FetchFailure

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_CAPACITY = 60

FetchRecent = Callable[[str], Awaitable[Reading]]
ReadingCallback = Callable[[Reading], None]
SampleCallback = Callable[[LivePoint], None]
Clock = Callable[[], int]


class UnknownSource(ValueError):
    """Raised when a sensor reports through a source without a polling policy."""


def epoch_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class PollingPolicy:
    source: SensorSource
    poll_interval: float
    sample_spacing_ms: int = 0

    def should_sample(self, now_ms: int, last_sample_ms: Optional[int]) -> bool:
        if last_sample_ms is None:
            return True
        return now_ms - last_sample_ms >= self.sample_spacing_ms


POLICIES: Dict[SensorSource, PollingPolicy] = {
    SensorSource.sensorcommunity: PollingPolicy(
        source=SensorSource.sensorcommunity, poll_interval=60.0
    ),
    SensorSource.nightingale: PollingPolicy(
        source=SensorSource.nightingale, poll_interval=1.0, sample_spacing_ms=5000
    ),
}


def policy_for(source: Optional[str]) -> PollingPolicy:
    try:
        return POLICIES[SensorSource(source)]
    except (ValueError, KeyError):
        raise UnknownSource(f"No polling policy for source {source!r}.") from None


class LiveWindow:
    """FIFO window of chart samples that drops the oldest entry when full."""

    def __init__(self, capacity: int = DEFAULT_WINDOW_CAPACITY) -> None:
        if capacity <= 0:
            raise ValueError("Window capacity must be positive.")
        self._points: Deque[LivePoint] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._points.maxlen or 0

    @property
    def latest(self) -> Optional[LivePoint]:
        return self._points[-1] if self._points else None

    def append(self, point: LivePoint) -> None:
        self._points.append(point)

    def snapshot(self) -> List[LivePoint]:
        return list(self._points)

    def __len__(self) -> int:
        return len(self._points)


class Subscription:
    """Polling state for one sensor."""

    def __init__(
        self,
        sensor_id: str,
        policy: PollingPolicy,
        fetch: FetchRecent,
        *,
        on_reading: Optional[ReadingCallback] = None,
        on_sample: Optional[SampleCallback] = None,
        clock: Optional[Clock] = None,
        window_capacity: int = DEFAULT_WINDOW_CAPACITY,
        on_cancel: Optional[Callable[["Subscription"], None]] = None,
    ) -> None:
        self.sensor_id = sensor_id
        self.policy = policy
        self.window = LiveWindow(window_capacity)
        self.latest: Optional[Reading] = None
        self._fetch = fetch
        self._on_reading = on_reading
        self._on_sample = on_sample
        self._on_cancel = on_cancel
        self._clock = clock or epoch_ms
        self._last_sample_ms: Optional[int] = None
        self._issued_seq = 0
        self._applied_seq = 0
        self._in_flight = False
        self._cancelled = False
        self._timer: Optional[asyncio.Task[None]] = None
        self._polls: Set[asyncio.Task[bool]] = set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def start(self) -> "Subscription":
        """Start the fixed-interval timer on the running event loop."""
        if self._cancelled:
            raise RuntimeError(f"Subscription for sensor {self.sensor_id!r} was cancelled.")
        if self._timer is None:
            loop = asyncio.get_running_loop()
            self._timer = loop.create_task(self._run(), name=f"live-poll:{self.sensor_id}")
        return self

    async def tick(self) -> bool:
        """Run one poll. Returns True when the latest reading was updated."""
        if self._cancelled:
            return False
        if self._in_flight:
            logger.debug(
                "Previous poll still in flight; skipping tick",
                extra={"sensor_id": self.sensor_id, "seq": self._issued_seq},
            )
            return False

        self._issued_seq += 1
        seq = self._issued_seq
        self._in_flight = True
        try:
            reading = await self._fetch(self.sensor_id)
        except FetchFailure as exc:
            logger.warning(
                "Live poll failed",
                extra={
                    "sensor_id": self.sensor_id,
                    "source": self.policy.source.value,
                    "seq": seq,
                    "status_code": exc.status_code,
                    "reason": exc.reason,
                },
            )
            return False
        except Exception:  # log and keep the timer alive
            logger.exception(
                "Unexpected error during live poll",
                extra={"sensor_id": self.sensor_id, "seq": seq},
            )
            return False
        finally:
            self._in_flight = False

        if self._cancelled:
            return False
        if seq <= self._applied_seq:
            logger.debug(
                "Discarding stale poll response",
                extra={"sensor_id": self.sensor_id, "seq": seq},
            )
            return False

        self._applied_seq = seq
        self._apply(reading)
        return True

    def cancel(self) -> None:
        """Stop the timer and any pending poll. Safe to call more than once."""
        if self._cancelled:
            return
        self._cancelled = True
        if self._timer is not None:
            self._timer.cancel()
        for poll in list(self._polls):
            poll.cancel()
        if self._on_cancel is not None:
            self._on_cancel(self)
        logger.info("Stopped live polling", extra={"sensor_id": self.sensor_id})

    async def aclose(self) -> None:
        """Cancel and wait until the timer and pending polls have finished."""
        self.cancel()
        pending: List[asyncio.Task] = list(self._polls)
        if self._timer is not None:
            pending.append(self._timer)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def _apply(self, reading: Reading) -> None:
        self.latest = reading
        if self._on_reading is not None:
            self._on_reading(reading)

        now = self._clock()
        if not self.policy.should_sample(now, self._last_sample_ms):
            return
        self._last_sample_ms = now
        point = LivePoint(t=now, dba=reading.noise_equivalent)
        self.window.append(point)
        if self._on_sample is not None:
            self._on_sample(point)

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        next_tick = loop.time()
        while not self._cancelled:
            # Polls run as their own tasks so a slow response never delays the timer.
            poll = loop.create_task(self.tick())
            self._polls.add(poll)
            poll.add_done_callback(self._polls.discard)
            next_tick += self.policy.poll_interval
            await asyncio.sleep(max(0.0, next_tick - loop.time()))


class NullSubscription:
    """Stand-in for sensors whose source has no polling policy."""

    policy = None
    latest: Optional[Reading] = None

    def __init__(self, sensor_id: str) -> None:
        self.sensor_id = sensor_id
        self.window = LiveWindow()
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def running(self) -> bool:
        return False

    def start(self) -> "NullSubscription":
        return self

    async def tick(self) -> bool:
        return False

    def cancel(self) -> None:
        self._cancelled = True

    async def aclose(self) -> None:
        self.cancel()


AnySubscription = Union[Subscription, NullSubscription]


class LiveSampler:
    """Starts and stops per-sensor live polling."""

    def __init__(
        self,
        fetch: FetchRecent,
        clock: Optional[Clock] = None,
        window_capacity: int = DEFAULT_WINDOW_CAPACITY,
    ) -> None:
        self._fetch = fetch
        self._clock = clock
        self._window_capacity = window_capacity
        self._subscriptions: Dict[str, Subscription] = {}

    def start_polling(
        self,
        sensor_id: str,
        policy: Union[PollingPolicy, SensorSource, str, None],
        on_reading: Optional[ReadingCallback] = None,
        on_sample: Optional[SampleCallback] = None,
    ) -> AnySubscription:
        """Start polling ``sensor_id``, replacing any running subscription for it."""
        self.stop(sensor_id)

        if not isinstance(policy, PollingPolicy):
            try:
                policy = policy_for(policy)
            except UnknownSource as exc:
                logger.warning(
                    "Live polling disabled",
                    extra={"sensor_id": sensor_id, "source": policy, "reason": str(exc)},
                )
                return NullSubscription(sensor_id)

        subscription = Subscription(
            sensor_id,
            policy,
            self._fetch,
            on_reading=on_reading,
            on_sample=on_sample,
            clock=self._clock,
            window_capacity=self._window_capacity,
            on_cancel=self._forget,
        )
        self._subscriptions[sensor_id] = subscription
        subscription.start()
        logger.info(
            "Started live polling",
            extra={"sensor_id": sensor_id, "source": policy.source.value},
        )
        return subscription

    def subscription(self, sensor_id: str) -> Optional[Subscription]:
        return self._subscriptions.get(sensor_id)

    def stop(self, sensor_id: str) -> None:
        subscription = self._subscriptions.pop(sensor_id, None)
        if subscription is not None:
            subscription.cancel()

    def stop_all(self) -> None:
        while self._subscriptions:
            _, subscription = self._subscriptions.popitem()
            subscription.cancel()

    def _forget(self, subscription: Subscription) -> None:
        # A replaced subscription must not evict its successor.
        if self._subscriptions.get(subscription.sensor_id) is subscription:
            del self._subscriptions[subscription.sensor_id]
