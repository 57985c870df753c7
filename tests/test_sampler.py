"""Tests for live polling, sample gating and cancellation."""

from __future__ import annotations

import asyncio
from typing import List, Union

import pytest

from models.readings import LivePoint, Reading, SensorSource
from services.backend_client import FetchFailure
from services.sampler import (
    LiveSampler,
    LiveWindow,
    NullSubscription,
    PollingPolicy,
    Subscription,
    UnknownSource,
    policy_for,
)


def _reading(laeq: float, timestamp: str = "2024-01-15T10:30:00Z") -> Reading:
    return Reading(timestamp=timestamp, noise_equivalent=laeq, noise_max=laeq + 5, noise_min=laeq - 5)


class ScriptedFetch:
    """Returns (or raises) queued results, then repeats a default reading."""

    def __init__(self, results: List[Union[Reading, Exception]] | None = None) -> None:
        self.results = list(results or [])
        self.calls = 0

    async def __call__(self, sensor_id: str) -> Reading:
        self.calls += 1
        result = self.results.pop(0) if self.results else _reading(float(self.calls))
        if isinstance(result, Exception):
            raise result
        return result


class BlockingFetch:
    """Holds every poll until ``release`` is set."""

    def __init__(self) -> None:
        self.release = asyncio.Event()
        self.calls = 0

    async def __call__(self, sensor_id: str) -> Reading:
        self.calls += 1
        await self.release.wait()
        return _reading(70.0)


class FakeClock:
    def __init__(self, start: int = 0) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now


def test_policies_per_source() -> None:
    community = policy_for("sensorcommunity")
    nightingale = policy_for(SensorSource.nightingale)

    assert (community.poll_interval, community.sample_spacing_ms) == (60.0, 0)
    assert (nightingale.poll_interval, nightingale.sample_spacing_ms) == (1.0, 5000)


@pytest.mark.parametrize("source", [None, "", "purpleair", "NIGHTINGALE"])
def test_unknown_sources_have_no_policy(source) -> None:
    with pytest.raises(UnknownSource):
        policy_for(source)


def test_window_drops_oldest_beyond_capacity() -> None:
    window = LiveWindow(capacity=3)
    for t in range(5):
        window.append(LivePoint(t=t, dba=float(t)))

    assert [point.t for point in window.snapshot()] == [2, 3, 4]
    assert len(window) == 3
    assert window.latest == LivePoint(t=4, dba=4.0)


def test_nightingale_samples_every_five_seconds_and_window_stays_bounded() -> None:
    clock = FakeClock()
    fetch = ScriptedFetch()
    readings: List[Reading] = []
    subscription = Subscription(
        "abc", policy_for("nightingale"), fetch, on_reading=readings.append, clock=clock
    )

    async def scenario() -> None:
        for _ in range(600):
            assert await subscription.tick() is True
            clock.now += 1000

    asyncio.run(scenario())

    samples = subscription.window.snapshot()
    assert len(readings) == 600
    assert subscription.latest == readings[-1]
    assert len(samples) == 60
    assert samples[0].t == 300_000
    assert samples[-1].t == 595_000
    assert all(earlier.t < later.t for earlier, later in zip(samples, samples[1:]))


def test_nightingale_gating_over_120_ticks() -> None:
    clock = FakeClock()
    sampled: List[LivePoint] = []
    subscription = Subscription(
        "abc", policy_for("nightingale"), ScriptedFetch(), on_sample=sampled.append, clock=clock
    )

    async def scenario() -> None:
        for _ in range(120):
            await subscription.tick()
            clock.now += 1000

    asyncio.run(scenario())

    assert [point.t for point in sampled] == list(range(0, 120_000, 5000))
    assert len(subscription.window) == 24


def test_sensorcommunity_samples_every_poll() -> None:
    clock = FakeClock()
    subscription = Subscription("abc", policy_for("sensorcommunity"), ScriptedFetch(), clock=clock)

    async def scenario() -> None:
        for _ in range(120):
            await subscription.tick()
            clock.now += 60_000

    asyncio.run(scenario())

    samples = subscription.window.snapshot()
    assert len(samples) == 60
    assert samples[-1].t == 119 * 60_000
    assert samples[-1].dba == 120.0


def test_fetch_failure_does_not_block_next_tick(caplog) -> None:
    fetch = ScriptedFetch([FetchFailure("boom", status_code=503), _reading(42.0)])
    subscription = Subscription("abc", policy_for("nightingale"), fetch, clock=FakeClock())

    async def scenario() -> tuple[bool, bool]:
        return await subscription.tick(), await subscription.tick()

    with caplog.at_level("WARNING"):
        first, second = asyncio.run(scenario())

    assert (first, second) == (False, True)
    assert subscription.latest == _reading(42.0)
    assert "Live poll failed" in caplog.text


def test_unexpected_errors_are_logged_and_survived(caplog) -> None:
    fetch = ScriptedFetch([KeyError("noise_LAeq"), _reading(44.0)])
    subscription = Subscription("abc", policy_for("nightingale"), fetch, clock=FakeClock())

    async def scenario() -> tuple[bool, bool]:
        return await subscription.tick(), await subscription.tick()

    with caplog.at_level("ERROR"):
        assert asyncio.run(scenario()) == (False, True)
    assert "Unexpected error during live poll" in caplog.text


def test_cancelled_subscription_does_not_poll_and_cancel_is_idempotent() -> None:
    fetch = ScriptedFetch()
    subscription = Subscription("abc", policy_for("nightingale"), fetch, clock=FakeClock())

    subscription.cancel()
    subscription.cancel()

    assert asyncio.run(subscription.tick()) is False
    assert fetch.calls == 0
    assert subscription.cancelled is True


def test_response_arriving_after_cancel_is_discarded() -> None:
    updates: List[Reading] = []
    samples: List[LivePoint] = []

    async def scenario() -> bool:
        fetch = BlockingFetch()
        subscription = Subscription(
            "abc",
            policy_for("nightingale"),
            fetch,
            on_reading=updates.append,
            on_sample=samples.append,
            clock=FakeClock(),
        )
        pending = asyncio.ensure_future(subscription.tick())
        await asyncio.sleep(0)
        subscription.cancel()
        fetch.release.set()
        applied = await pending
        assert subscription.latest is None
        return applied

    assert asyncio.run(scenario()) is False
    assert updates == []
    assert samples == []


def test_overlapping_poll_is_skipped_while_one_is_in_flight() -> None:
    async def scenario() -> tuple[bool, bool, int]:
        fetch = BlockingFetch()
        subscription = Subscription("abc", policy_for("nightingale"), fetch, clock=FakeClock())
        first = asyncio.ensure_future(subscription.tick())
        await asyncio.sleep(0)
        overlapping = await subscription.tick()
        fetch.release.set()
        return await first, overlapping, fetch.calls

    applied, overlapping, calls = asyncio.run(scenario())

    assert applied is True
    assert overlapping is False
    assert calls == 1


def test_timer_polls_on_fixed_interval_until_closed() -> None:
    policy = PollingPolicy(source=SensorSource.nightingale, poll_interval=0.01)
    fetch = ScriptedFetch()

    async def scenario() -> tuple[int, int]:
        subscription = Subscription("abc", policy, fetch).start()
        assert subscription.running is True
        await asyncio.sleep(0.06)
        await subscription.aclose()
        calls_at_close = fetch.calls
        await asyncio.sleep(0.03)
        assert subscription.running is False
        return calls_at_close, fetch.calls

    calls_at_close, calls_later = asyncio.run(scenario())

    assert calls_at_close >= 3
    assert calls_later == calls_at_close


def test_sampler_returns_null_subscription_for_unknown_source() -> None:
    fetch = ScriptedFetch()

    async def scenario() -> NullSubscription:
        sampler = LiveSampler(fetch)
        subscription = sampler.start_polling("abc", "purpleair")
        assert sampler.subscription("abc") is None
        return subscription

    subscription = asyncio.run(scenario())

    assert isinstance(subscription, NullSubscription)
    assert subscription.running is False
    assert asyncio.run(subscription.tick()) is False
    subscription.cancel()
    subscription.cancel()
    assert fetch.calls == 0


def test_restarting_a_sensor_replaces_its_subscription() -> None:
    async def scenario() -> None:
        sampler = LiveSampler(ScriptedFetch())
        first = sampler.start_polling("abc", "sensorcommunity")
        second = sampler.start_polling("abc", "nightingale")

        assert first.cancelled is True
        assert sampler.subscription("abc") is second
        assert second.policy.source is SensorSource.nightingale

        sampler.stop_all()
        assert second.cancelled is True
        await second.aclose()

    asyncio.run(scenario())


def test_cancelling_directly_releases_the_sensor_slot() -> None:
    async def scenario() -> None:
        sampler = LiveSampler(ScriptedFetch())
        first = sampler.start_polling("abc", "nightingale")
        second = sampler.start_polling("abc", "nightingale")

        await first.aclose()
        assert sampler.subscription("abc") is second

        await second.aclose()
        assert sampler.subscription("abc") is None

    asyncio.run(scenario())


def test_sensors_keep_independent_state() -> None:
    clock = FakeClock()
    loud = Subscription("loud", policy_for("nightingale"), ScriptedFetch(), clock=clock)
    quiet = Subscription("quiet", policy_for("nightingale"), ScriptedFetch(), clock=clock)

    async def scenario() -> None:
        await loud.tick()
        clock.now = 3000
        await quiet.tick()
        clock.now = 5000
        await loud.tick()
        await quiet.tick()

    asyncio.run(scenario())

    # Each subscription gates on its own last sample, not the other's.
    assert [point.t for point in loud.window.snapshot()] == [0, 5000]
    assert [point.t for point in quiet.window.snapshot()] == [3000]
    assert quiet.latest == _reading(2.0)
