from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Optional

import typer

from cli.config import CLIConfig, load_config
from cli.render import (
    render_history,
    render_live,
    render_samples,
    render_sensors,
    render_verdict,
)
from logging_config import configure_logging
from services.aggregator import chart_bounds
from services.backend_client import FetchFailure, NoiseBackendClient
from services.bucketer import RANGE_MODES, Bucketer
from services.classifier import classify
from services.feed import SensorFeedService
from services.timezones import build_default_resolver


@dataclass
class CLIState:
    config: CLIConfig


app = typer.Typer(
    help="Browse normalized noise readings from the sensor backend.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def build_feed(config: CLIConfig) -> SensorFeedService:
    return SensorFeedService(
        client=NoiseBackendClient(base_url=config.base_url),
        resolver=build_default_resolver(),
        bucketer=Bucketer(),
    )


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        raise typer.Exit(code=1, message="CLI state is uninitialized.")
    return state


def _fail(exc: FetchFailure) -> None:
    typer.secho(f"Request failed: {exc.reason}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1)


async def _prime_location(feed: SensorFeedService, sensor_id: str) -> None:
    """Learn the sensor's location and source; live data stays unlocalized without it."""
    if await feed.ensure_location(sensor_id) is None:
        typer.secho(
            "Location unavailable; timestamps are shown as received.",
            fg=typer.colors.YELLOW,
            err=True,
        )


@app.callback()
def main(
    ctx: typer.Context,
    base_url: Optional[str] = typer.Option(
        None,
        "--base-url",
        "-b",
        help="Backend API base URL (defaults to NOISE_API_BASE_URL env or http://localhost:8080/api).",
    ),
) -> None:
    """Entry point for the CLI."""
    configure_logging()
    ctx.obj = CLIState(config=load_config(base_url=base_url))


@app.command("sensors")
def sensors_command(ctx: typer.Context) -> None:
    """List sensors known to the backend."""
    state = _get_state(ctx)

    async def run() -> None:
        feed = build_feed(state.config)
        try:
            render_sensors(await feed.list_sensors())
        except FetchFailure as exc:
            _fail(exc)
        finally:
            await feed.aclose()

    asyncio.run(run())


@app.command("history")
def history_command(
    ctx: typer.Context,
    sensor_id: str = typer.Argument(..., help="Sensor identifier."),
    range_mode: str = typer.Option("week", "--range", "-r", help="One of alltime, day, week, month."),
    daily: bool = typer.Option(False, "--daily", help="Average each calendar day instead of sampling it."),
) -> None:
    """Print the bucketed trend series for a sensor."""
    if range_mode not in RANGE_MODES:
        raise typer.BadParameter(
            f"Expected one of {', '.join(RANGE_MODES)}.", param_hint="--range"
        )
    state = _get_state(ctx)

    async def run() -> None:
        feed = build_feed(state.config)
        try:
            load = feed.load_daily if daily else feed.load_history
            view = await load(sensor_id, range_mode)
            render_history(view, chart_bounds(view.points))
        except FetchFailure as exc:
            _fail(exc)
        finally:
            await feed.aclose()

    asyncio.run(run())


@app.command("live")
def live_command(
    ctx: typer.Context,
    sensor_id: str = typer.Argument(..., help="Sensor identifier."),
) -> None:
    """Print the latest reading in sensor-local time with its verdict."""
    state = _get_state(ctx)

    async def run() -> None:
        feed = build_feed(state.config)
        try:
            await _prime_location(feed, sensor_id)
            view = await feed.fetch_live(sensor_id)
            render_live(view)
            render_verdict(view.verdict)
        except FetchFailure as exc:
            _fail(exc)
        finally:
            await feed.aclose()

    asyncio.run(run())


@app.command("watch")
def watch_command(
    ctx: typer.Context,
    sensor_id: str = typer.Argument(..., help="Sensor identifier."),
    seconds: Optional[float] = typer.Option(
        None, "--seconds", "-s", help="How long to poll before exiting."
    ),
    source: Optional[str] = typer.Option(
        None, "--source", help="Override the polling source (sensorcommunity or nightingale)."
    ),
) -> None:
    """Poll a sensor at its source's cadence and print every update."""
    state = _get_state(ctx)
    duration = seconds if seconds is not None else state.config.watch_seconds

    async def run() -> None:
        feed = build_feed(state.config)
        try:
            await _prime_location(feed, sensor_id)
            subscription = feed.start_live(sensor_id, on_update=render_live, source=source)
            if not subscription.running:
                typer.secho(
                    "No live polling for this sensor's source.",
                    fg=typer.colors.YELLOW,
                )
                return
            await asyncio.sleep(duration)
            await subscription.aclose()
            typer.echo()
            render_samples(subscription.window.snapshot())
        finally:
            await feed.aclose()

    asyncio.run(run())


@app.command("classify")
def classify_command(
    level: float = typer.Argument(..., help="A-weighted level in dB."),
    night: bool = typer.Option(False, "--night/--day", help="Apply the night limit."),
) -> None:
    """Classify a level against the WHO day or night limit."""
    render_verdict(classify(level, night))
