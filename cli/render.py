from __future__ import annotations

from typing import Any, Iterable, Sequence, Tuple

import typer

from models.readings import LivePoint, SensorSummary
from services.classifier import Verdict
from services.feed import HistoryView, LiveView

_VERDICT_COLORS = {
    Verdict.ok: typer.colors.GREEN,
    Verdict.caution: typer.colors.YELLOW,
    Verdict.high: typer.colors.RED,
}


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def render_verdict(verdict: Verdict) -> None:
    typer.secho(f"{verdict.value} ({verdict.color})", fg=_VERDICT_COLORS[verdict], bold=True)
    typer.echo(verdict.advisory)


def render_sensors(sensors: Sequence[SensorSummary]) -> None:
    echo_heading("Sensors")
    if not sensors:
        typer.echo("No sensors reported.")
        return
    for sensor in sensors:
        typer.echo(
            f"  - {sensor.id} [{sensor.source or 'unknown'}] "
            f"{sensor.country or '??'} ({sensor.latitude}, {sensor.longitude})"
        )


def render_history(view: HistoryView, bounds: Tuple[int, int]) -> None:
    echo_heading("Sensor History")
    location = view.location
    echo_key_values(
        [
            ("sensor_id", view.sensor_id),
            ("range", view.range_mode),
            ("granularity", view.granularity.value),
            ("source", location.source if location else None),
            ("timezone", location.timezone if location else None),
            ("y_axis", f"{bounds[0]}..{bounds[1]} dB"),
        ]
    )

    typer.echo()
    echo_heading("Points")
    if not view.points:
        typer.echo("No readings in this range.")
        return
    for point in view.points:
        typer.echo(
            f"  {point.timestamp}  LAeq={point.laeq:.1f}  "
            f"LAmax={point.lamax:.1f}  LAmin={point.lamin:.1f}"
        )


def render_live(view: LiveView) -> None:
    reading = view.reading
    period = "night" if view.is_night else "day"
    typer.secho(
        f"{reading.timestamp or '--'}  LAeq={reading.noise_equivalent:.1f} dB  "
        f"[{period}] {view.verdict.value}",
        fg=_VERDICT_COLORS[view.verdict],
    )


def render_samples(points: Sequence[LivePoint]) -> None:
    echo_heading("Chart Samples")
    if not points:
        typer.echo("No samples collected.")
        return
    for point in points:
        typer.echo(f"  t={point.t}  dba={point.dba:.1f}")
