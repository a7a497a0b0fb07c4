from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import typer

from cli.client import ApiClient
from cli.config import CLIConfig, load_config
from cli.render import render_page
from models.readings import MeasurementKind


@dataclass
class CLIState:
    config: CLIConfig
    client: ApiClient


app = typer.Typer(
    help="Utilities for pushing and paging through spacecraft telemetry.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        typer.secho("CLI state is uninitialized.", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    return state


@app.callback()
def main(
    ctx: typer.Context,
    base_url: Optional[str] = typer.Option(
        None,
        "--base-url",
        "-b",
        help="Telemetry API base URL (defaults to API_BASE_URL env or http://localhost:8000).",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="Seconds to wait for each HTTP request.",
    ),
) -> None:
    """Entry point for the CLI."""
    config = load_config(base_url=base_url, timeout=timeout)
    client = ApiClient(config)
    ctx.obj = CLIState(config=config, client=client)
    ctx.call_on_close(client.close)


@app.command("push")
def push_command(
    ctx: typer.Context,
    kind: MeasurementKind = typer.Argument(..., help="Instrument kind."),
    spacecraft: str = typer.Argument(..., help="Spacecraft name."),
    journey_id: str = typer.Argument(..., help="Journey UUID."),
    file: Path = typer.Argument(
        ..., exists=True, dir_okay=False, readable=True, help="JSON file holding an array of readings."
    ),
) -> None:
    """Upload a JSON array of readings for one journey."""
    state = _get_state(ctx)
    try:
        readings = json.loads(file.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise typer.BadParameter(f"{file} is not valid JSON: {exc}") from exc
    if not isinstance(readings, list):
        raise typer.BadParameter(f"{file} must contain a JSON array of readings.")

    typer.echo(f"Pushing {len(readings)} {kind.value} readings to {state.config.base_url} ...")
    ack = state.client.push_readings(kind.value, spacecraft, journey_id, readings)
    typer.secho(f"Service acknowledged: {ack}", fg=typer.colors.GREEN)


@app.command("fetch")
def fetch_command(
    ctx: typer.Context,
    kind: MeasurementKind = typer.Argument(..., help="Instrument kind."),
    spacecraft: str = typer.Argument(..., help="Spacecraft name."),
    journey_id: str = typer.Argument(..., help="Journey UUID."),
    page_size: Optional[int] = typer.Option(None, "--page-size", "-n", help="Readings per page."),
    page_state: Optional[str] = typer.Option(
        None, "--page-state", help="Resume from a page state printed by an earlier fetch."
    ),
    follow: bool = typer.Option(
        False,
        "--all/--one",
        help="Follow page states until the journey is exhausted.",
    ),
) -> None:
    """Print readings for a journey, oldest first."""
    state = _get_state(ctx)
    if not follow:
        payload = state.client.fetch_page(kind.value, spacecraft, journey_id, page_size, page_state)
        render_page(kind.value, payload)
        return

    total = 0
    pages = state.client.iter_pages(kind.value, spacecraft, journey_id, page_size, page_state)
    for number, payload in enumerate(pages, start=1):
        total += render_page(kind.value, payload, number=number)
    typer.secho(f"{total} readings in total.", fg=typer.colors.GREEN)
