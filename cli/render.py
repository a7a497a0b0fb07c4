from __future__ import annotations

from typing import Any, Dict, Iterable

import typer

_VALUE_FIELDS = {
    "temperature": ("temperature",),
    "pressure": ("pressure",),
    "speed": ("speed",),
    "location": ("latitude", "longitude", "altitude"),
}


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def format_reading(kind: str, reading: Dict[str, Any]) -> str:
    values = " ".join(
        f"{name}={reading.get(name)}" for name in _VALUE_FIELDS.get(kind, ())
    )
    return f"{reading.get('timestamp')}  {values}".rstrip()


def render_page(kind: str, payload: Dict[str, Any], number: int = 1) -> int:
    """Print one page of readings and return how many it held."""
    items: Iterable[Dict[str, Any]] = payload.get("items") or []
    items = list(items)
    echo_heading(f"Page {number} ({len(items)} {kind} readings)")
    if not items:
        typer.echo("No readings.")
    for reading in items:
        typer.echo(f"  {format_reading(kind, reading)}")
    page_state = payload.get("pagestate")
    if page_state:
        typer.echo(f"pagestate: {page_state}")
    return len(items)
