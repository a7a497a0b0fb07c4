from __future__ import annotations

from typing import Any, Dict, Iterator, List, Optional

import httpx
import typer

from cli.config import CLIConfig


class ApiClient:
    """Minimal HTTP client for the telemetry service."""

    def __init__(self, config: CLIConfig) -> None:
        self._config = config
        self._client = httpx.Client(base_url=config.base_url, timeout=config.timeout)

    def close(self) -> None:
        self._client.close()

    @staticmethod
    def instrument_path(kind: str, spacecraft: str, journey_id: str) -> str:
        return f"/api/spacecraft/{spacecraft}/{journey_id}/instruments/{kind}"

    def push_readings(
        self, kind: str, spacecraft: str, journey_id: str, readings: List[Dict[str, Any]]
    ) -> str:
        try:
            response = self._client.post(
                self.instrument_path(kind, spacecraft, journey_id),
                json=readings,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        return response.text

    def fetch_page(
        self,
        kind: str,
        spacecraft: str,
        journey_id: str,
        page_size: Optional[int] = None,
        page_state: Optional[str] = None,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {}
        if page_size is not None:
            params["pagesize"] = page_size
        if page_state:
            params["pagestate"] = page_state
        try:
            response = self._client.get(
                self.instrument_path(kind, spacecraft, journey_id),
                params=params,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            self._handle_http_error(exc)
        return response.json()

    def iter_pages(
        self,
        kind: str,
        spacecraft: str,
        journey_id: str,
        page_size: Optional[int] = None,
        page_state: Optional[str] = None,
    ) -> Iterator[Dict[str, Any]]:
        """Yield pages until the service stops returning a page state."""
        while True:
            payload = self.fetch_page(kind, spacecraft, journey_id, page_size, page_state)
            yield payload
            page_state = payload.get("pagestate")
            if not page_state:
                return

    @staticmethod
    def _handle_http_error(exc: httpx.HTTPStatusError) -> None:
        detail: str | None = None
        try:
            data = exc.response.json()
            detail = data.get("detail")
        except Exception:  # noqa: BLE001 - best effort parsing
            detail = exc.response.text.strip()
        message = (
            f"Request failed with status {exc.response.status_code}: {detail or 'no detail provided.'}"
        )
        typer.secho(message, fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
