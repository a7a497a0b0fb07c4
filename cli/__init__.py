"""CLI package for interacting with the spacecraft telemetry service."""

from importlib import import_module
from types import ModuleType


def __getattr__(name: str) -> ModuleType:
    # ``cli.app`` names the module; the Typer object is ``cli.app.app``.
    if name == "app":
        return import_module("cli.app")
    raise AttributeError(name)


__all__ = []
