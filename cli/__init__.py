"""CLI package for running the air quality monitor from a shell or cron."""

from importlib import import_module
from types import ModuleType


def __getattr__(name: str) -> ModuleType:
    if name == "app":
        return import_module("cli.app")
    raise AttributeError(name)

# ``cli.app`` must keep resolving to the module so tests can patch
# ``cli.app.build_default_monitor``; the Typer instance is not re-exported.

__all__ = []
