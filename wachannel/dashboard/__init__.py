"""JSON dashboard API over the channel lifecycle."""

from __future__ import annotations

from typing import Any

__all__ = ["DashboardConfig", "DashboardRuntime", "config_from_env", "create_app"]


def __getattr__(name: str) -> Any:
    if name == "create_app":
        from .server import create_app

        return create_app
    if name == "DashboardRuntime":
        from .runtime import DashboardRuntime

        return DashboardRuntime
    if name in ("DashboardConfig", "config_from_env"):
        from . import config

        return getattr(config, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
