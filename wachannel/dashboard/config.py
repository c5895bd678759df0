"""Dashboard settings loaded from ``WACHANNEL_*`` environment variables."""

from __future__ import annotations

import os
import uuid
from dataclasses import dataclass, field
from typing import Any

from wachannel.defaults.config import DEFAULT_BACKEND_URL, DEFAULT_CHANNEL_CONFIG, PUSH_MODES


@dataclass
class DashboardConfig:
    backend_url: str = DEFAULT_BACKEND_URL
    channels: list[str] = field(default_factory=lambda: ["default"])
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    push_mode: str = "sse"
    poll_interval: float = float(DEFAULT_CHANNEL_CONFIG["poll_interval"])
    pairing_timeout: float = float(DEFAULT_CHANNEL_CONFIG["pairing_timeout"])
    auth_timeout: float = float(DEFAULT_CHANNEL_CONFIG["auth_timeout"])
    command_timeout: float = float(DEFAULT_CHANNEL_CONFIG["command_timeout"])
    request_timeout: float = float(DEFAULT_CHANNEL_CONFIG["request_timeout"])
    api_token: str | None = None
    log_level: str = "INFO"
    max_events: int = 400

    def __post_init__(self) -> None:
        if self.push_mode not in (*PUSH_MODES, "off"):
            raise ValueError(f"push_mode must be one of {', '.join(PUSH_MODES)} or 'off'")
        if not self.channels:
            raise ValueError("at least one channel must be configured")
        for name in ("poll_interval", "pairing_timeout", "auth_timeout", "command_timeout", "request_timeout"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")

    def channel_overrides(self) -> dict[str, Any]:
        return {
            "backend_url": self.backend_url,
            "push_mode": self.push_mode,
            "poll_interval": self.poll_interval,
            "pairing_timeout": self.pairing_timeout,
            "auth_timeout": self.auth_timeout,
            "command_timeout": self.command_timeout,
            "request_timeout": self.request_timeout,
        }

    def auth_headers(self) -> dict[str, str]:
        if not self.api_token:
            return {}
        return {"Authorization": f"Bearer {self.api_token}"}


def _split_channels(raw: str) -> list[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


def config_from_env() -> DashboardConfig:
    defaults = DashboardConfig()
    return DashboardConfig(
        backend_url=os.getenv("WACHANNEL_BACKEND_URL", defaults.backend_url),
        channels=_split_channels(os.getenv("WACHANNEL_CHANNELS", "default")),
        session_id=os.getenv("WACHANNEL_SESSION_ID", defaults.session_id),
        push_mode=os.getenv("WACHANNEL_PUSH_MODE", defaults.push_mode),
        poll_interval=float(os.getenv("WACHANNEL_POLL_INTERVAL", str(defaults.poll_interval))),
        pairing_timeout=float(os.getenv("WACHANNEL_PAIRING_TIMEOUT", str(defaults.pairing_timeout))),
        auth_timeout=float(os.getenv("WACHANNEL_AUTH_TIMEOUT", str(defaults.auth_timeout))),
        command_timeout=float(os.getenv("WACHANNEL_COMMAND_TIMEOUT", str(defaults.command_timeout))),
        request_timeout=float(os.getenv("WACHANNEL_REQUEST_TIMEOUT", str(defaults.request_timeout))),
        api_token=os.getenv("WACHANNEL_API_TOKEN") or None,
        log_level=os.getenv("WACHANNEL_LOG_LEVEL", defaults.log_level).upper(),
        max_events=int(os.getenv("WACHANNEL_MAX_EVENTS", str(defaults.max_events))),
    )
