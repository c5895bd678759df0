"""Default configuration values for wachannel."""

from .config import DEFAULT_BACKEND_URL, DEFAULT_CHANNEL_CONFIG, PUSH_MODES

__all__ = ["DEFAULT_BACKEND_URL", "DEFAULT_CHANNEL_CONFIG", "PUSH_MODES"]
