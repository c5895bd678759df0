from __future__ import annotations

from typing import Optional


class ChannelError(Exception):
    """Base exception for wachannel."""
    pass


class UnknownChannel(ChannelError, KeyError):
    """Raised when a channel id has never been configured."""

    def __init__(self, channel_id: str):
        super().__init__(f"unknown channel: {channel_id}")
        self.channel_id = channel_id

    def __str__(self) -> str:
        return str(self.args[0])


class AlreadyConnected(ChannelError):
    """Raised by connect() while the channel is already connected."""


class Busy(ChannelError):
    """Raised when another lifecycle command is in flight for the channel."""


class NotConnected(ChannelError):
    """Raised by operations that require a connected channel."""


class CommandTimeout(ChannelError, TimeoutError):
    """Raised when the backend does not acknowledge a command in time."""

    def __init__(self, command: str, timeout: float):
        super().__init__(f"{command} timed out after {timeout:g}s")
        self.command = command
        self.timeout = timeout


class TransportError(ChannelError):
    """Raised when the messaging backend cannot be reached or rejects a call."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class SendFailed(TransportError):
    """Raised when the backend reports that a message could not be sent."""


class InvalidStateError(ChannelError, ValueError):
    """Raised when a ConnectionState violates the per-status field rules."""


class EventDecodeError(ChannelError, ValueError):
    """Raised when a push or poll payload cannot be mapped to an event."""
