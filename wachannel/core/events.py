"""Normalized channel events delivered by push and poll transports.

Each event type is its own dataclass carrying only the fields that are valid
for it. ``parse_event`` maps the wire form ``{type, channelId, payload}`` onto
these variants; ``snapshot_to_events`` does the same for status polls.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Union

from .errors import EventDecodeError
from .state import ConnectionStatus, DeliveryStatus, Identity, Message, parse_timestamp


@dataclass(frozen=True, slots=True)
class PairingIssued:
    channel_id: str
    pairing_payload: str
    generation: Optional[int] = None
    expires_at: Optional[datetime] = None
    type = "pairing_issued"


@dataclass(frozen=True, slots=True)
class Authenticated:
    channel_id: str
    generation: Optional[int] = None
    type = "authenticated"


@dataclass(frozen=True, slots=True)
class Connected:
    channel_id: str
    identity: Identity
    generation: Optional[int] = None
    type = "connected"


@dataclass(frozen=True, slots=True)
class Disconnected:
    channel_id: str
    reason: Optional[str] = None
    generation: Optional[int] = None
    type = "disconnected"


@dataclass(frozen=True, slots=True)
class MessageInbound:
    channel_id: str
    message: Message
    generation: Optional[int] = None
    type = "message_inbound"


@dataclass(frozen=True, slots=True)
class MessageOutboundAck:
    channel_id: str
    message_id: str
    delivery_status: DeliveryStatus = DeliveryStatus.SENT
    message: Optional[Message] = None
    generation: Optional[int] = None
    type = "message_outbound_ack"


@dataclass(frozen=True, slots=True)
class ChannelFailed:
    channel_id: str
    message: str
    generation: Optional[int] = None
    type = "error"


ChannelEvent = Union[
    PairingIssued,
    Authenticated,
    Connected,
    Disconnected,
    MessageInbound,
    MessageOutboundAck,
    ChannelFailed,
]

TERMINAL_EVENTS = (Connected, Disconnected, ChannelFailed)


def is_terminal(event: ChannelEvent) -> bool:
    return isinstance(event, TERMINAL_EVENTS)


def _generation(payload: dict[str, Any]) -> Optional[int]:
    raw = payload.get("generation")
    if raw is None:
        return None
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise EventDecodeError(f"invalid generation: {raw!r}") from exc


def parse_expiry(payload: dict[str, Any]) -> Optional[datetime]:
    """Backend-provided expiry of a pairing payload, if any."""
    raw = payload.get("expiresAt")
    if isinstance(raw, bool) or not isinstance(raw, (str, int, float)) or not raw:
        return None
    return parse_timestamp(raw)


def _identity(payload: dict[str, Any]) -> Identity:
    raw = payload.get("identity") if isinstance(payload.get("identity"), dict) else payload
    number = raw.get("externalNumber") or raw.get("number") or raw.get("phoneNumber")
    if not isinstance(number, str) or not number:
        raise EventDecodeError("connected event is missing an identity number")
    name = raw.get("displayName") or raw.get("name")
    return Identity(external_number=number, display_name=name if isinstance(name, str) else None)


def parse_event(raw: dict[str, Any]) -> ChannelEvent:
    """Decode one wire event. Raises EventDecodeError on malformed input."""
    if not isinstance(raw, dict):
        raise EventDecodeError(f"event must be an object, got {type(raw).__name__}")
    event_type = raw.get("type")
    channel_id = raw.get("channelId") or raw.get("channel_id")
    if not isinstance(channel_id, str) or not channel_id:
        raise EventDecodeError(f"event {event_type!r} is missing channelId")
    payload = raw.get("payload") or {}
    if not isinstance(payload, dict):
        raise EventDecodeError(f"event {event_type!r} payload must be an object")
    generation = _generation(payload)

    if event_type == "pairing_issued":
        pairing = payload.get("pairingPayload") or payload.get("qr")
        if not isinstance(pairing, str) or not pairing:
            raise EventDecodeError("pairing_issued event has no pairingPayload")
        return PairingIssued(channel_id, pairing, generation, parse_expiry(payload))
    if event_type == "authenticated":
        return Authenticated(channel_id, generation)
    if event_type == "connected":
        return Connected(channel_id, _identity(payload), generation)
    if event_type == "disconnected":
        reason = payload.get("reason")
        return Disconnected(channel_id, str(reason) if reason else None, generation)
    if event_type == "message_inbound":
        data = payload.get("message") if isinstance(payload.get("message"), dict) else payload
        try:
            message = Message.from_dict(channel_id, {"direction": "inbound", **data})
        except ValueError as exc:
            raise EventDecodeError(f"invalid inbound message: {exc}") from exc
        return MessageInbound(channel_id, message, generation)
    if event_type == "message_outbound_ack":
        data = payload.get("message") if isinstance(payload.get("message"), dict) else payload
        message_id = data.get("id") or data.get("messageId")
        if not isinstance(message_id, str) or not message_id:
            raise EventDecodeError("message_outbound_ack event has no message id")
        try:
            status = DeliveryStatus(data.get("deliveryStatus") or data.get("status") or "sent")
            message = Message.from_dict(channel_id, {"direction": "outbound", **data}) if "body" in data else None
        except ValueError as exc:
            raise EventDecodeError(f"invalid outbound ack: {exc}") from exc
        return MessageOutboundAck(channel_id, message_id, status, message, generation)
    if event_type == "error":
        message = payload.get("message") or payload.get("error") or "unknown error"
        return ChannelFailed(channel_id, str(message), generation)
    raise EventDecodeError(f"unknown event type: {event_type!r}")


def snapshot_to_events(
    channel_id: str,
    snapshot: dict[str, Any],
    generation: Optional[int] = None,
) -> list[ChannelEvent]:
    """Translate a polled status snapshot into the equivalent event(s)."""
    raw_status = snapshot.get("status")
    try:
        status = ConnectionStatus(raw_status)
    except ValueError as exc:
        raise EventDecodeError(f"unknown status in snapshot: {raw_status!r}") from exc

    if status is ConnectionStatus.DISCONNECTED:
        return [Disconnected(channel_id, snapshot.get("reason"), generation)]
    if status is ConnectionStatus.QR_PENDING:
        pairing = snapshot.get("pairingPayload") or snapshot.get("qr")
        if isinstance(pairing, str) and pairing:
            return [PairingIssued(channel_id, pairing, generation, parse_expiry(snapshot))]
        return []
    if status is ConnectionStatus.AUTHENTICATING:
        return [Authenticated(channel_id, generation)]
    if status is ConnectionStatus.CONNECTED:
        return [Connected(channel_id, _identity(snapshot), generation)]
    message = snapshot.get("lastError") or snapshot.get("error") or "unknown error"
    return [ChannelFailed(channel_id, str(message), generation)]
