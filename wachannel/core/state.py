"""Connection state and message projections for a messaging channel."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from .errors import InvalidStateError


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


class ConnectionStatus(str, Enum):
    DISCONNECTED = "disconnected"
    QR_PENDING = "qr_pending"
    AUTHENTICATING = "authenticating"
    CONNECTED = "connected"
    ERROR = "error"


class MessageDirection(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class DeliveryStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class Identity:
    external_number: str
    display_name: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {"externalNumber": self.external_number, "displayName": self.display_name}


@dataclass(frozen=True, slots=True)
class Counters:
    messages_sent: int = 0
    messages_received: int = 0

    def bump(self, *, sent: int = 0, received: int = 0) -> "Counters":
        return Counters(self.messages_sent + sent, self.messages_received + received)

    def to_dict(self) -> dict[str, int]:
        return {"messagesSent": self.messages_sent, "messagesReceived": self.messages_received}


@dataclass(frozen=True, slots=True)
class ConnectionState:
    """Immutable snapshot of one channel's connection.

    A new instance replaces the old one on every committed transition, so
    subscribers never observe a partially updated state.
    """

    channel_id: str
    status: ConnectionStatus = ConnectionStatus.DISCONNECTED
    pairing_payload: Optional[str] = None
    identity: Optional[Identity] = None
    last_error: Optional[str] = None
    connected_at: Optional[datetime] = None
    counters: Counters = field(default_factory=Counters)
    generation: int = 0
    degraded: bool = False
    updated_at: datetime = field(default_factory=utc_now)

    @classmethod
    def initial(cls, channel_id: str) -> "ConnectionState":
        return cls(channel_id=channel_id)

    @property
    def is_connected(self) -> bool:
        return self.status is ConnectionStatus.CONNECTED

    def evolve(self, **changes: Any) -> "ConnectionState":
        changes.setdefault("updated_at", utc_now())
        return replace(self, **changes)

    def same_as(self, other: "ConnectionState") -> bool:
        """Compare everything except the commit timestamp."""
        return replace(self, updated_at=other.updated_at) == other

    def check(self) -> "ConnectionState":
        status = self.status
        if not isinstance(status, ConnectionStatus):
            raise InvalidStateError(f"unknown status {status!r}")
        if self.pairing_payload is not None and status is not ConnectionStatus.QR_PENDING:
            raise InvalidStateError(f"pairing payload present while {status.value}")
        if (self.identity is not None) != (status is ConnectionStatus.CONNECTED):
            raise InvalidStateError(f"identity must be set only while connected (status={status.value})")
        if (self.connected_at is not None) != (status is ConnectionStatus.CONNECTED):
            raise InvalidStateError(f"connected_at must be set only while connected (status={status.value})")
        if (self.last_error is not None) != (status is ConnectionStatus.ERROR):
            raise InvalidStateError(f"last_error must be set only in error (status={status.value})")
        if self.counters.messages_sent < 0 or self.counters.messages_received < 0:
            raise InvalidStateError("counters cannot be negative")
        return self

    def to_dict(self) -> dict[str, Any]:
        return {
            "channelId": self.channel_id,
            "status": self.status.value,
            "pairingPayload": self.pairing_payload,
            "identity": self.identity.to_dict() if self.identity else None,
            "lastError": self.last_error,
            "connectedAt": self.connected_at.isoformat() if self.connected_at else None,
            "counters": self.counters.to_dict(),
            "generation": self.generation,
            "degraded": self.degraded,
            "updatedAt": self.updated_at.isoformat(),
        }


@dataclass(slots=True)
class Message:
    id: str
    channel_id: str
    direction: MessageDirection
    sender: str
    recipient: str
    body: str
    timestamp: datetime = field(default_factory=utc_now)
    delivery_status: DeliveryStatus = DeliveryStatus.SENT

    @classmethod
    def from_dict(cls, channel_id: str, data: dict[str, Any]) -> "Message":
        message_id = data.get("id") or data.get("messageId")
        if not isinstance(message_id, str) or not message_id:
            raise ValueError("message payload is missing an id")
        direction = MessageDirection(data.get("direction", MessageDirection.INBOUND.value))
        default_status = DeliveryStatus.SENT if direction is MessageDirection.OUTBOUND else DeliveryStatus.DELIVERED
        return cls(
            id=message_id,
            channel_id=channel_id,
            direction=direction,
            sender=str(data.get("sender") or data.get("from") or ""),
            recipient=str(data.get("recipient") or data.get("to") or ""),
            body=str(data.get("body") or data.get("text") or ""),
            timestamp=parse_timestamp(data.get("timestamp")),
            delivery_status=DeliveryStatus(data.get("deliveryStatus") or data.get("status") or default_status.value),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "channelId": self.channel_id,
            "direction": self.direction.value,
            "sender": self.sender,
            "recipient": self.recipient,
            "body": self.body,
            "timestamp": self.timestamp.isoformat(),
            "deliveryStatus": self.delivery_status.value,
        }


def parse_timestamp(raw: Any) -> datetime:
    """Accept ISO strings, epoch seconds or epoch milliseconds."""
    if isinstance(raw, datetime):
        return raw if raw.tzinfo else raw.replace(tzinfo=timezone.utc)
    if isinstance(raw, (int, float)) and raw > 0:
        seconds = raw / 1000 if raw >= 10**12 else raw
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    if isinstance(raw, str) and raw:
        try:
            parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            return utc_now()
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return utc_now()
