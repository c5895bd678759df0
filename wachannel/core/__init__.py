from .errors import (
    AlreadyConnected,
    Busy,
    ChannelError,
    CommandTimeout,
    EventDecodeError,
    InvalidStateError,
    NotConnected,
    SendFailed,
    TransportError,
    UnknownChannel,
)
from .events import (
    Authenticated,
    ChannelEvent,
    ChannelFailed,
    Connected,
    Disconnected,
    MessageInbound,
    MessageOutboundAck,
    PairingIssued,
    parse_event,
    snapshot_to_events,
)
from .state import (
    ConnectionState,
    ConnectionStatus,
    Counters,
    DeliveryStatus,
    Identity,
    Message,
    MessageDirection,
)

__all__ = [
    "AlreadyConnected",
    "Busy",
    "ChannelError",
    "CommandTimeout",
    "EventDecodeError",
    "InvalidStateError",
    "NotConnected",
    "SendFailed",
    "TransportError",
    "UnknownChannel",
    "Authenticated",
    "ChannelEvent",
    "ChannelFailed",
    "Connected",
    "Disconnected",
    "MessageInbound",
    "MessageOutboundAck",
    "PairingIssued",
    "parse_event",
    "snapshot_to_events",
    "ConnectionState",
    "ConnectionStatus",
    "Counters",
    "DeliveryStatus",
    "Identity",
    "Message",
    "MessageDirection",
]
