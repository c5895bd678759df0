"""Connection lifecycle client for WhatsApp business channels."""

__version__ = "0.1.0"

__all__ = [
    "LifecycleController",
    "SessionStore",
    "TransportAdapter",
    "BackendClient",
    "ConnectionState",
    "ConnectionStatus",
    "Message",
    "ChannelError",
    "create_app",
]


def __getattr__(name: str) -> object:
    """Lazy exports so importing the package does not pull in flask or websockets."""
    if name in {"LifecycleController", "SessionStore", "TransportAdapter"}:
        from .client import LifecycleController, SessionStore, TransportAdapter

        return {
            "LifecycleController": LifecycleController,
            "SessionStore": SessionStore,
            "TransportAdapter": TransportAdapter,
        }[name]

    if name == "BackendClient":
        from .infra.backend import BackendClient

        return BackendClient

    if name in {"ConnectionState", "ConnectionStatus", "Message", "ChannelError"}:
        from .core import ChannelError, ConnectionState, ConnectionStatus, Message

        return {
            "ConnectionState": ConnectionState,
            "ConnectionStatus": ConnectionStatus,
            "Message": Message,
            "ChannelError": ChannelError,
        }[name]

    if name == "create_app":
        from .dashboard.server import create_app

        return create_app

    raise AttributeError(f"module 'wachannel' has no attribute {name!r}")
