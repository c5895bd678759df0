"""Client package public exports."""

from .controller import LifecycleController
from .store import SessionStore
from .transport import Backoff, TransportAdapter

__all__ = ["LifecycleController", "SessionStore", "TransportAdapter", "Backoff"]
