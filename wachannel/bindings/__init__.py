"""Reactive presentation bindings over the session store."""

from .base import Binding
from .feed import MessageFeed
from .pairing import PairingPanel
from .stats import StatsPanel
from .status import StatusBadge

__all__ = ["Binding", "MessageFeed", "PairingPanel", "StatsPanel", "StatusBadge"]
