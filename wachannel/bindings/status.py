from __future__ import annotations

from typing import Any

from wachannel.core.state import ConnectionStatus

from .base import Binding

_BADGES: dict[ConnectionStatus, tuple[str, str]] = {
    ConnectionStatus.DISCONNECTED: ("Disconnected", "destructive"),
    ConnectionStatus.QR_PENDING: ("QR code ready", "default"),
    ConnectionStatus.AUTHENTICATING: ("Connecting", "default"),
    ConnectionStatus.CONNECTED: ("Connected", "success"),
    ConnectionStatus.ERROR: ("Error", "destructive"),
}


class StatusBadge(Binding):
    """Persistent connection badge."""

    kind = "status_badge"

    def render(self) -> dict[str, Any]:
        state = self.state
        label, tone = _BADGES[state.status]
        if state.status is ConnectionStatus.QR_PENDING and state.pairing_payload is None:
            label = "Generating QR code"
        detail = None
        if state.identity is not None:
            detail = state.identity.display_name or state.identity.external_number
        elif state.last_error:
            detail = state.last_error
        return {
            "status": state.status.value,
            "label": label,
            "tone": tone,
            "detail": detail,
            "degraded": state.degraded,
            "busy": self.controller.in_flight(self.channel_id),
        }

    async def disconnect(self):
        return await self._submit("disconnect", lambda: self.controller.disconnect(self.channel_id))
