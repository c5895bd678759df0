from __future__ import annotations

from typing import Any, Optional

from wachannel.core.state import ConnectionState, ConnectionStatus, utc_now
from wachannel.utils.qr import pairing_image

from .base import Binding


class PairingPanel(Binding):
    """Shows the pairing QR code and drives connect / regenerate."""

    kind = "pairing_panel"

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._image_for: Optional[str] = None
        self._image: Optional[str] = None

    def _qr_image(self, payload: str) -> str:
        if payload != self._image_for:
            self._image = pairing_image(payload)
            self._image_for = payload
        assert self._image is not None
        return self._image

    def render(self) -> dict[str, Any]:
        state = self.state
        payload = state.pairing_payload
        expires_in = None
        deadline = self.controller.deadline(self.channel_id)
        if deadline is not None and state.status is ConnectionStatus.QR_PENDING:
            expires_in = max(0, int((deadline - utc_now()).total_seconds()))
        return {
            "status": state.status.value,
            "visible": state.status is ConnectionStatus.QR_PENDING,
            "qr": payload,
            "qrImage": self._qr_image(payload) if payload else None,
            "expiresIn": expires_in,
            "canConnect": self._can_connect(state),
            "canRegenerate": state.status is not ConnectionStatus.CONNECTED and self.pending is None,
            "message": state.last_error,
        }

    def _can_connect(self, state: ConnectionState) -> bool:
        if self.pending is not None or self.controller.in_flight(self.channel_id):
            return False
        return state.status in (ConnectionStatus.DISCONNECTED, ConnectionStatus.ERROR)

    async def connect(self):
        return await self._submit("connect", lambda: self.controller.connect(self.channel_id))

    async def regenerate(self):
        return await self._submit("restart", lambda: self.controller.restart(self.channel_id))

    async def disconnect(self):
        return await self._submit("disconnect", lambda: self.controller.disconnect(self.channel_id))
