from __future__ import annotations

from typing import Any

from wachannel.core.state import utc_now

from .base import Binding


class StatsPanel(Binding):
    """Read-only message counters for the connected session."""

    kind = "stats_panel"

    def render(self) -> dict[str, Any]:
        state = self.state
        summary = self.controller.message_summary(self.channel_id)
        uptime = None
        if state.connected_at is not None:
            uptime = max(0, int((utc_now() - state.connected_at).total_seconds()))
        return {
            **summary,
            "uptimeSeconds": uptime,
            "number": state.identity.external_number if state.identity else None,
            "displayName": state.identity.display_name if state.identity else None,
            "total": state.counters.messages_sent + state.counters.messages_received,
        }
