from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional


def _utc_now_iso() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


@dataclass(slots=True)
class DashboardEvent:
    kind: str
    source: str
    payload: dict[str, Any]
    channel_id: Optional[str] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    timestamp: str = field(default_factory=_utc_now_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "kind": self.kind,
            "source": self.source,
            "channelId": self.channel_id,
            "payload": self.payload,
        }


class DashboardState:
    """Bounded, thread-safe log of what the dashboard observed."""

    def __init__(self, max_events: int = 300) -> None:
        self._max_events = max(1, int(max_events))
        self._events: list[DashboardEvent] = []
        self._lock = threading.Lock()

    def add_event(self, event: DashboardEvent) -> None:
        with self._lock:
            self._events.append(event)
            overflow = len(self._events) - self._max_events
            if overflow > 0:
                del self._events[:overflow]

    def list_events(self, channel_id: Optional[str] = None) -> list[dict[str, Any]]:
        with self._lock:
            events = list(self._events)
        if channel_id is not None:
            events = [event for event in events if event.channel_id == channel_id]
        return [event.to_dict() for event in events]
