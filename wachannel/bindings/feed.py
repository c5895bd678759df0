from __future__ import annotations

from dataclasses import replace
from typing import Any, Optional

from wachannel.client.controller import LifecycleController
from wachannel.core.state import ConnectionStatus, Message, MessageDirection
from wachannel.utils.numbers import normalize_wa_id

from .base import Binding


class MessageFeed(Binding):
    """Transient list of recent messages plus the send-test form.

    Messages arrive from the controller through the store's message channel
    and from :meth:`load_history`. A message is never rewritten once added,
    except for the delivery status of outbound messages.
    """

    kind = "message_feed"

    def __init__(self, controller: LifecycleController, channel_id: str, max_messages: Optional[int] = None) -> None:
        super().__init__(controller, channel_id)
        self.max_messages = int(max_messages or controller.config["max_feed_messages"])
        self._messages: dict[str, Message] = {}

    @property
    def messages(self) -> list[Message]:
        return sorted(self._messages.values(), key=lambda item: item.timestamp)

    def attach(self) -> "MessageFeed":
        if not self._attached:
            self.controller.store.subscribe_messages(self.channel_id, self._on_message)
        super().attach()
        return self

    def detach(self) -> None:
        if self._attached:
            self.controller.store.unsubscribe_messages(self.channel_id, self._on_message)
        super().detach()

    def clear(self) -> None:
        self._messages.clear()
        self.refresh()

    def add(self, message: Message) -> bool:
        existing = self._messages.get(message.id)
        if existing is not None:
            if existing.direction is not MessageDirection.OUTBOUND:
                return False
            if existing.delivery_status == message.delivery_status:
                return False
            self._messages[message.id] = replace(existing, delivery_status=message.delivery_status)
            return True
        self._messages[message.id] = message
        while len(self._messages) > self.max_messages:
            oldest = min(self._messages.values(), key=lambda item: item.timestamp)
            del self._messages[oldest.id]
        return message.id in self._messages

    def _on_message(self, message: Message) -> None:
        if self.add(message):
            self.refresh()

    async def load_history(self) -> int:
        messages = await self._submit("load_history", lambda: self.controller.fetch_messages(self.channel_id))
        added = sum(1 for message in messages or [] if self.add(message))
        if added:
            self.refresh()
        return added

    async def send_test(self, destination: str, body: str) -> Optional[Message]:
        text = (body or "").strip()
        if not text:
            self.last_error = "message body is required"
            self.refresh()
            return None
        try:
            number = normalize_wa_id(destination)
        except ValueError as exc:
            self.last_error = str(exc)
            self.refresh()
            return None
        return await self._submit(
            "send_test_message",
            lambda: self.controller.send_test_message(self.channel_id, number, text),
        )

    def render(self) -> dict[str, Any]:
        state = self.state
        return {
            "status": state.status.value,
            "messages": [message.to_dict() for message in self.messages],
            "canSend": state.status is ConnectionStatus.CONNECTED and self.pending is None,
        }
