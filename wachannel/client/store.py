"""Process-local store holding one ConnectionState per channel."""

from __future__ import annotations

import logging
from collections.abc import Callable

from wachannel.core.errors import UnknownChannel
from wachannel.core.state import ConnectionState, Message

logger = logging.getLogger(__name__)

StateCallback = Callable[[ConnectionState], None]
MessageCallback = Callable[[Message], None]


class SessionStore:
    """Single source of truth for channel connection state.

    Readers use :meth:`get` and :meth:`subscribe`. Only the lifecycle
    controller calls :meth:`commit` and :meth:`publish_message`.
    """

    def __init__(self) -> None:
        self._states: dict[str, ConnectionState] = {}
        self._subscribers: dict[str, list[StateCallback]] = {}
        self._message_subscribers: dict[str, list[MessageCallback]] = {}

    def get(self, channel_id: str) -> ConnectionState:
        state = self._states.get(channel_id)
        if state is None:
            state = ConnectionState.initial(channel_id)
            self._states[channel_id] = state
        return state

    def has(self, channel_id: str) -> bool:
        return channel_id in self._states

    def channels(self) -> list[str]:
        return list(self._states)

    def subscribe(self, channel_id: str, callback: StateCallback) -> None:
        self.get(channel_id)
        self._subscribers.setdefault(channel_id, []).append(callback)

    def unsubscribe(self, channel_id: str, callback: StateCallback) -> None:
        callbacks = self._subscribers.get(channel_id, [])
        if callback in callbacks:
            callbacks.remove(callback)

    def subscribe_messages(self, channel_id: str, callback: MessageCallback) -> None:
        self._message_subscribers.setdefault(channel_id, []).append(callback)

    def unsubscribe_messages(self, channel_id: str, callback: MessageCallback) -> None:
        callbacks = self._message_subscribers.get(channel_id, [])
        if callback in callbacks:
            callbacks.remove(callback)

    def commit(self, state: ConnectionState) -> ConnectionState:
        state.check()
        self._states[state.channel_id] = state
        for callback in list(self._subscribers.get(state.channel_id, [])):
            try:
                callback(state)
            except Exception:
                logger.exception("state subscriber failed for channel %s", state.channel_id)
        return state

    def publish_message(self, message: Message) -> None:
        for callback in list(self._message_subscribers.get(message.channel_id, [])):
            try:
                callback(message)
            except Exception:
                logger.exception("message subscriber failed for channel %s", message.channel_id)

    def remove(self, channel_id: str) -> None:
        if channel_id not in self._states:
            raise UnknownChannel(channel_id)
        del self._states[channel_id]
        self._subscribers.pop(channel_id, None)
        self._message_subscribers.pop(channel_id, None)
