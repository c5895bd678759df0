"""Connection lifecycle state machine for messaging channels."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections import OrderedDict
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Optional, TypeVar

from wachannel.client.store import SessionStore
from wachannel.core.errors import (
    AlreadyConnected,
    Busy,
    ChannelError,
    CommandTimeout,
    NotConnected,
    SendFailed,
    TransportError,
    UnknownChannel,
)
from wachannel.core.events import (
    Authenticated,
    ChannelEvent,
    ChannelFailed,
    Connected,
    Disconnected,
    MessageInbound,
    MessageOutboundAck,
    PairingIssued,
    parse_expiry,
    snapshot_to_events,
)
from wachannel.core.state import (
    ConnectionState,
    ConnectionStatus,
    Counters,
    DeliveryStatus,
    Message,
    MessageDirection,
    utc_now,
)
from wachannel.defaults.config import DEFAULT_CHANNEL_CONFIG
from wachannel.infra.backend import BackendPort

logger = logging.getLogger(__name__)

T = TypeVar("T")

PAIRING_EXPIRED = "pairing expired"
AUTH_TIMED_OUT = "authentication timed out"

# commands a send waits out instead of failing with Busy
TEARDOWN_COMMANDS = frozenset({"disconnect", "restart", "remove"})
COUNTED_ACK_STATUSES = frozenset({DeliveryStatus.PENDING, DeliveryStatus.SENT})


class LifecycleController:
    """Validates commands and events and commits transitions to the store.

    All mutation of :class:`SessionStore` goes through this class. Commands
    (connect, disconnect, restart, send_test_message) are serialized per
    channel: a second command issued while one is awaiting the backend fails
    with :class:`Busy`. A send issued during a teardown waits for it
    instead. Events are applied synchronously in arrival order.
    """

    def __init__(
        self,
        backend: BackendPort,
        store: Optional[SessionStore] = None,
        **config_overrides: Any,
    ) -> None:
        self.backend = backend
        self.store = store or SessionStore()
        self.config: dict[str, Any] = {**DEFAULT_CHANNEL_CONFIG, **config_overrides}

        self._locks: dict[str, asyncio.Lock] = {}
        self._inflight: dict[str, str] = {}
        self._deadlines: dict[str, asyncio.TimerHandle] = {}
        self._deadline_at: dict[str, datetime] = {}
        self._seen_messages: dict[str, OrderedDict[str, Message]] = {}
        self._removal_listeners: list[Callable[[str], None]] = []

    # -- read side -----------------------------------------------------------

    def state(self, channel_id: str) -> ConnectionState:
        return self.store.get(channel_id)

    def snapshot(self, channel_id: str) -> dict[str, Any]:
        return self.store.get(channel_id).to_dict()

    def message_summary(self, channel_id: str) -> dict[str, Any]:
        state = self.store.get(channel_id)
        return {
            "channelId": channel_id,
            "status": state.status.value,
            "connectedAt": state.connected_at.isoformat() if state.connected_at else None,
            **state.counters.to_dict(),
        }

    def deadline(self, channel_id: str) -> Optional[datetime]:
        """When the current qr_pending or authenticating phase expires."""
        return self._deadline_at.get(channel_id)

    def in_flight(self, channel_id: str) -> Optional[str]:
        """Name of the lifecycle command currently awaiting the backend."""
        return self._inflight.get(channel_id)

    async def fetch_messages(self, channel_id: str) -> list[Message]:
        raw_items = await self._call("fetch_messages", self.backend.messages(channel_id))
        messages: list[Message] = []
        for item in raw_items:
            try:
                messages.append(Message.from_dict(channel_id, item))
            except ValueError as exc:
                logger.debug("skipping malformed message for %s: %s", channel_id, exc)
        return messages

    # -- commands ------------------------------------------------------------

    async def connect(self, channel_id: str) -> ConnectionState:
        async with self._command(channel_id, "connect"):
            state = self.store.get(channel_id)
            if state.status is ConnectionStatus.CONNECTED:
                raise AlreadyConnected(f"channel {channel_id} is already connected")
            if state.status in (ConnectionStatus.QR_PENDING, ConnectionStatus.AUTHENTICATING):
                return state
            return await self._pair(channel_id, "connect")

    async def disconnect(self, channel_id: str) -> ConnectionState:
        async with self._command(channel_id, "disconnect"):
            state = self.store.get(channel_id)
            if state.status is ConnectionStatus.DISCONNECTED:
                return state
            return await self._teardown(channel_id, "disconnect")

    async def restart(self, channel_id: str) -> ConnectionState:
        async with self._command(channel_id, "restart"):
            state = self.store.get(channel_id)
            if state.status not in (ConnectionStatus.DISCONNECTED, ConnectionStatus.ERROR):
                await self._teardown(channel_id, "restart")
            return await self._pair(channel_id, "restart")

    async def send_test_message(self, channel_id: str, destination: str, body: str) -> Message:
        state = self.store.get(channel_id)
        if not state.is_connected:
            raise NotConnected(f"channel {channel_id} is {state.status.value}")

        lock = self._locks.get(channel_id)
        if lock is not None and lock.locked() and self._inflight.get(channel_id) in TEARDOWN_COMMANDS:
            # let the teardown settle, then re-check
            await self._call("send_test_message", self._wait_idle(lock))

        async with self._command(channel_id, "send_test_message"):
            state = self.store.get(channel_id)
            if not state.is_connected:
                raise NotConnected(f"channel {channel_id} is {state.status.value}")
            generation = state.generation
            response = await self._call("send_test_message", self.backend.send(channel_id, destination, body))
        if not response.get("success"):
            error = response.get("error") or "send failed"
            logger.warning("test message on %s failed: %s", channel_id, error)
            raise SendFailed(str(error))

        message_id = response.get("messageId") or f"local-{int(time.time() * 1000)}"
        sender = state.identity.external_number if state.identity else ""
        message = Message(
            id=str(message_id),
            channel_id=channel_id,
            direction=MessageDirection.OUTBOUND,
            sender=sender,
            recipient=destination,
            body=body,
            delivery_status=DeliveryStatus.SENT,
        )

        current = self.store.get(channel_id)
        if current.is_connected and current.generation == generation and self._remember(message):
            self._commit(current, current.evolve(counters=current.counters.bump(sent=1)))
            self.store.publish_message(message)
        return message

    async def remove_channel(self, channel_id: str) -> None:
        if not self.store.has(channel_id):
            raise UnknownChannel(channel_id)
        async with self._command(channel_id, "remove"):
            if self.store.get(channel_id).status is not ConnectionStatus.DISCONNECTED:
                await self._teardown(channel_id, "remove")
            self._cancel_deadline(channel_id)
            self._seen_messages.pop(channel_id, None)
            self.store.remove(channel_id)
        self._locks.pop(channel_id, None)
        logger.info("channel %s removed", channel_id, extra={"channel_id": channel_id})
        for listener in list(self._removal_listeners):
            listener(channel_id)

    def on_remove(self, callback: Callable[[str], None]) -> None:
        """Register ``callback(channel_id)`` to run after a channel is removed."""
        self._removal_listeners.append(callback)

    def set_degraded(self, channel_id: str, degraded: bool) -> None:
        state = self.store.get(channel_id)
        if state.degraded != degraded:
            self._commit(state, state.evolve(degraded=degraded))

    def close(self) -> None:
        for handle in self._deadlines.values():
            handle.cancel()
        self._deadlines.clear()
        self._deadline_at.clear()

    # -- events --------------------------------------------------------------

    async def dispatch(self, event: ChannelEvent) -> bool:
        return self.apply(event)

    def apply(self, event: ChannelEvent) -> bool:
        """Apply one transport event. Returns True when state or feed changed."""
        state = self.store.get(event.channel_id)
        if event.generation is not None and event.generation != state.generation:
            logger.debug(
                "discarding stale %s for %s (generation %s, current %s)",
                event.type,
                event.channel_id,
                event.generation,
                state.generation,
            )
            return False

        if isinstance(event, PairingIssued):
            return self._on_pairing_issued(state, event)
        if isinstance(event, Authenticated):
            return self._on_authenticated(state)
        if isinstance(event, Connected):
            return self._on_connected(state, event)
        if isinstance(event, Disconnected):
            return self._on_disconnected(state, event)
        if isinstance(event, ChannelFailed):
            return self._on_failed(state, event)
        if isinstance(event, MessageInbound):
            return self._on_inbound(state, event)
        if isinstance(event, MessageOutboundAck):
            return self._on_outbound_ack(state, event)
        raise TypeError(f"unsupported event: {event!r}")

    def _on_pairing_issued(self, state: ConnectionState, event: PairingIssued) -> bool:
        if state.status is not ConnectionStatus.QR_PENDING or state.pairing_payload == event.pairing_payload:
            return False
        committed = self._commit(state, state.evolve(pairing_payload=event.pairing_payload))
        if event.expires_at is not None:
            self._arm_deadline(committed, event.expires_at)
        return True

    def _on_authenticated(self, state: ConnectionState) -> bool:
        if state.status is not ConnectionStatus.QR_PENDING:
            return False
        self._commit(state, state.evolve(status=ConnectionStatus.AUTHENTICATING, pairing_payload=None))
        return True

    def _on_connected(self, state: ConnectionState, event: Connected) -> bool:
        if state.status is ConnectionStatus.CONNECTED:
            return False
        if state.status is ConnectionStatus.DISCONNECTED and event.generation is None:
            return False
        self._seen_messages.pop(state.channel_id, None)
        self._commit(
            state,
            state.evolve(
                status=ConnectionStatus.CONNECTED,
                pairing_payload=None,
                last_error=None,
                identity=event.identity,
                connected_at=utc_now(),
                counters=Counters(),
            ),
        )
        return True

    def _on_disconnected(self, state: ConnectionState, event: Disconnected) -> bool:
        if state.status is ConnectionStatus.DISCONNECTED:
            return False
        if event.reason:
            logger.info("backend dropped %s: %s", state.channel_id, event.reason)
        self._commit(state, _cleared(state, ConnectionStatus.DISCONNECTED))
        return True

    def _on_failed(self, state: ConnectionState, event: ChannelFailed) -> bool:
        if state.status is ConnectionStatus.ERROR and state.last_error == event.message:
            return False
        if state.status is ConnectionStatus.DISCONNECTED and event.generation is None:
            return False
        self._commit(state, _cleared(state, ConnectionStatus.ERROR, last_error=event.message))
        return True

    def _on_inbound(self, state: ConnectionState, event: MessageInbound) -> bool:
        if not state.is_connected or not self._remember(event.message):
            return False
        self._commit(state, state.evolve(counters=state.counters.bump(received=1)))
        self.store.publish_message(event.message)
        return True

    def _on_outbound_ack(self, state: ConnectionState, event: MessageOutboundAck) -> bool:
        seen = self._seen_messages.get(state.channel_id, OrderedDict())
        known = seen.get(event.message_id)
        if known is not None:
            if known.delivery_status == event.delivery_status:
                return False
            updated = replace(known, delivery_status=event.delivery_status)
            seen[event.message_id] = updated
            self.store.publish_message(updated)
            return True

        if not state.is_connected:
            return False
        message = event.message or Message(
            id=event.message_id,
            channel_id=state.channel_id,
            direction=MessageDirection.OUTBOUND,
            sender=state.identity.external_number if state.identity else "",
            recipient="",
            body="",
        )
        message = replace(message, delivery_status=event.delivery_status)
        self._remember(message)
        # later-stage acks may belong to a message counted before a reconnect
        if event.delivery_status in COUNTED_ACK_STATUSES:
            self._commit(state, state.evolve(counters=state.counters.bump(sent=1)))
        self.store.publish_message(message)
        return True

    # -- internals -----------------------------------------------------------

    @contextlib.asynccontextmanager
    async def _command(self, channel_id: str, name: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(channel_id, asyncio.Lock())
        if lock.locked():
            raise Busy(f"{self._inflight.get(channel_id, 'a command')} is already in flight for {channel_id}")
        async with lock:
            self._inflight[channel_id] = name
            try:
                yield
            finally:
                self._inflight.pop(channel_id, None)

    @staticmethod
    async def _wait_idle(lock: asyncio.Lock) -> None:
        async with lock:
            return

    async def _call(self, command: str, awaitable: Awaitable[T]) -> T:
        timeout = float(self.config["command_timeout"])
        try:
            return await asyncio.wait_for(awaitable, timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise CommandTimeout(command, timeout) from exc

    async def _pair(self, channel_id: str, command: str) -> ConnectionState:
        previous = self.store.get(channel_id)
        generation = previous.generation + 1
        self._commit(previous, _cleared(previous, ConnectionStatus.QR_PENDING, generation=generation))
        try:
            response = await self._call(command, self.backend.connect(channel_id, generation))
        except (CommandTimeout, TransportError) as exc:
            logger.warning(
                "%s on %s failed, restoring %s: %s",
                command,
                channel_id,
                previous.status.value,
                exc,
                extra={"channel_id": channel_id, "command": command},
            )
            current = self.store.get(channel_id)
            if current.generation == generation:
                # keep the bumped generation so late replies to this attempt are never reused
                restored = replace(previous, generation=generation, degraded=current.degraded, updated_at=utc_now())
                self._commit(current, restored)
            raise

        if response.get("status"):
            try:
                events = snapshot_to_events(channel_id, response, generation)
            except ChannelError as exc:
                logger.debug("ignoring %s response for %s: %s", command, channel_id, exc)
                events = []
            for event in events:
                if not isinstance(event, Disconnected):
                    self.apply(event)
        elif response.get("pairingPayload"):
            self.apply(PairingIssued(channel_id, str(response["pairingPayload"]), generation, parse_expiry(response)))
        return self.store.get(channel_id)

    async def _teardown(self, channel_id: str, command: str) -> ConnectionState:
        await self._call(command, self.backend.disconnect(channel_id))
        state = self.store.get(channel_id)
        return self._commit(
            state,
            _cleared(state, ConnectionStatus.DISCONNECTED, generation=state.generation + 1),
        )

    def _commit(self, previous: ConnectionState, state: ConnectionState) -> ConnectionState:
        self.store.commit(state)
        if state.status is not previous.status or state.generation != previous.generation:
            logger.info(
                "channel %s: %s -> %s (generation %s)",
                state.channel_id,
                previous.status.value,
                state.status.value,
                state.generation,
                extra={"channel_id": state.channel_id, "generation": state.generation},
            )
            self._arm_deadline(state)
        return state

    def _arm_deadline(self, state: ConnectionState, expires_at: Optional[datetime] = None) -> None:
        self._cancel_deadline(state.channel_id)
        if state.status is ConnectionStatus.QR_PENDING and expires_at is not None:
            timeout = max(0.0, (expires_at - utc_now()).total_seconds())
        elif state.status is ConnectionStatus.QR_PENDING:
            timeout = float(self.config["pairing_timeout"])
        elif state.status is ConnectionStatus.AUTHENTICATING:
            timeout = float(self.config["auth_timeout"])
        else:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("no running loop; %s deadline for %s not armed", state.status.value, state.channel_id)
            return
        self._deadlines[state.channel_id] = loop.call_later(
            timeout,
            self._on_deadline,
            state.channel_id,
            state.generation,
            state.status,
        )
        self._deadline_at[state.channel_id] = utc_now() + timedelta(seconds=timeout)

    def _cancel_deadline(self, channel_id: str) -> None:
        self._deadline_at.pop(channel_id, None)
        handle = self._deadlines.pop(channel_id, None)
        if handle is not None:
            handle.cancel()

    def _on_deadline(self, channel_id: str, generation: int, status: ConnectionStatus) -> None:
        self._deadlines.pop(channel_id, None)
        self._deadline_at.pop(channel_id, None)
        if not self.store.has(channel_id):
            return
        state = self.store.get(channel_id)
        if state.generation != generation or state.status is not status:
            return
        message = PAIRING_EXPIRED if status is ConnectionStatus.QR_PENDING else AUTH_TIMED_OUT
        logger.warning("channel %s: %s", channel_id, message, extra={"channel_id": channel_id})
        self._commit(state, _cleared(state, ConnectionStatus.ERROR, last_error=message))

    def _remember(self, message: Message) -> bool:
        """Record a message id. Returns False if it was already counted."""
        seen = self._seen_messages.setdefault(message.channel_id, OrderedDict())
        if message.id in seen:
            return False
        seen[message.id] = message
        overflow = len(seen) - int(self.config["max_seen_message_ids"])
        for _ in range(max(0, overflow)):
            seen.popitem(last=False)
        return True


def _cleared(state: ConnectionState, status: ConnectionStatus, **changes: Any) -> ConnectionState:
    """State with every status-specific field reset, then ``changes`` applied."""
    return state.evolve(
        status=status,
        pairing_payload=None,
        identity=None,
        last_error=None,
        connected_at=None,
        counters=Counters(),
        **changes,
    )
