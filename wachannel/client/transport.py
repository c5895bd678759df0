"""Push and poll delivery of channel events into the lifecycle controller."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import Any, Optional

from wachannel.client.controller import LifecycleController
from wachannel.core.errors import EventDecodeError, TransportError
from wachannel.core.events import ChannelEvent, ChannelFailed, parse_event, snapshot_to_events
from wachannel.core.state import ConnectionStatus
from wachannel.infra.push import PushSource

logger = logging.getLogger(__name__)

BACKEND_UNREACHABLE = "backend unreachable"
HEARTBEAT_TYPES = frozenset({"heartbeat", "ping", "ready"})


@dataclass
class Backoff:
    initial: float = 1.0
    factor: float = 2.0
    maximum: float = 30.0
    attempts: int = 0

    def next_delay(self) -> float:
        delay = min(self.maximum, self.initial * (self.factor ** self.attempts))
        self.attempts += 1
        return delay

    def reset(self) -> None:
        self.attempts = 0


class TransportAdapter:
    """Normalizes a push subscription and a status-poll fallback into events.

    The push stream is preferred. While it is down the adapter reconnects with
    exponential backoff, polls every watched channel on a fixed interval and
    marks those channels as degraded. Terminal events may arrive through both
    paths; the controller treats repeats as no-ops.
    """

    def __init__(
        self,
        controller: LifecycleController,
        push_source: Optional[PushSource] = None,
        **config_overrides: Any,
    ) -> None:
        self.controller = controller
        self.backend = controller.backend
        self.push_source = push_source
        self.config: dict[str, Any] = {**controller.config, **config_overrides}
        self.backoff = Backoff(
            initial=float(self.config["push_backoff_initial"]),
            factor=float(self.config["push_backoff_factor"]),
            maximum=float(self.config["push_backoff_max"]),
        )

        self._watched: set[str] = set()
        self._poll_failures: dict[str, int] = {}
        self._push_healthy: Optional[bool] = None
        self._running = False
        self._push_task: asyncio.Task[None] | None = None
        self._poll_task: asyncio.Task[None] | None = None
        controller.on_remove(self.unwatch)

    @property
    def push_healthy(self) -> bool:
        return bool(self._push_healthy)

    @property
    def watched(self) -> frozenset[str]:
        return frozenset(self._watched)

    def watch(self, channel_id: str) -> None:
        self.controller.state(channel_id)
        self._watched.add(channel_id)
        self._poll_failures.setdefault(channel_id, 0)
        if self._push_healthy is False:
            self.controller.set_degraded(channel_id, True)

    def unwatch(self, channel_id: str) -> None:
        self._watched.discard(channel_id)
        self._poll_failures.pop(channel_id, None)

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        if self.push_source is not None:
            self._push_task = asyncio.create_task(self._push_loop(), name="wachannel-push")
        self._poll_task = asyncio.create_task(self._poll_loop(), name="wachannel-poll")

    async def stop(self) -> None:
        self._running = False
        for task in (self._push_task, self._poll_task):
            if task is not None:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._push_task = None
        self._poll_task = None
        if self.push_source is not None:
            await self.push_source.close()

    # -- push ----------------------------------------------------------------

    async def _push_loop(self) -> None:
        assert self.push_source is not None
        while self._running:
            reason = "push stream closed"
            try:
                async for raw in self.push_source.events():
                    self._mark_push(True)
                    await self.deliver(raw)
            except asyncio.CancelledError:
                raise
            except TransportError as exc:
                reason = str(exc)
            except Exception as exc:
                logger.exception("push loop crashed")
                reason = str(exc)
            self._mark_push(False, reason)
            if not self._running:
                return
            await asyncio.sleep(self.backoff.next_delay())

    async def deliver(self, raw: dict[str, Any]) -> Optional[ChannelEvent]:
        """Decode and dispatch one push frame; malformed frames are dropped."""
        if raw.get("type") in HEARTBEAT_TYPES:
            return None
        try:
            event = parse_event(raw)
        except EventDecodeError as exc:
            logger.warning("dropping push event: %s", exc)
            return None
        if event.channel_id not in self._watched:
            logger.debug("ignoring %s for unwatched channel %s", event.type, event.channel_id)
            return None
        await self.controller.dispatch(event)
        return event

    def _mark_push(self, healthy: bool, reason: Optional[str] = None) -> None:
        if self._push_healthy is healthy:
            return
        self._push_healthy = healthy
        if healthy:
            self.backoff.reset()
            logger.info("push channel established")
        else:
            logger.warning(
                "push channel lost (%s); polling every %ss",
                reason,
                self.config["poll_interval"],
            )
        for channel_id in list(self._watched):
            self.controller.set_degraded(channel_id, not healthy)

    # -- poll ----------------------------------------------------------------

    async def _poll_loop(self) -> None:
        interval = float(self.config["poll_interval"])
        while self._running:
            if not self._push_healthy:
                for channel_id in list(self._watched):
                    try:
                        await self.poll_once(channel_id)
                    except Exception:
                        logger.exception("status poll for %s failed", channel_id)
            await asyncio.sleep(interval)

    async def poll_once(self, channel_id: str) -> list[ChannelEvent]:
        """Fetch one status snapshot and dispatch the events it implies."""
        if not self.controller.store.has(channel_id):
            self.unwatch(channel_id)
            return []
        if self.controller.in_flight(channel_id):
            return []
        generation = self.controller.state(channel_id).generation
        try:
            snapshot = await asyncio.wait_for(
                self.backend.status(channel_id),
                timeout=float(self.config["request_timeout"]),
            )
        except (TransportError, asyncio.TimeoutError) as exc:
            await self._record_poll_failure(channel_id, generation, exc)
            return []

        if not self.controller.store.has(channel_id):
            # removed while the poll was outstanding
            self.unwatch(channel_id)
            return []
        self._poll_failures[channel_id] = 0
        if self.controller.in_flight(channel_id):
            return []
        try:
            events = snapshot_to_events(channel_id, snapshot, generation)
        except EventDecodeError as exc:
            logger.warning("unusable status snapshot for %s: %s", channel_id, exc)
            return []
        for event in events:
            await self.controller.dispatch(event)
        return events

    async def _record_poll_failure(self, channel_id: str, generation: int, exc: BaseException) -> None:
        if not self.controller.store.has(channel_id):
            self.unwatch(channel_id)
            return
        failures = self._poll_failures.get(channel_id, 0) + 1
        self._poll_failures[channel_id] = failures
        logger.warning("status poll for %s failed (%s/%s): %s", channel_id, failures, self.config["max_poll_failures"], exc)
        if failures != int(self.config["max_poll_failures"]) or self._push_healthy:
            return
        status = self.controller.state(channel_id).status
        if status in (ConnectionStatus.DISCONNECTED, ConnectionStatus.ERROR):
            return
        await self.controller.dispatch(ChannelFailed(channel_id, BACKEND_UNREACHABLE, generation))
