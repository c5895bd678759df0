from __future__ import annotations

import asyncio
import atexit
import logging
import threading
from typing import Any, Optional

from wachannel.bindings import MessageFeed, PairingPanel, StatsPanel, StatusBadge
from wachannel.client.controller import LifecycleController
from wachannel.client.transport import TransportAdapter
from wachannel.core.errors import UnknownChannel
from wachannel.core.state import ConnectionState, Message
from wachannel.defaults.config import DEFAULT_CHANNEL_CONFIG
from wachannel.infra.backend import BackendClient, BackendPort
from wachannel.infra.push import PushSource, build_push_source

from .config import DashboardConfig, config_from_env
from .state import DashboardEvent, DashboardState

logger = logging.getLogger(__name__)

_SYNC_MARGIN = 10.0


class _ChannelViews:
    def __init__(self, controller: LifecycleController, channel_id: str) -> None:
        self.badge = StatusBadge(controller, channel_id).attach()
        self.pairing = PairingPanel(controller, channel_id).attach()
        self.stats = StatsPanel(controller, channel_id).attach()
        self.feed = MessageFeed(controller, channel_id).attach()

    def detach(self) -> None:
        for binding in (self.badge, self.pairing, self.stats, self.feed):
            binding.detach()


class DashboardRuntime:
    """Hosts the channel lifecycle on a background event loop for the dashboard.

    Flask handlers run in their own threads; every read and command is
    marshalled onto the loop so the store and bindings are only touched from
    one thread.
    """

    def __init__(
        self,
        config: Optional[DashboardConfig] = None,
        *,
        backend: Optional[BackendPort] = None,
        push_source: Optional[PushSource] = None,
        start_transport: bool = True,
    ) -> None:
        self.config = config or config_from_env()
        self._events = DashboardState(max_events=self.config.max_events)
        self._owns_backend = backend is None
        self.backend: BackendPort = backend or BackendClient(
            self.config.backend_url,
            timeout=self.config.request_timeout,
            headers=self.config.auth_headers(),
        )
        if push_source is None and self.config.push_mode != "off":
            push_kwargs: dict[str, Any] = {}
            if self.config.push_mode == "sse":
                push_kwargs["headers"] = self.config.auth_headers()
            push_source = build_push_source(
                self.config.push_mode,
                self.config.backend_url,
                str(DEFAULT_CHANNEL_CONFIG["push_path"]),
                self.config.session_id,
                **push_kwargs,
            )
        self.controller = LifecycleController(self.backend, **self.config.channel_overrides())
        self.transport = TransportAdapter(self.controller, push_source)
        self._views: dict[str, _ChannelViews] = {}

        self._loop = asyncio.new_event_loop()
        self._started = threading.Event()
        self._thread = threading.Thread(target=self._run_loop, name="wachannel-dashboard-loop", daemon=True)
        self._thread.start()
        self._started.wait(timeout=2.0)

        self._run_coro_sync(self._setup_async(start_transport))
        atexit.register(self.close)

    def _run_loop(self) -> None:
        asyncio.set_event_loop(self._loop)
        self._started.set()
        self._loop.run_forever()

    @property
    def sync_timeout(self) -> float:
        # restart and a send queued behind a teardown each make two backend calls
        return 2 * self.config.command_timeout + _SYNC_MARGIN

    def _run_coro_sync(self, coro: Any) -> Any:
        fut = asyncio.run_coroutine_threadsafe(coro, self._loop)
        return fut.result(timeout=self.sync_timeout)

    async def _setup_async(self, start_transport: bool) -> None:
        for channel_id in self.config.channels:
            self._views[channel_id] = _ChannelViews(self.controller, channel_id)
            self.controller.store.subscribe(channel_id, self._on_state)
            self.controller.store.subscribe_messages(channel_id, self._on_message)
            self.transport.watch(channel_id)
        if start_transport:
            await self.transport.start()

    def _channel(self, channel_id: str) -> _ChannelViews:
        views = self._views.get(channel_id)
        if views is None:
            raise UnknownChannel(channel_id)
        return views

    # -- read side -------------------------------------------------------------

    def channels(self) -> list[str]:
        return list(self._views)

    def health(self) -> dict[str, Any]:
        async def _health() -> dict[str, Any]:
            return {
                "pushMode": self.config.push_mode,
                "pushHealthy": self.transport.push_healthy,
                "channels": [self.controller.message_summary(channel_id) for channel_id in self._views],
            }

        return self._run_coro_sync(_health())

    def connection_state(self, channel_id: str) -> dict[str, Any]:
        views = self._channel(channel_id)

        async def _state() -> dict[str, Any]:
            return {**self.controller.snapshot(channel_id), "badge": views.badge.view()}

        return self._run_coro_sync(_state())

    def qr(self, channel_id: str) -> dict[str, Any]:
        views = self._channel(channel_id)

        async def _qr() -> dict[str, Any]:
            return views.pairing.view()

        return self._run_coro_sync(_qr())

    def stats(self, channel_id: str) -> dict[str, Any]:
        views = self._channel(channel_id)

        async def _stats() -> dict[str, Any]:
            return views.stats.view()

        return self._run_coro_sync(_stats())

    def list_messages(self, channel_id: str) -> dict[str, Any]:
        views = self._channel(channel_id)

        async def _messages() -> dict[str, Any]:
            return views.feed.view()

        return self._run_coro_sync(_messages())

    def list_events(self, channel_id: Optional[str] = None) -> list[dict[str, Any]]:
        return self._events.list_events(channel_id)

    # -- commands --------------------------------------------------------------

    def load_history(self, channel_id: str) -> int:
        views = self._channel(channel_id)

        async def _load() -> int:
            messages = await self.controller.fetch_messages(channel_id)
            added = sum(1 for message in messages if views.feed.add(message))
            if added:
                views.feed.refresh()
            return added

        return self._run_coro_sync(_load())

    def connect(self, channel_id: str) -> dict[str, Any]:
        self._channel(channel_id)
        state = self._run_coro_sync(self.controller.connect(channel_id))
        return state.to_dict()

    def disconnect(self, channel_id: str) -> dict[str, Any]:
        self._channel(channel_id)
        state = self._run_coro_sync(self.controller.disconnect(channel_id))
        return state.to_dict()

    def restart(self, channel_id: str) -> dict[str, Any]:
        self._channel(channel_id)
        state = self._run_coro_sync(self.controller.restart(channel_id))
        return state.to_dict()

    def send_text(self, channel_id: str, destination: str, text: str) -> dict[str, Any]:
        self._channel(channel_id)
        message = self._run_coro_sync(self.controller.send_test_message(channel_id, destination, text))
        return message.to_dict()

    # -- store callbacks (loop thread) -----------------------------------------

    def _on_state(self, state: ConnectionState) -> None:
        self._events.add_event(
            DashboardEvent(
                kind="connection",
                source="store",
                channel_id=state.channel_id,
                payload={
                    "status": state.status.value,
                    "generation": state.generation,
                    "degraded": state.degraded,
                    "error": state.last_error,
                },
            )
        )

    def _on_message(self, message: Message) -> None:
        self._events.add_event(
            DashboardEvent(
                kind="message",
                source=message.direction.value,
                channel_id=message.channel_id,
                payload={
                    "id": message.id,
                    "from": message.sender,
                    "to": message.recipient,
                    "deliveryStatus": message.delivery_status.value,
                },
            )
        )

    async def _teardown_async(self) -> None:
        await self.transport.stop()
        for channel_id, views in self._views.items():
            views.detach()
            self.controller.store.unsubscribe(channel_id, self._on_state)
            self.controller.store.unsubscribe_messages(channel_id, self._on_message)
        self.controller.close()
        if self._owns_backend and isinstance(self.backend, BackendClient):
            await self.backend.close()

    def close(self) -> None:
        if not self._loop.is_running():
            return
        try:
            self._run_coro_sync(self._teardown_async())
        except Exception:
            logger.exception("dashboard runtime teardown failed")
        self._loop.call_soon_threadsafe(self._loop.stop)
        if threading.current_thread() is not self._thread:
            self._thread.join(timeout=2.0)
