"""Shared plumbing for reactive UI surfaces bound to one channel."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any, Optional, TypeVar

from wachannel.client.controller import LifecycleController
from wachannel.core.errors import Busy, ChannelError
from wachannel.core.state import ConnectionState

logger = logging.getLogger(__name__)

T = TypeVar("T")
RenderListener = Callable[[dict[str, Any]], None]


class Binding:
    """Base class for a surface that mirrors the session store.

    Subclasses implement :meth:`render`, which must read connection state
    from the store on every call; bindings never cache connection status.
    User actions go through :meth:`_submit`, which blocks duplicate
    submission while a previous action from this surface is unresolved and
    keeps single-operation failures local to the surface.
    """

    kind = "binding"

    def __init__(self, controller: LifecycleController, channel_id: str) -> None:
        self.controller = controller
        self.channel_id = channel_id
        self.pending: Optional[str] = None
        self.last_error: Optional[str] = None
        self.render_count = 0
        self._listeners: list[RenderListener] = []
        self._attached = False

    @property
    def state(self) -> ConnectionState:
        return self.controller.state(self.channel_id)

    @property
    def attached(self) -> bool:
        return self._attached

    def attach(self) -> "Binding":
        if not self._attached:
            self.controller.store.subscribe(self.channel_id, self._on_state)
            self._attached = True
        return self

    def detach(self) -> None:
        if self._attached:
            self.controller.store.unsubscribe(self.channel_id, self._on_state)
            self._attached = False

    def on_render(self, listener: RenderListener) -> RenderListener:
        self._listeners.append(listener)
        return listener

    def render(self) -> dict[str, Any]:
        raise NotImplementedError

    def view(self) -> dict[str, Any]:
        view = self.render()
        view.update(
            {
                "kind": self.kind,
                "channelId": self.channel_id,
                "pending": self.pending,
                "error": self.last_error,
            }
        )
        return view

    def refresh(self) -> dict[str, Any]:
        self.render_count += 1
        view = self.view()
        for listener in list(self._listeners):
            try:
                listener(view)
            except Exception:
                logger.exception("%s render listener failed", self.kind)
        return view

    def _on_state(self, state: ConnectionState) -> None:
        self.refresh()

    async def _submit(self, action: str, call: Callable[[], Awaitable[T]]) -> Optional[T]:
        if self.pending is not None:
            raise Busy(f"{self.pending} is still pending on this {self.kind}")
        self.pending = action
        self.last_error = None
        self.refresh()
        try:
            return await call()
        except ChannelError as exc:
            logger.info("%s %s on %s failed: %s", self.kind, action, self.channel_id, exc)
            self.last_error = str(exc)
            return None
        finally:
            self.pending = None
            self.refresh()
