from __future__ import annotations

import asyncio
from typing import Any

import pytest


class FakeBackend:
    """In-memory backend; each response can be replaced or gated per test."""

    def __init__(self) -> None:
        self.connect_response: dict[str, Any] = {"status": "qr_pending", "pairingPayload": "QR-1"}
        self.status_response: dict[str, Any] = {"status": "disconnected"}
        self.send_response: dict[str, Any] = {"success": True, "messageId": "wamid.1"}
        self.history: list[dict[str, Any]] = []
        self.calls: list[tuple[str, Any]] = []
        self.errors: dict[str, BaseException] = {}
        self.gates: dict[str, asyncio.Event] = {}
        self.delays: dict[str, float] = {}

    async def _enter(self, name: str, arg: Any = None) -> None:
        self.calls.append((name, arg))
        delay = self.delays.get(name)
        if delay:
            await asyncio.sleep(delay)
        gate = self.gates.get(name)
        if gate is not None:
            await gate.wait()
        error = self.errors.get(name)
        if error is not None:
            raise error

    def gate(self, name: str) -> asyncio.Event:
        event = asyncio.Event()
        self.gates[name] = event
        return event

    def count(self, name: str) -> int:
        return sum(1 for call, _ in self.calls if call == name)

    async def connect(self, channel_id: str, generation: int) -> dict[str, Any]:
        await self._enter("connect", generation)
        return dict(self.connect_response)

    async def disconnect(self, channel_id: str) -> dict[str, Any]:
        await self._enter("disconnect", channel_id)
        return {"status": "disconnected"}

    async def status(self, channel_id: str) -> dict[str, Any]:
        await self._enter("status", channel_id)
        return dict(self.status_response)

    async def send(self, channel_id: str, destination: str, body: str) -> dict[str, Any]:
        await self._enter("send", (destination, body))
        return dict(self.send_response)

    async def messages(self, channel_id: str) -> list[dict[str, Any]]:
        await self._enter("messages", channel_id)
        return list(self.history)


class FakePushSource:
    """Push source fed from a queue; ``None`` ends the current stream."""

    def __init__(self) -> None:
        self.queue: asyncio.Queue[Any] = asyncio.Queue()
        self.opened = 0
        self.closed = False

    async def events(self):
        self.opened += 1
        while True:
            item = await self.queue.get()
            if item is None:
                return
            if isinstance(item, BaseException):
                raise item
            yield item

    async def close(self) -> None:
        self.closed = True


def connected_event(channel_id: str = "ch1", generation: int | None = None, number: str = "+15550001") -> dict[str, Any]:
    payload: dict[str, Any] = {"identity": {"externalNumber": number, "displayName": "Acme Support"}}
    if generation is not None:
        payload["generation"] = generation
    return {"type": "connected", "channelId": channel_id, "payload": payload}


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def push_source() -> FakePushSource:
    return FakePushSource()


@pytest.fixture
def make_connected():
    return connected_event
