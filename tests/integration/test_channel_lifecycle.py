import asyncio

import pytest

from wachannel.bindings import MessageFeed, PairingPanel, StatsPanel, StatusBadge
from wachannel.client.controller import LifecycleController
from wachannel.client.transport import TransportAdapter
from wachannel.core.state import ConnectionStatus, Counters


async def _wait_for(predicate, timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


@pytest.mark.asyncio
async def test_pairing_to_first_message_over_push(backend, push_source) -> None:
    backend.connect_response = {"status": "qr_pending"}
    controller = LifecycleController(backend, poll_interval=0.05)
    adapter = TransportAdapter(controller, push_source)
    adapter.watch("ch1")
    badge = StatusBadge(controller, "ch1").attach()
    panel = PairingPanel(controller, "ch1").attach()
    stats = StatsPanel(controller, "ch1").attach()
    feed = MessageFeed(controller, "ch1").attach()
    await adapter.start()

    def push(event_type: str, **payload) -> None:
        payload.setdefault("generation", controller.state("ch1").generation)
        push_source.queue.put_nowait({"type": event_type, "channelId": "ch1", "payload": payload})

    try:
        push_source.queue.put_nowait({"type": "ready"})
        await _wait_for(lambda: adapter.push_healthy)

        await panel.connect()
        assert controller.state("ch1").status is ConnectionStatus.QR_PENDING

        push("pairing_issued", pairingPayload="P1")
        await _wait_for(lambda: controller.state("ch1").pairing_payload == "P1")
        assert panel.view()["qr"] == "P1"

        push("authenticated")
        await _wait_for(lambda: controller.state("ch1").status is ConnectionStatus.AUTHENTICATING)
        assert controller.state("ch1").pairing_payload is None
        assert badge.view()["label"] == "Connecting"

        push("connected", identity={"number": "+100", "name": "Demo"})
        await _wait_for(lambda: controller.state("ch1").is_connected)
        state = controller.state("ch1")
        assert state.identity.external_number == "+100"
        assert state.identity.display_name == "Demo"
        assert state.counters == Counters(0, 0)

        push("message_inbound", message={"id": "in-1", "from": "+200", "body": "hello"})
        await _wait_for(lambda: controller.state("ch1").counters == Counters(0, 1))
        assert stats.view()["messagesReceived"] == 1
        assert [m.body for m in feed.messages] == ["hello"]
        assert badge.view()["degraded"] is False

        # the same terminal event over the poll path is a no-op
        backend.status_response = {"status": "connected", "identity": {"externalNumber": "+100"}}
        assert len(await adapter.poll_once("ch1")) == 1
        assert controller.state("ch1").counters == Counters(0, 1)

        await badge.disconnect()
        state = controller.state("ch1")
        assert state.status is ConnectionStatus.DISCONNECTED
        assert state.counters == Counters(0, 0)

        push("connected", identity={"number": "+100"}, generation=1)
        await asyncio.sleep(0.05)
        assert controller.state("ch1").status is ConnectionStatus.DISCONNECTED
    finally:
        await adapter.stop()


@pytest.mark.asyncio
async def test_polling_alone_drives_pairing(backend) -> None:
    backend.connect_response = {"status": "qr_pending"}
    controller = LifecycleController(backend, poll_interval=0.01)
    adapter = TransportAdapter(controller)
    adapter.watch("ch1")
    await controller.connect("ch1")
    backend.status_response = {"status": "qr_pending", "pairingPayload": "P1"}
    await adapter.start()
    try:
        await _wait_for(lambda: controller.state("ch1").pairing_payload == "P1")

        backend.status_response = {"status": "authenticating"}
        await _wait_for(lambda: controller.state("ch1").status is ConnectionStatus.AUTHENTICATING)

        backend.status_response = {"status": "connected", "identity": {"number": "+100", "name": "Demo"}}
        await _wait_for(lambda: controller.state("ch1").is_connected)
        assert controller.state("ch1").identity.display_name == "Demo"

        backend.status_response = {"status": "disconnected", "reason": "logged out"}
        await _wait_for(lambda: controller.state("ch1").status is ConnectionStatus.DISCONNECTED)
        assert controller.state("ch1").generation == 1
    finally:
        await adapter.stop()
