import asyncio

import pytest

from wachannel.bindings import MessageFeed, PairingPanel, StatsPanel, StatusBadge
from wachannel.client.controller import LifecycleController
from wachannel.core.errors import Busy
from wachannel.core.events import Authenticated, ChannelFailed, Connected, MessageInbound, MessageOutboundAck
from wachannel.core.state import DeliveryStatus, Identity, Message, MessageDirection

IDENTITY = Identity("+15550001", "Acme Support")


async def _connect(controller: LifecycleController) -> None:
    await controller.connect("ch1")
    controller.apply(Authenticated("ch1", 1))
    controller.apply(Connected("ch1", IDENTITY, 1))


def test_status_badge_follows_store(backend) -> None:
    controller = LifecycleController(backend)
    badge = StatusBadge(controller, "ch1").attach()
    views: list[dict] = []
    badge.on_render(views.append)

    assert badge.view()["label"] == "Disconnected"
    controller.set_degraded("ch1", True)
    assert views[-1]["degraded"] is True
    assert views[-1]["kind"] == "status_badge"
    assert views[-1]["channelId"] == "ch1"

    badge.detach()
    controller.set_degraded("ch1", False)
    assert len(views) == 1


@pytest.mark.asyncio
async def test_status_badge_labels_through_lifecycle(backend) -> None:
    backend.connect_response = {"status": "qr_pending"}
    controller = LifecycleController(backend)
    badge = StatusBadge(controller, "ch1").attach()
    labels: list[str] = []
    badge.on_render(lambda view: labels.append(view["label"]))

    await _connect(controller)
    assert labels == ["Generating QR code", "Connecting", "Connected"]
    assert badge.view()["detail"] == "Acme Support"

    controller.apply(ChannelFailed("ch1", "account banned"))
    view = badge.view()
    assert view["label"] == "Error"
    assert view["detail"] == "account banned"


@pytest.mark.asyncio
async def test_pairing_panel_renders_qr_image(backend) -> None:
    controller = LifecycleController(backend)
    panel = PairingPanel(controller, "ch1").attach()

    view = panel.view()
    assert view["visible"] is False
    assert view["canConnect"] is True
    assert view["qrImage"] is None

    await panel.connect()
    view = panel.view()
    assert view["visible"] is True
    assert view["qr"] == "QR-1"
    assert view["qrImage"].startswith("data:image/svg+xml;base64,")
    assert 0 < view["expiresIn"] <= 90
    assert view["canConnect"] is False
    assert view["error"] is None


@pytest.mark.asyncio
async def test_pairing_panel_passes_through_image_payloads(backend) -> None:
    backend.connect_response = {"status": "qr_pending", "pairingPayload": "data:image/png;base64,AAAA"}
    controller = LifecycleController(backend)
    panel = PairingPanel(controller, "ch1").attach()
    await panel.connect()
    assert panel.view()["qrImage"] == "data:image/png;base64,AAAA"


@pytest.mark.asyncio
async def test_binding_blocks_duplicate_submission(backend) -> None:
    controller = LifecycleController(backend)
    panel = PairingPanel(controller, "ch1").attach()
    gate = backend.gate("connect")

    task = asyncio.create_task(panel.connect())
    await asyncio.sleep(0)
    assert panel.pending == "connect"
    with pytest.raises(Busy):
        await panel.regenerate()

    gate.set()
    await task
    assert panel.pending is None


@pytest.mark.asyncio
async def test_binding_keeps_operation_errors_local(backend) -> None:
    controller = LifecycleController(backend)
    await _connect(controller)
    panel = PairingPanel(controller, "ch1").attach()

    assert await panel.connect() is None
    assert "already connected" in panel.last_error
    assert controller.state("ch1").last_error is None


@pytest.mark.asyncio
async def test_stats_panel_reports_counters(backend) -> None:
    controller = LifecycleController(backend)
    stats = StatsPanel(controller, "ch1").attach()
    await _connect(controller)
    controller.apply(MessageInbound("ch1", Message("m1", "ch1", MessageDirection.INBOUND, "+1666", "+15550001", "hi")))
    await controller.send_test_message("ch1", "15550002", "ping")

    view = stats.view()
    assert view["messagesSent"] == 1
    assert view["messagesReceived"] == 1
    assert view["total"] == 2
    assert view["number"] == "+15550001"
    assert view["uptimeSeconds"] >= 0


@pytest.mark.asyncio
async def test_message_feed_collects_and_updates_delivery(backend) -> None:
    controller = LifecycleController(backend)
    feed = MessageFeed(controller, "ch1", max_messages=2).attach()
    await _connect(controller)

    sent = await feed.send_test("+1 555 0002", "ping")
    assert sent is not None
    assert backend.calls[-1] == ("send", ("15550002", "ping"))
    controller.apply(MessageOutboundAck("ch1", sent.id, DeliveryStatus.READ))
    assert feed.messages[0].delivery_status is DeliveryStatus.READ

    for message_id in ("m1", "m2"):
        controller.apply(
            MessageInbound("ch1", Message(message_id, "ch1", MessageDirection.INBOUND, "+1666", "+15550001", "hi"))
        )
    assert [m.id for m in feed.messages] == ["m1", "m2"]
    assert feed.view()["canSend"] is True


@pytest.mark.asyncio
async def test_message_feed_validates_send_form(backend) -> None:
    controller = LifecycleController(backend)
    feed = MessageFeed(controller, "ch1").attach()

    assert await feed.send_test("15550002", "   ") is None
    assert feed.last_error == "message body is required"
    assert await feed.send_test("abc", "ping") is None
    assert "Invalid WhatsApp number" in feed.last_error
    assert await feed.send_test("15550002", "ping") is None
    assert "disconnected" in feed.last_error
    assert backend.count("send") == 0


@pytest.mark.asyncio
async def test_message_feed_loads_history_once(backend) -> None:
    backend.history = [
        {"id": "h1", "body": "old", "from": "+1666", "timestamp": 1_700_000_000},
        {"id": "h2", "direction": "outbound", "body": "older", "timestamp": 1_600_000_000},
    ]
    controller = LifecycleController(backend)
    feed = MessageFeed(controller, "ch1").attach()

    assert await feed.load_history() == 2
    assert await feed.load_history() == 0
    assert [m.id for m in feed.messages] == ["h2", "h1"]
    assert controller.state("ch1").counters.messages_received == 0


@pytest.mark.asyncio
async def test_message_feed_evicts_oldest_by_timestamp(backend) -> None:
    backend.history = [
        {"id": "h1", "body": "old", "from": "+1666", "timestamp": 1_600_000_000},
        {"id": "h2", "body": "older", "from": "+1666", "timestamp": 1_500_000_000},
    ]
    controller = LifecycleController(backend)
    feed = MessageFeed(controller, "ch1", max_messages=2).attach()
    await _connect(controller)
    for message_id in ("live-1", "live-2"):
        controller.apply(
            MessageInbound("ch1", Message(message_id, "ch1", MessageDirection.INBOUND, "+1666", "+15550001", "hi"))
        )

    assert await feed.load_history() == 0
    assert [m.id for m in feed.messages] == ["live-1", "live-2"]
