import pytest

from wachannel.core.errors import AlreadyConnected, NotConnected, UnknownChannel
from wachannel.dashboard import runtime as runtime_module
from wachannel.dashboard.config import DashboardConfig
from wachannel.dashboard.runtime import DashboardRuntime


@pytest.fixture
def runtime(backend):
    config = DashboardConfig(channels=["ch1"], push_mode="off")
    runtime = DashboardRuntime(config, backend=backend, start_transport=False)
    yield runtime
    runtime.close()


def test_runtime_connect_updates_views_and_event_log(runtime, backend):
    state = runtime.connect("ch1")
    assert state["status"] == "qr_pending"
    assert state["generation"] == 1
    assert backend.calls == [("connect", 1)]

    qr = runtime.qr("ch1")
    assert qr["visible"] is True
    assert qr["qrImage"].startswith("data:image/svg+xml")
    assert runtime.connection_state("ch1")["badge"]["label"] == "QR code ready"

    statuses = [event["payload"]["status"] for event in runtime.list_events("ch1")]
    assert statuses[0] == "qr_pending"


def test_runtime_send_requires_connection(runtime):
    with pytest.raises(NotConnected):
        runtime.send_text("ch1", "15550002", "ping")


def test_runtime_reports_domain_errors(runtime, backend):
    backend.connect_response = {"status": "connected", "identity": {"externalNumber": "+15550001"}}
    runtime.connect("ch1")
    with pytest.raises(AlreadyConnected):
        runtime.connect("ch1")

    message = runtime.send_text("ch1", "15550002", "ping")
    assert message["id"] == "wamid.1"
    assert runtime.stats("ch1")["messagesSent"] == 1
    assert runtime.list_messages("ch1")["messages"][0]["body"] == "ping"


def test_runtime_rejects_unconfigured_channels(runtime):
    with pytest.raises(UnknownChannel):
        runtime.connect("other")
    assert runtime.channels() == ["ch1"]
    assert runtime.health()["pushMode"] == "off"


def test_runtime_waits_for_both_halves_of_restart(backend, monkeypatch):
    monkeypatch.setattr(runtime_module, "_SYNC_MARGIN", 0.05)
    config = DashboardConfig(channels=["ch1"], push_mode="off", command_timeout=0.5)
    runtime = DashboardRuntime(config, backend=backend, start_transport=False)
    try:
        backend.connect_response = {"status": "connected", "identity": {"externalNumber": "+15550001"}}
        runtime.connect("ch1")
        assert runtime.sync_timeout == pytest.approx(1.05)

        backend.connect_response = {"status": "qr_pending", "pairingPayload": "QR-2"}
        backend.delays.update({"disconnect": 0.35, "connect": 0.35})
        state = runtime.restart("ch1")
        assert state["status"] == "qr_pending"
        assert state["generation"] == 3
    finally:
        runtime.close()
