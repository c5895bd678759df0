"""Pair one channel against a running backend and wait for it to connect.

Usage:
    python examples/live_connect.py

Optional env:
    WACHANNEL_BACKEND_URL=http://127.0.0.1:5000/api/whatsapp
    WACHANNEL_CHANNELS=support
    WACHANNEL_PUSH_MODE=sse
    WACHANNEL_TEST_TO=5215512345678
    WACHANNEL_TEST_TEXT=hello from wachannel
"""

from __future__ import annotations

import asyncio
import os

import qrcode

from wachannel.bindings import PairingPanel, StatusBadge
from wachannel.client import LifecycleController, TransportAdapter
from wachannel.dashboard.config import config_from_env
from wachannel.infra.backend import BackendClient
from wachannel.infra.push import build_push_source
from wachannel.utils.qr import is_image_data_url


def _print_qr_terminal(qr_text: str) -> None:
    print("\n=== QR STRING ===")
    print(qr_text if len(qr_text) < 200 else f"{qr_text[:200]}...")
    if is_image_data_url(qr_text):
        print("backend sent a rendered image; open it in a browser to scan.")
        return
    print("\n=== QR TERMINAL ===")
    qr = qrcode.QRCode(border=1)
    qr.add_data(qr_text)
    qr.make(fit=True)
    qr.print_ascii(invert=True)


async def main() -> None:
    config = config_from_env()
    channel_id = config.channels[0]
    backend = BackendClient(config.backend_url, timeout=config.request_timeout, headers=config.auth_headers())
    controller = LifecycleController(backend, **config.channel_overrides())
    push = None
    if config.push_mode != "off":
        push = build_push_source(config.push_mode, config.backend_url, "/events", config.session_id)
    adapter = TransportAdapter(controller, push)
    adapter.watch(channel_id)

    badge = StatusBadge(controller, channel_id).attach()
    panel = PairingPanel(controller, channel_id).attach()
    connected = asyncio.Event()
    shown: set[str] = set()

    def _on_badge(view: dict) -> None:
        print(f"[connection] {view['label']}" + (f" ({view['detail']})" if view["detail"] else ""))
        if view["status"] in ("connected", "error"):
            connected.set()

    def _on_panel(view: dict) -> None:
        qr = view.get("qr")
        if qr and qr not in shown:
            shown.add(qr)
            _print_qr_terminal(qr)

    badge.on_render(_on_badge)
    panel.on_render(_on_panel)

    await adapter.start()
    try:
        await panel.connect()
        if panel.last_error:
            print(f"[connection] connect failed: {panel.last_error}")
            return
        await asyncio.wait_for(connected.wait(), timeout=config.pairing_timeout + config.auth_timeout)
        state = controller.state(channel_id)
        if not state.is_connected:
            print(f"[connection] ended in {state.status.value}: {state.last_error}")
            return

        to = os.getenv("WACHANNEL_TEST_TO")
        if to:
            text = os.getenv("WACHANNEL_TEST_TEXT", "hello from wachannel")
            message = await controller.send_test_message(channel_id, to, text)
            print(f"[send] queued id={message.id}")
        print(f"[stats] {controller.message_summary(channel_id)}")
    finally:
        badge.detach()
        panel.detach()
        await adapter.stop()
        controller.close()
        await backend.close()


if __name__ == "__main__":
    asyncio.run(main())
