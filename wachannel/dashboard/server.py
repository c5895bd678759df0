from __future__ import annotations

import argparse
import logging
from collections.abc import Callable
from typing import Any, Optional, Protocol

from flask import Flask, jsonify, request

from wachannel.core.errors import (
    AlreadyConnected,
    Busy,
    ChannelError,
    CommandTimeout,
    NotConnected,
    TransportError,
    UnknownChannel,
)
from wachannel.infra.logger import get_logger
from wachannel.utils.numbers import normalize_wa_id

from .config import DashboardConfig, config_from_env

logger = logging.getLogger(__name__)


class DashboardRuntimeLike(Protocol):
    def channels(self) -> list[str]: ...

    def health(self) -> dict[str, Any]: ...

    def connection_state(self, channel_id: str) -> dict[str, Any]: ...

    def qr(self, channel_id: str) -> dict[str, Any]: ...

    def stats(self, channel_id: str) -> dict[str, Any]: ...

    def list_messages(self, channel_id: str) -> dict[str, Any]: ...

    def list_events(self, channel_id: Optional[str] = None) -> list[dict[str, Any]]: ...

    def load_history(self, channel_id: str) -> int: ...

    def connect(self, channel_id: str) -> dict[str, Any]: ...

    def disconnect(self, channel_id: str) -> dict[str, Any]: ...

    def restart(self, channel_id: str) -> dict[str, Any]: ...

    def send_text(self, channel_id: str, destination: str, text: str) -> dict[str, Any]: ...


def _error_status(exc: Exception) -> int:
    if isinstance(exc, UnknownChannel):
        return 404
    if isinstance(exc, (Busy, AlreadyConnected, NotConnected)):
        return 409
    if isinstance(exc, CommandTimeout):
        return 504
    if isinstance(exc, TransportError):
        return 502
    if isinstance(exc, ValueError):
        return 400
    return 500


def _respond(action: str, call: Callable[[], Any]):
    try:
        return jsonify(call())
    except (ChannelError, ValueError) as exc:
        status = _error_status(exc)
        logger.info("%s rejected with %s: %s", action, status, exc)
        return jsonify({"error": str(exc), "type": type(exc).__name__}), status
    except Exception as exc:
        logger.exception("%s failed", action)
        return jsonify({"error": f"{action} failed: {exc}"}), 500


def create_app(
    *,
    testing: bool = False,
    runtime: DashboardRuntimeLike | None = None,
    config: DashboardConfig | None = None,
) -> Flask:
    app = Flask(__name__)
    app.config["TESTING"] = testing
    if runtime is None:
        from .runtime import DashboardRuntime

        runtime = DashboardRuntime(config or config_from_env())
    dashboard_runtime = runtime
    app.config["DASHBOARD_RUNTIME"] = dashboard_runtime

    @app.get("/api/health")
    def health():
        return _respond("health", lambda: {"status": "ok", **dashboard_runtime.health()})

    @app.get("/api/channels")
    def channels():
        return jsonify({"channels": dashboard_runtime.channels()})

    @app.get("/api/channels/<channel_id>/connection")
    def connection(channel_id: str):
        return _respond("connection", lambda: dashboard_runtime.connection_state(channel_id))

    @app.get("/api/channels/<channel_id>/qr")
    def qr(channel_id: str):
        return _respond("qr", lambda: dashboard_runtime.qr(channel_id))

    @app.get("/api/channels/<channel_id>/stats")
    def stats(channel_id: str):
        return _respond("stats", lambda: dashboard_runtime.stats(channel_id))

    @app.get("/api/channels/<channel_id>/messages")
    def messages(channel_id: str):
        return _respond("messages", lambda: dashboard_runtime.list_messages(channel_id))

    @app.post("/api/channels/<channel_id>/messages/load")
    def load_messages(channel_id: str):
        return _respond("load_history", lambda: {"added": dashboard_runtime.load_history(channel_id)})

    @app.post("/api/channels/<channel_id>/connect")
    def connect(channel_id: str):
        return _respond("connect", lambda: dashboard_runtime.connect(channel_id))

    @app.post("/api/channels/<channel_id>/disconnect")
    def disconnect(channel_id: str):
        return _respond("disconnect", lambda: dashboard_runtime.disconnect(channel_id))

    @app.post("/api/channels/<channel_id>/restart")
    def restart(channel_id: str):
        return _respond("restart", lambda: dashboard_runtime.restart(channel_id))

    @app.post("/api/channels/<channel_id>/send")
    def send(channel_id: str):
        data = request.get_json(silent=True) or {}
        raw_to = str(data.get("to") or "").strip()
        text = str(data.get("text") or "").strip()
        if not raw_to or not text:
            return jsonify({"error": "`to` and `text` are required."}), 400

        def _send() -> dict[str, Any]:
            destination = normalize_wa_id(raw_to)
            message = dashboard_runtime.send_text(channel_id, destination, text)
            return {"status": "sent", "to": destination, "message": message}

        return _respond("send", _send)

    @app.get("/api/events")
    def events():
        channel_id = request.args.get("channel") or None
        return jsonify({"events": dashboard_runtime.list_events(channel_id)})

    return app


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the channel connection dashboard API.")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", default=8080, type=int)
    parser.add_argument("--debug", action="store_true")
    parser.add_argument("--backend-url", default=None)
    parser.add_argument("--channel", action="append", dest="channels", default=None)
    parser.add_argument("--push-mode", choices=["sse", "websocket", "off"], default=None)
    return parser.parse_args()


def main() -> None:
    args = _parse_args()
    config = config_from_env()
    if args.backend_url:
        config.backend_url = args.backend_url
    if args.channels:
        config.channels = args.channels
    if args.push_mode:
        config.push_mode = args.push_mode
    get_logger("wachannel", getattr(logging, config.log_level, logging.INFO))
    app = create_app(config=config)
    app.run(host=args.host, port=args.port, debug=args.debug, use_reloader=False)


if __name__ == "__main__":
    main()
