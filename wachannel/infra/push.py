"""Long-lived push subscriptions: server-sent events and WebSocket."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from typing import Any, Optional, Protocol
from urllib.parse import urlencode

import httpx
import websockets
import websockets.exceptions

from wachannel.core.errors import TransportError

logger = logging.getLogger(__name__)


class PushSource(Protocol):
    def events(self) -> AsyncIterator[dict[str, Any]]: ...

    async def close(self) -> None: ...


def decode_push_message(data: str | bytes, event_name: Optional[str] = None) -> Optional[dict[str, Any]]:
    """Decode one push frame. Returns None for frames that carry no event."""
    if isinstance(data, bytes):
        data = data.decode("utf-8", errors="replace")
    if not data.strip():
        return None
    try:
        decoded = json.loads(data)
    except json.JSONDecodeError:
        logger.warning("dropping non-JSON push frame: %.80s", data)
        return None
    if not isinstance(decoded, dict):
        logger.warning("dropping push frame of type %s", type(decoded).__name__)
        return None
    if event_name and event_name != "message" and "type" not in decoded:
        decoded["type"] = event_name
    return decoded


async def iter_sse_frames(lines: AsyncIterator[str]) -> AsyncIterator[tuple[Optional[str], str]]:
    """Group text/event-stream lines into ``(event_name, data)`` frames."""
    event_name: Optional[str] = None
    data_lines: list[str] = []
    async for line in lines:
        if line == "":
            if data_lines:
                yield event_name, "\n".join(data_lines)
            event_name = None
            data_lines = []
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "data":
            data_lines.append(value)
        elif field == "event":
            event_name = value or None
    if data_lines:
        yield event_name, "\n".join(data_lines)


class SSEPushSource:
    """Server-sent event stream keyed by an operator session id."""

    def __init__(
        self,
        url: str,
        session_id: str,
        *,
        http: Optional[httpx.AsyncClient] = None,
        headers: Optional[dict[str, str]] = None,
        connect_timeout: float = 10.0,
    ) -> None:
        self.url = url
        self.session_id = session_id
        self.headers = {"Accept": "text/event-stream", "Cache-Control": "no-cache", **(headers or {})}
        self.http = http or httpx.AsyncClient(timeout=httpx.Timeout(connect_timeout, read=None))

    async def events(self) -> AsyncIterator[dict[str, Any]]:
        try:
            async with self.http.stream(
                "GET",
                self.url,
                params={"session": self.session_id},
                headers=self.headers,
            ) as response:
                if response.status_code >= 400:
                    raise TransportError(
                        f"push stream {self.url} returned {response.status_code}",
                        response.status_code,
                    )
                async for event_name, data in iter_sse_frames(response.aiter_lines()):
                    decoded = decode_push_message(data, event_name)
                    if decoded is not None:
                        yield decoded
        except httpx.HTTPError as exc:
            raise TransportError(f"push stream {self.url} failed: {exc}") from exc

    async def close(self) -> None:
        await self.http.aclose()


class WebSocketPushSource:
    """WebSocket push subscription emitting one JSON event per frame."""

    def __init__(self, url: str, session_id: str, *, open_timeout: float = 10.0) -> None:
        separator = "&" if "?" in url else "?"
        self.url = f"{url}{separator}{urlencode({'session': session_id})}"
        self.session_id = session_id
        self.open_timeout = open_timeout
        self._ws: Any | None = None

    async def events(self) -> AsyncIterator[dict[str, Any]]:
        try:
            async with websockets.connect(self.url, open_timeout=self.open_timeout) as ws:
                self._ws = ws
                async for frame in ws:
                    decoded = decode_push_message(frame)
                    if decoded is not None:
                        yield decoded
        except websockets.exceptions.ConnectionClosedOK:
            return
        except (OSError, websockets.exceptions.WebSocketException) as exc:
            raise TransportError(f"push socket {self.url} failed: {exc}") from exc
        finally:
            self._ws = None

    async def close(self) -> None:
        ws = self._ws
        if ws is not None:
            await ws.close()
            self._ws = None


def build_push_source(mode: str, base_url: str, path: str, session_id: str, **kwargs: Any) -> PushSource:
    url = f"{base_url.rstrip('/')}/{path.lstrip('/')}"
    if mode == "sse":
        return SSEPushSource(url, session_id, **kwargs)
    if mode == "websocket":
        if url.startswith("http"):
            url = "ws" + url[len("http"):]
        return WebSocketPushSource(url, session_id, **kwargs)
    raise ValueError(f"unsupported push mode: {mode!r}")
