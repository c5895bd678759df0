"""REST client for the messaging backend."""

from __future__ import annotations

import logging
from typing import Any, Optional, Protocol

import httpx

from wachannel.core.errors import TransportError
from wachannel.defaults.config import DEFAULT_BACKEND_URL

logger = logging.getLogger(__name__)


class BackendPort(Protocol):
    async def connect(self, channel_id: str, generation: int) -> dict[str, Any]: ...

    async def disconnect(self, channel_id: str) -> dict[str, Any]: ...

    async def status(self, channel_id: str) -> dict[str, Any]: ...

    async def send(self, channel_id: str, destination: str, body: str) -> dict[str, Any]: ...

    async def messages(self, channel_id: str) -> list[dict[str, Any]]: ...


class BackendClient:
    """httpx-based implementation of :class:`BackendPort`."""

    def __init__(
        self,
        base_url: str = DEFAULT_BACKEND_URL,
        *,
        timeout: float = 15.0,
        headers: Optional[dict[str, str]] = None,
        http: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.http = http or httpx.AsyncClient(base_url=self.base_url, timeout=timeout, headers=headers)

    async def close(self) -> None:
        await self.http.aclose()

    async def connect(self, channel_id: str, generation: int) -> dict[str, Any]:
        return await self._request("POST", f"/channels/{channel_id}/connect", json={"generation": generation})

    async def disconnect(self, channel_id: str) -> dict[str, Any]:
        return await self._request("POST", f"/channels/{channel_id}/disconnect", json={})

    async def status(self, channel_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/channels/{channel_id}/status")

    async def send(self, channel_id: str, destination: str, body: str) -> dict[str, Any]:
        return await self._request(
            "POST",
            f"/channels/{channel_id}/send",
            json={"destination": destination, "body": body},
        )

    async def messages(self, channel_id: str) -> list[dict[str, Any]]:
        data = await self._request("GET", f"/channels/{channel_id}/messages")
        items = data.get("messages", [])
        if not isinstance(items, list):
            raise TransportError("messages response is not a list")
        return [item for item in items if isinstance(item, dict)]

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = await self.http.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            raise TransportError(f"{method} {path} timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"{method} {path} failed: {exc}") from exc

        if response.status_code >= 400:
            detail = _error_detail(response)
            logger.debug("backend %s %s -> %s: %s", method, path, response.status_code, detail)
            raise TransportError(f"{method} {path} returned {response.status_code}: {detail}", response.status_code)

        try:
            data = response.json()
        except ValueError as exc:
            raise TransportError(f"{method} {path} returned invalid JSON", response.status_code) from exc
        if not isinstance(data, dict):
            raise TransportError(f"{method} {path} returned {type(data).__name__}, expected object")
        return data


def _error_detail(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(data, dict):
        return str(data.get("error") or data.get("message") or data)
    return str(data)
