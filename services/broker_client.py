"""HTTP client the controlling device uses to talk to the upload broker."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

LOGGER = logging.getLogger(__name__)


class BrokerClient:
    """Thin async wrapper over the broker's `/api/session` routes.

    Every call is bounded by `timeout`. Non-2xx responses raise
    `httpx.HTTPStatusError`; connection problems raise other `httpx.HTTPError`s.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)

    async def create_session(self, name: Optional[str] = None) -> Dict[str, Any]:
        payload = {"name": name} if name else {}
        return await self._request("POST", "/api/session/create", json=payload)

    async def get_info(self, session_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/api/session/{session_id}")

    async def get_image(self, session_id: str, index: int) -> Dict[str, Any]:
        return await self._request("GET", f"/api/session/{session_id}/images/{index}")

    async def close_uploads(self, session_id: str) -> Dict[str, Any]:
        return await self._request("POST", f"/api/session/{session_id}/close-uploads")

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        response = await self._client.request(method, path, **kwargs)
        response.raise_for_status()
        return response.json()
