"""HTTP transport to the gateway service, built on httpx."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from smsgw.core.errors import ServerError, TransportError, UnauthorizedError
from smsgw.core.session import Session

LOGGER = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:8080/api"


class HttpTransport:
    """Async JSON transport with bearer auth and uniform 401 handling.

    A single :class:`httpx.AsyncClient` is reused for every request, including
    background polls. Requests carry no timeout; a hung connection surfaces
    only as a transport failure from the network stack.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        *,
        session: Session | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.session = session or Session()
        self._client = client or httpx.AsyncClient(timeout=None)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "HttpTransport":
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()

    async def request(self, method: str, path: str, *, json: Any = None) -> Any:
        url = f"{self.base_url}{path}"
        headers = {"Content-Type": "application/json", **self.session.authorization()}
        LOGGER.debug("%s %s", method, url)
        try:
            response = await self._client.request(method, url, json=json, headers=headers)
        except httpx.HTTPError as exc:
            raise TransportError(f"Request to {url} failed: {exc}") from exc

        if response.status_code == 401:
            self.session.expire()
            raise UnauthorizedError()

        if response.is_error:
            raise ServerError(_error_message(response), status_code=response.status_code)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise TransportError(f"Invalid JSON from {url}: {exc}") from exc


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        for key in ("error", "message"):
            if payload.get(key):
                return str(payload[key])

    text = response.text.strip()
    if payload is None and text:
        return text
    return f"HTTP {response.status_code}: {response.reason_phrase}"
