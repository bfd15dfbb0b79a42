"""Serial port discovery on the gateway host."""

from __future__ import annotations

from smsgw.core.errors import TransportError
from smsgw.transports.base import Transport


class PortDiscoveryClient:
    def __init__(self, transport: Transport) -> None:
        self._transport = transport

    async def discover(self) -> list[str]:
        """Trigger a port scan and return the candidate serial ports."""
        payload = await self._transport.request("GET", "/devices/discover")
        if payload is None:
            return []
        if not isinstance(payload, dict):
            raise TransportError("Unexpected port discovery payload")
        return [str(port) for port in payload.get("ports") or []]
