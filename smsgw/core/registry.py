"""Periodically refreshed view of the device fleet."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from typing import Any

from smsgw.core.errors import SmsgwError, TransportError, UnauthorizedError
from smsgw.core.model import Device, FleetSummary
from smsgw.core.store import QueryStore
from smsgw.transports.base import Transport

LOGGER = logging.getLogger(__name__)

DEVICES_KEY = "devices"
MANAGEMENT_POLL_INTERVAL_S = 5.0
CONTROL_POLL_INTERVAL_S = 10.0


def summarize(devices: Sequence[Device]) -> FleetSummary:
    best: Device | None = None
    online = 0
    for device in devices:
        if not device.online:
            continue
        online += 1
        # Strict comparison keeps the first device on ties.
        if best is None or device.signal_level > best.signal_level:
            best = device
    return FleetSummary(total_count=len(devices), online_count=online, best_signal_device=best)


class DeviceRegistryClient:
    """Owns the cached device snapshot stored under ``devices`` in a QueryStore."""

    def __init__(self, transport: Transport, store: QueryStore | None = None) -> None:
        self._transport = transport
        self.store = store or QueryStore()
        self.store.register(DEVICES_KEY, self._fetch_devices)

    async def _fetch_devices(self) -> list[Device]:
        payload = await self._transport.request("GET", "/devices")
        if payload is None:
            return []
        if not isinstance(payload, list):
            raise TransportError("Unexpected device list payload")
        return [Device.from_json(doc) for doc in payload]

    def list(self) -> list[Device]:
        return list(self.store.get(DEVICES_KEY) or [])

    async def refresh(self) -> list[Device]:
        return list(await self.store.fetch(DEVICES_KEY))

    def invalidate(self) -> asyncio.Task[Any] | None:
        return self.store.invalidate(DEVICES_KEY)

    def subscribe(self, callback: Callable[[list[Device]], None]) -> Callable[[], None]:
        return self.store.subscribe(DEVICES_KEY, callback)

    def summary(self) -> FleetSummary:
        return summarize(self.list())

    @property
    def total_count(self) -> int:
        return len(self.list())

    @property
    def online_count(self) -> int:
        return self.summary().online_count

    @property
    def best_signal_device(self) -> Device | None:
        return self.summary().best_signal_device

    def online_devices(self) -> list[Device]:
        return [d for d in self.list() if d.online]

    async def poll(self, interval_s: float, *, iterations: int | None = None) -> None:
        """Refresh every *interval_s* seconds until cancelled.

        Failures are logged and polling continues. An unauthorized response
        is re-raised and ends the poll. Cancelling the poll leaves any fetch
        already in flight running.
        """
        count = 0
        while True:
            try:
                await self.refresh()
            except UnauthorizedError:
                raise
            except SmsgwError as exc:
                LOGGER.warning("Device poll failed: %s", exc)
            count += 1
            if iterations is not None and count >= iterations:
                return
            await asyncio.sleep(interval_s)

    async def get(self, device_id: str) -> Device:
        payload = await self._transport.request("GET", f"/devices/{device_id}")
        if not isinstance(payload, dict):
            raise TransportError(f"Unexpected payload for device '{device_id}'")
        return Device.from_json(payload)

    async def status(self, device_id: str) -> dict[str, Any]:
        payload = await self._transport.request("GET", f"/devices/{device_id}/status")
        return payload if isinstance(payload, dict) else {}

    async def groups(self) -> list[str]:
        payload = await self._transport.request("GET", "/devices/groups")
        groups = payload.get("groups") if isinstance(payload, dict) else None
        return [str(g) for g in groups or []]

    async def stats(self) -> dict[str, int]:
        payload = await self._transport.request("GET", "/devices/stats")
        if not isinstance(payload, dict):
            return {}
        return {str(k): int(v) for k, v in payload.items()}
