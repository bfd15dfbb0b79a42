from __future__ import annotations

from typing import Any

import pytest

from smsgw.core.errors import TransportError, UnauthorizedError
from smsgw.core.model import Device
from smsgw.core.registry import DeviceRegistryClient, summarize


def _device(device_id: str, status: str, signal: int, **extra: Any) -> dict[str, Any]:
    return {
        "id": device_id,
        "name": f"gw-{device_id}",
        "serialPort": f"/dev/ttyUSB{device_id}",
        "status": status,
        "signalLevel": signal,
        **extra,
    }


class FakeTransport:
    def __init__(self, *replies: Any) -> None:
        self.replies = list(replies)
        self.calls: list[tuple[str, str, Any]] = []

    async def request(self, method: str, path: str, *, json: Any = None) -> Any:
        self.calls.append((method, path, json))
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, Exception):
            raise reply
        return reply


@pytest.mark.asyncio
async def test_fleet_aggregates() -> None:
    transport = FakeTransport([_device("1", "online", 25), _device("2", "offline", 0)])
    registry = DeviceRegistryClient(transport)

    devices = await registry.refresh()

    assert [d.id for d in devices] == ["1", "2"]
    assert registry.online_count == 1
    assert registry.total_count == 2
    assert registry.best_signal_device is not None
    assert registry.best_signal_device.id == "1"
    assert transport.calls == [("GET", "/devices", None)]


def test_best_signal_ties_keep_list_order() -> None:
    devices = [
        Device.from_json(_device("a", "online", 20)),
        Device.from_json(_device("b", "online", 20)),
        Device.from_json(_device("c", "offline", 31)),
    ]
    summary = summarize(devices)
    assert summary.best_signal_device is not None
    assert summary.best_signal_device.id == "a"
    assert summary.online_count == 2


def test_no_online_device_has_no_best_signal() -> None:
    summary = summarize([Device.from_json(_device("1", "error", 30))])
    assert summary.best_signal_device is None
    assert summary.online_count == 0
    assert summary.total_count == 1


def test_device_decoding_clamps_signal_level() -> None:
    device = Device.from_json(_device("1", "online", 99, phoneNumber="+100", groupName="north"))
    assert device.signal_level == 31
    assert device.phone_number == "+100"
    assert device.group_name == "north"
    assert Device.from_json(_device("2", "online", -3)).signal_level == 0


@pytest.mark.asyncio
async def test_list_is_empty_before_first_fetch() -> None:
    registry = DeviceRegistryClient(FakeTransport([]))
    assert registry.list() == []
    assert registry.summary().total_count == 0


@pytest.mark.asyncio
async def test_invalidate_refetches_loaded_snapshot() -> None:
    transport = FakeTransport([_device("1", "offline", 0)], [_device("1", "online", 18)])
    registry = DeviceRegistryClient(transport)
    await registry.refresh()
    seen: list[list[Device]] = []
    registry.subscribe(seen.append)

    task = registry.invalidate()
    assert task is not None
    await registry.store.drain()

    assert len(transport.calls) == 2
    assert registry.list()[0].status == "online"
    assert len(seen) == 1


@pytest.mark.asyncio
async def test_poll_keeps_going_after_failure() -> None:
    transport = FakeTransport(
        TransportError("connection refused"),
        [_device("1", "online", 12)],
    )
    registry = DeviceRegistryClient(transport)

    await registry.poll(0, iterations=2)

    assert len(transport.calls) == 2
    assert registry.online_count == 1


@pytest.mark.asyncio
async def test_poll_ends_on_unauthorized() -> None:
    transport = FakeTransport(UnauthorizedError())
    registry = DeviceRegistryClient(transport)

    with pytest.raises(UnauthorizedError):
        await registry.poll(0, iterations=3)

    assert len(transport.calls) == 1


@pytest.mark.asyncio
async def test_unexpected_payload_is_a_transport_error() -> None:
    registry = DeviceRegistryClient(FakeTransport({"devices": []}))
    with pytest.raises(TransportError):
        await registry.refresh()


@pytest.mark.asyncio
async def test_read_only_extras() -> None:
    transport = FakeTransport({"groups": ["north", "south"]})
    registry = DeviceRegistryClient(transport)
    assert await registry.groups() == ["north", "south"]

    transport.replies = [{"total": 3, "online": 2}]
    assert await registry.stats() == {"total": 3, "online": 2}

    transport.replies = [_device("7", "online", 22)]
    device = await registry.get("7")
    assert device.id == "7"
    assert transport.calls[-1] == ("GET", "/devices/7", None)
