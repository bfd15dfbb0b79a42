"""Stable public API for building operator tooling on top of smsgw.

This module is the supported integration surface for third-party callers.
Avoid importing from private/internal modules unless intentionally depending on
non-stable internals.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable

from smsgw.core.batch import BatchSendCoordinator, normalize_recipients
from smsgw.core.channels import CHANNEL_TYPES, ChannelEditor, ChannelForm
from smsgw.core.config import Settings, load_settings
from smsgw.core.discovery import PortDiscoveryClient
from smsgw.core.dispatcher import CommandDispatcher, CommandOutcome
from smsgw.core.errors import (
    ChannelStateError,
    ConfigError,
    ServerError,
    SmsgwError,
    TransportError,
    UnauthorizedError,
    ValidationError,
)
from smsgw.core.messages import MessageHistoryClient
from smsgw.core.model import (
    BatchSendReport,
    BatchSendResult,
    Conversation,
    Device,
    DeviceDraft,
    FleetSummary,
    MessageStats,
    NotificationChannel,
    SmsDraft,
    TextMessage,
)
from smsgw.core.notify import Notifier
from smsgw.core.registry import DeviceRegistryClient
from smsgw.core.session import Session, TokenStore
from smsgw.core.signal import signal_category, signal_percentage
from smsgw.core.store import QueryStore
from smsgw.transports.base import Transport
from smsgw.transports.http import HttpTransport

__all__ = [
    "SmsgwError",
    "ConfigError",
    "ValidationError",
    "TransportError",
    "ServerError",
    "UnauthorizedError",
    "ChannelStateError",
    "BatchSendReport",
    "BatchSendResult",
    "CommandOutcome",
    "Conversation",
    "Device",
    "DeviceDraft",
    "FleetSummary",
    "MessageStats",
    "NotificationChannel",
    "SmsDraft",
    "TextMessage",
    "ChannelForm",
    "CHANNEL_TYPES",
    "normalize_recipients",
    "signal_category",
    "signal_percentage",
    "Client",
]


class Client:
    """Public client for the gateway control service.

    A `Client` wires one transport and one shared :class:`QueryStore` into
    the registry, command dispatcher, batch coordinator, port discovery,
    message history and channel editor, so every mutation invalidates the
    same cached data the views read from.
    """

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        transport: Transport | None = None,
        notifier: Notifier | None = None,
        on_login_required: Callable[[], None] | None = None,
        tokens: TokenStore | None = None,
    ) -> None:
        self.settings = settings or load_settings()
        self._owns_transport = transport is None
        self.transport = transport or HttpTransport(
            self.settings.base_url,
            session=Session(tokens, on_login_required=on_login_required),
        )
        self.store = QueryStore(discard_stale=self.settings.discard_stale)
        self.registry = DeviceRegistryClient(self.transport, self.store)
        self.commands = CommandDispatcher(self.transport, self.registry, notifier)
        self.batch = BatchSendCoordinator(self.transport, notifier)
        self.ports = PortDiscoveryClient(self.transport)
        self.messages = MessageHistoryClient(self.transport, self.store, notifier)
        self._notifier = notifier

    async def aclose(self) -> None:
        """Let background refetches settle, then close the transport."""
        await self.store.drain()
        if self._owns_transport and isinstance(self.transport, HttpTransport):
            await self.transport.aclose()

    async def __aenter__(self) -> "Client":
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()

    async def list_devices(self) -> list[Device]:
        return await self.registry.refresh()

    async def fleet_summary(self) -> FleetSummary:
        await self.registry.refresh()
        return self.registry.summary()

    async def discover_ports(self) -> list[str]:
        return await self.ports.discover()

    async def message_stats(self) -> MessageStats:
        return await self.messages.stats()

    async def conversations(self) -> list[Conversation]:
        return await self.messages.conversations()

    async def batch_send(
        self,
        recipients: str | Iterable[str],
        content: str,
        *,
        device_id: str | None = None,
        strategy: str = "auto",
    ) -> BatchSendReport | None:
        return await self.batch.send(recipients, content, device_id=device_id, strategy=strategy)

    def channel_editor(self) -> ChannelEditor:
        """Start a new channel edit session (call ``load`` before editing)."""
        return ChannelEditor(self.transport, self.store, self._notifier)
