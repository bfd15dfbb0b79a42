"""Core data models shared by the registry, dispatcher, batch and CLI layers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

DeviceStatus = Literal["online", "offline", "error"]
Strategy = Literal["auto", "round_robin", "random", "signal_best"]

STRATEGIES: tuple[str, ...] = ("auto", "round_robin", "random", "signal_best")
MAX_SIGNAL_LEVEL = 31


@dataclass(frozen=True)
class Device:
    id: str
    name: str
    serial_port: str
    status: str
    phone_number: str = ""
    operator: str = ""
    signal_level: int = 0
    flymode: bool = False
    enabled: bool = True
    group_name: str = ""
    last_seen_at: int | None = None
    created_at: int | None = None
    updated_at: int | None = None

    @property
    def online(self) -> bool:
        return self.status == "online"

    @property
    def label(self) -> str:
        return self.name or self.serial_port

    @classmethod
    def from_json(cls, doc: dict[str, Any]) -> "Device":
        level = int(doc.get("signalLevel") or 0)
        return cls(
            id=str(doc["id"]),
            name=doc.get("name") or "",
            serial_port=doc.get("serialPort") or "",
            status=doc.get("status") or "offline",
            phone_number=doc.get("phoneNumber") or "",
            operator=doc.get("operator") or "",
            signal_level=min(max(level, 0), MAX_SIGNAL_LEVEL),
            flymode=bool(doc.get("flymode", False)),
            enabled=bool(doc.get("enabled", True)),
            group_name=doc.get("groupName") or "",
            last_seen_at=doc.get("lastSeenAt"),
            created_at=doc.get("createdAt"),
            updated_at=doc.get("updatedAt"),
        )


@dataclass(frozen=True)
class DeviceDraft:
    """Create/update payload for a device."""

    name: str
    serial_port: str
    group_name: str | None = None
    enabled: bool | None = None

    def to_json(self) -> dict[str, Any]:
        doc: dict[str, Any] = {"name": self.name, "serialPort": self.serial_port}
        if self.group_name is not None:
            doc["groupName"] = self.group_name
        if self.enabled is not None:
            doc["enabled"] = self.enabled
        return doc


@dataclass(frozen=True)
class FleetSummary:
    total_count: int
    online_count: int
    best_signal_device: Device | None


@dataclass
class SmsDraft:
    """Compose fields for a single SMS; cleared after a successful send."""

    to: str = ""
    content: str = ""

    def clear(self) -> None:
        self.to = ""
        self.content = ""


@dataclass(frozen=True)
class BatchSendRequest:
    recipients: tuple[str, ...]
    content: str
    device_id: str | None = None
    strategy: str | None = None

    def to_json(self) -> dict[str, Any]:
        doc: dict[str, Any] = {"recipients": list(self.recipients), "content": self.content}
        if self.device_id:
            doc["deviceId"] = self.device_id
        elif self.strategy:
            doc["strategy"] = self.strategy
        return doc


@dataclass(frozen=True)
class BatchSendResult:
    recipient: str
    success: bool
    message_id: str = ""
    device_id: str = ""
    error: str | None = None

    @classmethod
    def from_json(cls, doc: dict[str, Any]) -> "BatchSendResult":
        return cls(
            recipient=str(doc.get("recipient", "")),
            success=bool(doc.get("success", False)),
            message_id=str(doc.get("messageId") or ""),
            device_id=str(doc.get("deviceId") or ""),
            error=doc.get("error") or None,
        )


@dataclass(frozen=True)
class BatchSendReport:
    request: BatchSendRequest
    results: tuple[BatchSendResult, ...]
    rows: tuple[tuple[str, BatchSendResult | None], ...] = field(default=())

    @property
    def total_count(self) -> int:
        return len(self.results)

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def fail_count(self) -> int:
        return self.total_count - self.success_count


@dataclass(frozen=True)
class NotificationChannel:
    """Persisted channel record as exchanged with the service."""

    type: str
    enabled: bool
    config: dict[str, Any]

    def to_json(self) -> dict[str, Any]:
        return {"type": self.type, "enabled": self.enabled, "config": dict(self.config)}

    @classmethod
    def from_json(cls, doc: dict[str, Any]) -> "NotificationChannel":
        config = doc.get("config")
        return cls(
            type=str(doc.get("type", "")),
            enabled=bool(doc.get("enabled", False)),
            config=dict(config) if isinstance(config, dict) else {},
        )


@dataclass(frozen=True)
class TextMessage:
    """One stored SMS, incoming or outgoing."""

    id: str
    sender: str
    recipient: str
    content: str
    type: str
    status: str = ""
    device_id: str = ""
    device_name: str = ""
    created_at: int | None = None

    @property
    def incoming(self) -> bool:
        return self.type == "incoming"

    @property
    def peer(self) -> str:
        """The other party: the sender of incoming messages, else the recipient."""
        return self.sender if self.incoming else self.recipient

    @classmethod
    def from_json(cls, doc: dict[str, Any]) -> "TextMessage":
        return cls(
            id=str(doc.get("id", "")),
            sender=doc.get("from") or "",
            recipient=doc.get("to") or "",
            content=doc.get("content") or "",
            type=doc.get("type") or "incoming",
            status=doc.get("status") or "",
            device_id=doc.get("deviceId") or "",
            device_name=doc.get("deviceName") or "",
            created_at=doc.get("createdAt"),
        )


@dataclass(frozen=True)
class Conversation:
    peer: str
    message_count: int
    last_message: TextMessage | None = None
    unread_count: int = 0

    @classmethod
    def from_json(cls, doc: dict[str, Any]) -> "Conversation":
        last = doc.get("lastMessage")
        return cls(
            peer=str(doc.get("peer", "")),
            message_count=int(doc.get("messageCount") or 0),
            last_message=TextMessage.from_json(last) if isinstance(last, dict) else None,
            unread_count=int(doc.get("unreadCount") or 0),
        )


@dataclass(frozen=True)
class MessageStats:
    total_count: int = 0
    incoming_count: int = 0
    outgoing_count: int = 0
    today_count: int = 0

    @classmethod
    def from_json(cls, doc: dict[str, Any]) -> "MessageStats":
        return cls(
            total_count=int(doc.get("totalCount") or 0),
            incoming_count=int(doc.get("incomingCount") or 0),
            outgoing_count=int(doc.get("outgoingCount") or 0),
            today_count=int(doc.get("todayCount") or 0),
        )
