"""Notification channel configuration: persisted list <-> edit form.

The service stores one record per channel type and the whole list is
replaced on every save. A type is written out when it is enabled or when its
identifying field (secret key, API token, URL or SMTP host) holds something
other than whitespace, so credentials can be staged without activating the
channel. Types that fail that test are left out of the list entirely.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field, fields, replace
from typing import Any, ClassVar

from smsgw.core.errors import (
    ChannelStateError,
    ServerError,
    SmsgwError,
    TransportError,
    UnauthorizedError,
    ValidationError,
)
from smsgw.core.model import NotificationChannel
from smsgw.core.notify import LogNotifier, Notifier
from smsgw.core.store import QueryStore
from smsgw.transports.base import Transport

LOGGER = logging.getLogger(__name__)

CHANNELS_KEY = "notification-channels"
CHANNELS_PATH = "/properties/notificationChannels"

DEFAULT_WEBHOOK_BODY = '{"from": "{{from}}", "content": "{{content}}", "timestamp": "{{timestamp}}"}'


@dataclass(frozen=True)
class ChannelConfig:
    """Base for one channel type's editable fields.

    ``wire_keys`` maps config keys as stored by the service to attribute
    names; ``identifying`` names the attribute that, when filled, keeps the
    record in the saved list even while disabled.
    """

    type: ClassVar[str]
    identifying: ClassVar[str]
    wire_keys: ClassVar[dict[str, str]]

    enabled: bool = False

    @property
    def identified(self) -> bool:
        return bool(str(getattr(self, self.identifying)).strip())

    @property
    def persisted(self) -> bool:
        return self.enabled or self.identified

    def apply(self, record: NotificationChannel) -> "ChannelConfig":
        """Overlay *record* on this config; keys it lacks keep their value."""
        changes: dict[str, Any] = {"enabled": record.enabled}
        for key, attr in self.wire_keys.items():
            value = record.config.get(key)
            if value is None:
                continue
            changes[attr] = self._from_wire(attr, value)
        return replace(self, **changes)

    def update(self, **changes: Any) -> "ChannelConfig":
        """Return a copy with form fields changed, by attribute or wire key."""
        attrs = {f.name for f in fields(self)}
        resolved: dict[str, Any] = {}
        for name, value in changes.items():
            attr = self.wire_keys.get(name, name)
            if attr not in attrs:
                allowed = ", ".join(sorted(self.wire_keys))
                raise ValidationError(
                    f"Channel '{self.type}' has no field '{name}'. Available: enabled, {allowed}",
                    field=f"{self.type}.{name}",
                )
            resolved[attr] = self._coerce(attr, value)
        return replace(self, **resolved)

    def to_config(self) -> dict[str, Any]:
        return {key: getattr(self, attr) for key, attr in self.wire_keys.items()}

    def to_record(self) -> NotificationChannel:
        return NotificationChannel(type=self.type, enabled=self.enabled, config=self.to_config())

    def _from_wire(self, attr: str, value: Any) -> Any:
        return self._coerce(attr, value)

    def _coerce(self, attr: str, value: Any) -> Any:
        current = getattr(self, attr)
        if isinstance(current, bool):
            if isinstance(value, str):
                return value.strip().lower() in {"1", "true", "yes", "on"}
            return bool(value)
        return str(value)


@dataclass(frozen=True)
class DingtalkConfig(ChannelConfig):
    type: ClassVar[str] = "dingtalk"
    identifying: ClassVar[str] = "secret_key"
    wire_keys: ClassVar[dict[str, str]] = {"secretKey": "secret_key", "signSecret": "sign_secret"}

    secret_key: str = ""
    sign_secret: str = ""


@dataclass(frozen=True)
class WecomConfig(ChannelConfig):
    type: ClassVar[str] = "wecom"
    identifying: ClassVar[str] = "secret_key"
    wire_keys: ClassVar[dict[str, str]] = {"secretKey": "secret_key"}

    secret_key: str = ""


@dataclass(frozen=True)
class FeishuConfig(ChannelConfig):
    type: ClassVar[str] = "feishu"
    identifying: ClassVar[str] = "secret_key"
    wire_keys: ClassVar[dict[str, str]] = {"secretKey": "secret_key", "signSecret": "sign_secret"}

    secret_key: str = ""
    sign_secret: str = ""


@dataclass(frozen=True)
class WebhookConfig(ChannelConfig):
    type: ClassVar[str] = "webhook"
    identifying: ClassVar[str] = "url"
    wire_keys: ClassVar[dict[str, str]] = {
        "url": "url",
        "method": "method",
        "contentType": "content_type",
        "body": "body",
        "headers": "headers",
    }

    url: str = ""
    method: str = "POST"
    content_type: str = "application/json; charset=utf-8"
    body: str = DEFAULT_WEBHOOK_BODY
    # JSON object as text, edited verbatim.
    headers: str = ""

    def parsed_headers(self) -> dict[str, Any] | None:
        text = self.headers.strip()
        if not text:
            return None
        try:
            headers = json.loads(text)
        except ValueError as exc:
            raise ValidationError(
                f"Webhook headers are not valid JSON: {exc}",
                field="webhook.headers",
            ) from exc
        if not isinstance(headers, dict):
            raise ValidationError("Webhook headers must be a JSON object", field="webhook.headers")
        return headers or None

    def to_config(self) -> dict[str, Any]:
        config: dict[str, Any] = {
            "url": self.url,
            "method": self.method,
            "contentType": self.content_type,
            "body": self.body,
        }
        headers = self.parsed_headers()
        if headers is not None:
            config["headers"] = headers
        return config

    def _from_wire(self, attr: str, value: Any) -> Any:
        if attr == "headers" and not isinstance(value, str):
            return json.dumps(value, indent=2, ensure_ascii=False)
        return super()._from_wire(attr, value)


@dataclass(frozen=True)
class EmailConfig(ChannelConfig):
    type: ClassVar[str] = "email"
    identifying: ClassVar[str] = "smtp_host"
    wire_keys: ClassVar[dict[str, str]] = {
        "smtpHost": "smtp_host",
        "smtpPort": "smtp_port",
        "username": "username",
        "password": "password",
        "from": "sender",
        "to": "recipient",
        "subject": "subject",
    }

    smtp_host: str = ""
    smtp_port: str = "587"
    username: str = ""
    password: str = ""
    sender: str = ""
    recipient: str = ""
    subject: str = "New SMS - {{from}}"


@dataclass(frozen=True)
class TelegramConfig(ChannelConfig):
    type: ClassVar[str] = "telegram"
    identifying: ClassVar[str] = "api_token"
    wire_keys: ClassVar[dict[str, str]] = {
        "apiToken": "api_token",
        "userid": "user_id",
        "proxyEnabled": "proxy_enabled",
        "proxyUrl": "proxy_url",
        "proxyUsername": "proxy_username",
        "proxyPassword": "proxy_password",
    }

    api_token: str = ""
    user_id: str = ""
    proxy_enabled: bool = False
    proxy_url: str = ""
    proxy_username: str = ""
    proxy_password: str = ""

    def to_config(self) -> dict[str, Any]:
        if self.proxy_enabled and not self.proxy_url.strip():
            raise ValidationError(
                "HTTP proxy is enabled but no proxy URL was given",
                field="telegram.proxyUrl",
            )
        return super().to_config()


CHANNEL_CLASSES: tuple[type[ChannelConfig], ...] = (
    DingtalkConfig,
    WecomConfig,
    FeishuConfig,
    WebhookConfig,
    EmailConfig,
    TelegramConfig,
)
CHANNEL_TYPES: tuple[str, ...] = tuple(cls.type for cls in CHANNEL_CLASSES)


@dataclass(frozen=True)
class ChannelForm:
    """The whole edit form: one config per channel type, all present."""

    dingtalk: DingtalkConfig = field(default_factory=DingtalkConfig)
    wecom: WecomConfig = field(default_factory=WecomConfig)
    feishu: FeishuConfig = field(default_factory=FeishuConfig)
    webhook: WebhookConfig = field(default_factory=WebhookConfig)
    email: EmailConfig = field(default_factory=EmailConfig)
    telegram: TelegramConfig = field(default_factory=TelegramConfig)

    def channels(self) -> tuple[ChannelConfig, ...]:
        return tuple(self.get(channel_type) for channel_type in CHANNEL_TYPES)

    def get(self, channel_type: str) -> ChannelConfig:
        if channel_type not in CHANNEL_TYPES:
            raise ValidationError(
                f"Unknown channel type '{channel_type}'. Available: {', '.join(CHANNEL_TYPES)}",
                field="type",
            )
        return getattr(self, channel_type)

    def with_channel(self, config: ChannelConfig) -> "ChannelForm":
        return replace(self, **{config.type: config})


def load_form(channels: Iterable[NotificationChannel], base: ChannelForm | None = None) -> ChannelForm:
    """Overlay persisted records on *base* (defaults when omitted)."""
    form = base or ChannelForm()
    for record in channels:
        if record.type not in CHANNEL_TYPES:
            LOGGER.warning("Ignoring notification channel of unknown type '%s'", record.type)
            continue
        form = form.with_channel(form.get(record.type).apply(record))
    return form


def build_channels(form: ChannelForm) -> list[NotificationChannel]:
    """Build the full replacement list; raises ValidationError before any save."""
    return [config.to_record() for config in form.channels() if config.persisted]


class ChannelEditor:
    """One edit session over the notification channel settings.

    States: ``loading`` -> ``ready`` -> ``editing`` -> ``saving`` -> ``ready``,
    or ``ready``/``editing`` -> ``testing`` -> back. ``test`` only sends the
    channel type, so the service exercises the last *saved* configuration,
    never unsaved edits in the form.

    A save replaces the whole channel list on the service. ``save`` is
    refused until a ``load`` has succeeded, which ``loaded`` records.
    """

    BUSY_STATES = ("loading", "saving", "testing")

    def __init__(
        self,
        transport: Transport,
        store: QueryStore | None = None,
        notifier: Notifier | None = None,
    ) -> None:
        self._transport = transport
        self.store = store or QueryStore()
        self.notifier = notifier or LogNotifier()
        self.form = ChannelForm()
        self.state = "loading"
        self.testing: str | None = None
        self.loaded = False
        self.store.register(CHANNELS_KEY, self._fetch)
        self._unsubscribe: Callable[[], None] | None = self.store.subscribe(CHANNELS_KEY, self._apply)

    async def _fetch(self) -> list[NotificationChannel]:
        payload = await self._transport.request("GET", CHANNELS_PATH)
        if payload is None:
            return []
        if not isinstance(payload, list):
            raise TransportError("Unexpected notification channel payload")
        return [NotificationChannel.from_json(doc) for doc in payload if isinstance(doc, dict)]

    def _apply(self, channels: list[NotificationChannel]) -> None:
        # Never overwrite a draft the operator is still working on.
        if self.state in ("loading", "ready"):
            self.form = load_form(channels, base=self.form)

    def close(self) -> None:
        """Stop applying fetched data to this session."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    async def load(self) -> ChannelForm:
        if self.state in ("saving", "testing"):
            raise ChannelStateError(f"Cannot reload while {self.state}")
        self.state = "loading"
        self.loaded = False
        self.form = ChannelForm()
        try:
            await self.store.fetch(CHANNELS_KEY)
            self.loaded = True
        except UnauthorizedError:
            raise
        except SmsgwError as exc:
            LOGGER.warning("Loading notification channels failed: %s", exc)
            self.notifier.error("Failed to load notification channels")
        finally:
            self.state = "ready"
        return self.form

    def edit(self, channel_type: str, **changes: Any) -> ChannelConfig:
        self._require_idle("edit")
        config = self.form.get(channel_type).update(**changes)
        self.form = self.form.with_channel(config)
        self.state = "editing"
        return config

    async def save(self) -> bool:
        self._require_idle("save")
        if not self.loaded:
            raise ChannelStateError("Cannot save notification channels before they have loaded")
        self.state = "saving"
        try:
            records = build_channels(self.form)
        except ValidationError as exc:
            self.notifier.error(str(exc))
            self.state = "editing"
            return False

        try:
            await self._transport.request("PUT", CHANNELS_PATH, json=[r.to_json() for r in records])
        except UnauthorizedError:
            self.state = "editing"
            return False
        except ServerError as exc:
            LOGGER.warning("Saving notification channels failed: %s", exc)
            self.notifier.error(f"Save failed: {exc}")
            self.state = "editing"
            return False
        except SmsgwError as exc:
            LOGGER.warning("Saving notification channels failed: %s", exc)
            self.notifier.error("Save failed")
            self.state = "editing"
            return False

        self.notifier.success("Notification channels saved")
        self.state = "ready"
        self.store.invalidate(CHANNELS_KEY)
        return True

    async def test(self, channel_type: str) -> bool:
        self._require_idle("test")
        if channel_type not in CHANNEL_TYPES:
            self.notifier.error(f"Unknown channel type '{channel_type}'")
            return False
        previous = self.state
        self.state = "testing"
        self.testing = channel_type
        try:
            await self._transport.request(
                "POST",
                f"/notifications/{channel_type}/test",
                json={"type": channel_type},
            )
        except UnauthorizedError:
            return False
        except SmsgwError as exc:
            LOGGER.warning("Test notification for %s failed: %s", channel_type, exc)
            self.notifier.error("Test failed, check the channel configuration")
            return False
        finally:
            self.state = previous
            self.testing = None

        self.notifier.success("Test notification sent, check the channel")
        return True

    def _require_idle(self, action: str) -> None:
        if self.state in self.BUSY_STATES:
            raise ChannelStateError(f"Cannot {action} notification channels while {self.state}")
