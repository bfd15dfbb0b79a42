"""Per-device command dispatch.

Commands are sent as-is: no dedup, no debounce, no retry. Whether a device
must be online for sms/flymode/reboot is left to the caller (the console
disables those controls); the dispatcher does not re-check it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any

from smsgw.core.errors import ServerError, SmsgwError, UnauthorizedError
from smsgw.core.model import STRATEGIES, Device, DeviceDraft, SmsDraft
from smsgw.core.notify import LogNotifier, Notifier
from smsgw.core.registry import DeviceRegistryClient
from smsgw.transports.base import Transport

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandOutcome:
    ok: bool
    message: str
    payload: Any = None


def failed_outcome(notifier: Notifier, exc: SmsgwError, failure: str, request: str) -> CommandOutcome:
    """Report a failed request the way every console action does.

    Server messages are shown verbatim, other failures get *failure*, and an
    unauthorized response shows nothing since the session already asked for
    a login.
    """
    if isinstance(exc, UnauthorizedError):
        return CommandOutcome(ok=False, message=str(exc))
    if isinstance(exc, ServerError):
        message = str(exc) or failure
        notifier.error(message)
        return CommandOutcome(ok=False, message=message)
    LOGGER.warning("%s failed: %s", request, exc)
    notifier.error(failure)
    return CommandOutcome(ok=False, message=failure)


class CommandDispatcher:
    def __init__(
        self,
        transport: Transport,
        registry: DeviceRegistryClient,
        notifier: Notifier | None = None,
    ) -> None:
        self._transport = transport
        self._registry = registry
        self.notifier = notifier or LogNotifier()

    async def enable(self, device_id: str) -> CommandOutcome:
        return await self._dispatch(
            "POST",
            f"/devices/{device_id}/enable",
            success="Device enabled",
            failure="Failed to enable device",
        )

    async def disable(self, device_id: str) -> CommandOutcome:
        return await self._dispatch(
            "POST",
            f"/devices/{device_id}/disable",
            success="Device disabled",
            failure="Failed to disable device",
        )

    async def set_flymode(self, device_id: str, enabled: bool) -> CommandOutcome:
        return await self._dispatch(
            "POST",
            f"/devices/{device_id}/flymode",
            json={"enabled": enabled},
            success="Flight mode on" if enabled else "Flight mode off",
            failure="Failed to change flight mode",
        )

    async def reboot(self, device_id: str) -> CommandOutcome:
        return await self._dispatch(
            "POST",
            f"/devices/{device_id}/reboot",
            success="Module reboot command sent",
            failure="Failed to reboot module",
        )

    async def send_sms(self, device_id: str, draft: SmsDraft) -> CommandOutcome:
        """Send *draft* through one device; the draft is cleared on success."""
        if not draft.to.strip() or not draft.content.strip():
            return self._reject("Enter a phone number and message content")
        outcome = await self._dispatch(
            "POST",
            f"/devices/{device_id}/sms",
            json={"to": draft.to.strip(), "content": draft.content},
            success="SMS queued, waiting for confirmation",
            failure="Failed to send SMS",
        )
        if outcome.ok:
            draft.clear()
        return outcome

    async def auto_send_sms(self, draft: SmsDraft, strategy: str | None = None) -> CommandOutcome:
        """Send *draft* and let the service pick the device."""
        if not draft.to.strip() or not draft.content.strip():
            return self._reject("Enter a phone number and message content")
        if strategy is not None and strategy not in STRATEGIES:
            return self._reject(f"Unknown strategy '{strategy}'. Allowed: {', '.join(STRATEGIES)}")
        body: dict[str, Any] = {"to": draft.to.strip(), "content": draft.content}
        if strategy:
            body["strategy"] = strategy
        outcome = await self._dispatch(
            "POST",
            "/sms/send",
            json=body,
            success="SMS queued, waiting for confirmation",
            failure="Failed to send SMS",
        )
        if outcome.ok:
            draft.clear()
        return outcome

    async def create_device(self, draft: DeviceDraft) -> CommandOutcome:
        if not draft.serial_port.strip():
            return self._reject("Select a serial port")
        if draft.enabled is None:
            draft = replace(draft, enabled=True)
        outcome = await self._dispatch(
            "POST",
            "/devices",
            json=draft.to_json(),
            success="Device added",
            failure="Failed to add device",
        )
        if outcome.ok and isinstance(outcome.payload, dict):
            return CommandOutcome(ok=True, message=outcome.message, payload=Device.from_json(outcome.payload))
        return outcome

    async def update_device(self, device_id: str, draft: DeviceDraft) -> CommandOutcome:
        """Replace a device's settings.

        The service writes every field of an update, so a draft that leaves
        ``enabled`` or ``group_name`` unset takes them from the current device.
        """
        if draft.enabled is None or draft.group_name is None:
            try:
                current = await self._registry.get(device_id)
            except SmsgwError as exc:
                return failed_outcome(self.notifier, exc, "Failed to update device", f"GET /devices/{device_id}")
            draft = replace(
                draft,
                enabled=current.enabled if draft.enabled is None else draft.enabled,
                group_name=current.group_name if draft.group_name is None else draft.group_name,
            )
        return await self._dispatch(
            "PUT",
            f"/devices/{device_id}",
            json=draft.to_json(),
            success="Device updated",
            failure="Failed to update device",
        )

    async def delete_device(self, device_id: str) -> CommandOutcome:
        return await self._dispatch(
            "DELETE",
            f"/devices/{device_id}",
            success="Device deleted",
            failure="Failed to delete device",
        )

    async def _dispatch(
        self,
        method: str,
        path: str,
        *,
        success: str,
        failure: str,
        json: Any = None,
    ) -> CommandOutcome:
        try:
            payload = await self._transport.request(method, path, json=json)
        except SmsgwError as exc:
            return failed_outcome(self.notifier, exc, failure, f"{method} {path}")

        self.notifier.success(success)
        self._registry.invalidate()
        return CommandOutcome(ok=True, message=success, payload=payload)

    def _reject(self, message: str) -> CommandOutcome:
        self.notifier.warning(message)
        return CommandOutcome(ok=False, message=message)
