"""Typer CLI entrypoint."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from pathlib import Path
from typing import Any, TypeVar

import typer

from smsgw.api import Client
from smsgw.core.channels import CHANNEL_TYPES, ChannelConfig, ChannelForm
from smsgw.core.errors import SmsgwError, UnauthorizedError
from smsgw.core.model import (
    Conversation,
    Device,
    DeviceDraft,
    FleetSummary,
    MessageStats,
    SmsDraft,
    TextMessage,
)
from smsgw.core.session import TokenStore
from smsgw.core.signal import describe_signal

LOGGER = logging.getLogger(__name__)
T = TypeVar("T")

app = typer.Typer(help="Operator console for serial-attached SMS gateways")
channels_app = typer.Typer(help="Notification channel settings")
app.add_typer(channels_app, name="channels")
messages_app = typer.Typer(help="Stored message history")
app.add_typer(messages_app, name="messages")


class EchoNotifier:
    def success(self, message: str) -> None:
        typer.echo(message)

    def warning(self, message: str) -> None:
        typer.echo(f"Warning: {message}", err=True)

    def error(self, message: str) -> None:
        typer.echo(f"Error: {message}", err=True)


def _login_required() -> None:
    typer.echo("Not logged in or session expired. Run 'smsgw login TOKEN' to sign in.", err=True)


def _build_client() -> Client:
    return Client(notifier=EchoNotifier(), on_login_required=_login_required)


def _run(action: Callable[[Client], Awaitable[T]]) -> T:
    async def _main() -> T:
        async with _build_client() as client:
            return await action(client)

    try:
        return asyncio.run(_main())
    except UnauthorizedError:
        raise typer.Exit(code=1) from None
    except SmsgwError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None
    except Exception as exc:
        LOGGER.debug("Unexpected failure", exc_info=True)
        typer.echo(
            f"Unexpected error: {exc}. Re-run the command, or run 'smsgw devices' to start over.",
            err=True,
        )
        raise typer.Exit(code=2) from None


def _exit_for(ok: bool) -> None:
    if not ok:
        raise typer.Exit(code=1)


def _format_device(device: Device) -> str:
    flags = []
    if not device.enabled:
        flags.append("disabled")
    if device.flymode:
        flags.append("flymode")
    line = f"{device.id} {device.label} [{device.status}] {device.serial_port}"
    if device.online:
        line += f" signal={describe_signal(device.signal_level)}"
        if device.phone_number:
            line += f" phone={device.phone_number}"
        if device.operator:
            line += f" operator={device.operator}"
    if device.group_name:
        line += f" group={device.group_name}"
    if flags:
        line += f" ({', '.join(flags)})"
    return line


def _format_summary(summary: FleetSummary) -> str:
    line = f"Online: {summary.online_count}/{summary.total_count}"
    best = summary.best_signal_device
    if best is not None:
        line += f", best signal: {best.label} {describe_signal(best.signal_level)}"
    return line


def _render_devices(devices: list[Device], summary: FleetSummary) -> None:
    if not devices:
        typer.echo("No devices registered")
        return
    for device in devices:
        typer.echo(_format_device(device))
    typer.echo(_format_summary(summary))


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


@app.command("login")
def login(token: str) -> None:
    """Store the bearer token used for every request."""
    if not token.strip():
        typer.echo("Error: token must not be empty", err=True)
        raise typer.Exit(code=1)
    TokenStore().set(token)
    typer.echo("Token saved")


@app.command("devices")
def list_devices(
    watch: bool = typer.Option(False, "--watch", help="Keep refreshing until interrupted"),
    interval: float | None = typer.Option(None, "--interval", help="Refresh interval in seconds"),
    count: int | None = typer.Option(None, "--count", help="Stop watching after N refreshes"),
) -> None:
    """List devices with signal and fleet summary."""

    async def action(client: Client) -> None:
        if not watch:
            devices = await client.list_devices()
            _render_devices(devices, client.registry.summary())
            return

        def render(devices: list[Device]) -> None:
            typer.echo(f"--- {len(devices)} device(s)")
            _render_devices(devices, client.registry.summary())

        unsubscribe = client.registry.subscribe(render)
        try:
            await client.registry.poll(interval or client.settings.management_poll_s, iterations=count)
        finally:
            unsubscribe()

    try:
        _run(action)
    except KeyboardInterrupt:
        return


@app.command("discover")
def discover_ports() -> None:
    """Scan the gateway host for serial ports."""
    ports = _run(lambda client: client.discover_ports())
    typer.echo(f"Found {len(ports)} serial port(s)")
    for port in ports:
        typer.echo(f"  {port}")


@app.command("add")
def add_device(
    port: str = typer.Option(..., "--port", help="Serial port, e.g. /dev/ttyUSB0"),
    name: str = typer.Option("", "--name", help="Display name"),
    group: str | None = typer.Option(None, "--group", help="Group name"),
    disabled: bool = typer.Option(False, "--disabled", help="Register without enabling"),
) -> None:
    """Register a device on a serial port."""
    draft = DeviceDraft(name=name, serial_port=port, group_name=group, enabled=not disabled)
    outcome = _run(lambda client: client.commands.create_device(draft))
    if outcome.ok and isinstance(outcome.payload, Device):
        typer.echo(_format_device(outcome.payload))
    _exit_for(outcome.ok)


@app.command("edit")
def edit_device(
    device_id: str,
    name: str | None = typer.Option(None, "--name", help="Display name"),
    port: str | None = typer.Option(None, "--port", help="Serial port"),
    group: str | None = typer.Option(None, "--group", help="Group name"),
) -> None:
    """Update a device; unspecified fields keep their current value."""

    async def action(client: Client) -> bool:
        current = await client.registry.get(device_id)
        draft = DeviceDraft(
            name=current.name if name is None else name,
            serial_port=current.serial_port if port is None else port,
            group_name=current.group_name if group is None else group,
            enabled=current.enabled,
        )
        outcome = await client.commands.update_device(device_id, draft)
        return outcome.ok

    _exit_for(_run(action))


@app.command("remove")
def remove_device(device_id: str) -> None:
    """Delete a device."""
    _exit_for(_run(lambda client: client.commands.delete_device(device_id)).ok)


@app.command("enable")
def enable_device(device_id: str) -> None:
    """Enable a device."""
    _exit_for(_run(lambda client: client.commands.enable(device_id)).ok)


@app.command("disable")
def disable_device(device_id: str) -> None:
    """Disable a device."""
    _exit_for(_run(lambda client: client.commands.disable(device_id)).ok)


@app.command("flymode")
def set_flymode(
    device_id: str,
    state: str = typer.Argument(..., help="on or off"),
) -> None:
    """Turn flight mode on or off for an online device."""
    if state not in ("on", "off"):
        typer.echo("Error: state must be 'on' or 'off'", err=True)
        raise typer.Exit(code=1)
    _exit_for(_run(lambda client: client.commands.set_flymode(device_id, state == "on")).ok)


@app.command("reboot")
def reboot_device(device_id: str) -> None:
    """Reboot the modem module of an online device."""
    _exit_for(_run(lambda client: client.commands.reboot(device_id)).ok)


@app.command("sms")
def send_sms(device_id: str, to: str, content: str) -> None:
    """Send one SMS through a specific device."""
    draft = SmsDraft(to=to, content=content)
    _exit_for(_run(lambda client: client.commands.send_sms(device_id, draft)).ok)


@app.command("send")
def auto_send(
    to: str,
    content: str,
    strategy: str | None = typer.Option(None, "--strategy", help="auto, round_robin, random or signal_best"),
) -> None:
    """Send one SMS and let the service pick the device."""
    draft = SmsDraft(to=to, content=content)
    _exit_for(_run(lambda client: client.commands.auto_send_sms(draft, strategy)).ok)


@app.command("batch")
def batch_send(
    content: str,
    to: list[str] | None = typer.Option(None, "--to", help="Recipient (repeatable)"),
    file: Path | None = typer.Option(None, "--file", help="File with one recipient per line"),
    device: str | None = typer.Option(None, "--device", help="Pin every message to this device"),
    strategy: str = typer.Option("auto", "--strategy", help="auto, round_robin, random or signal_best"),
) -> None:
    """Send the same SMS to many recipients."""
    recipients = list(to or [])
    if file is not None:
        try:
            recipients.append(file.read_text(encoding="utf-8"))
        except OSError as exc:
            typer.echo(f"Error: could not read {file}: {exc}", err=True)
            raise typer.Exit(code=1) from None

    report = _run(
        lambda client: client.batch_send(recipients, content, device_id=device, strategy=strategy)
    )
    if report is None:
        raise typer.Exit(code=1)
    for recipient, result in report.rows:
        if result is None:
            typer.echo(f"  {recipient}: no result")
        elif result.success:
            typer.echo(f"  {recipient}: sent via {result.device_id or '-'} ({result.message_id or '-'})")
        else:
            typer.echo(f"  {recipient}: failed ({result.error or 'unknown error'})")


def _format_channel(config: ChannelConfig) -> list[str]:
    if config.enabled:
        status = "enabled"
    elif config.identified:
        status = "staged"
    else:
        status = "not configured"
    lines = [f"{config.type}: {status}"]
    for key, attr in config.wire_keys.items():
        value = getattr(config, attr)
        if isinstance(value, str) and "\n" in value:
            value = " ".join(value.split())
        lines.append(f"  {key}: {value}")
    return lines


def _parse_assignments(assignments: list[str]) -> dict[str, Any]:
    changes: dict[str, Any] = {}
    for item in assignments:
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            typer.echo(f"Error: expected FIELD=VALUE, got '{item}'", err=True)
            raise typer.Exit(code=1)
        changes[key.strip()] = value
    return changes


@channels_app.command("show")
def show_channels() -> None:
    """Show every notification channel and its saved settings."""

    async def action(client: Client) -> ChannelForm | None:
        editor = client.channel_editor()
        try:
            form = await editor.load()
        finally:
            editor.close()
        return form if editor.loaded else None

    form = _run(action)
    if form is None:
        raise typer.Exit(code=1)
    for config in form.channels():
        for line in _format_channel(config):
            typer.echo(line)


@channels_app.command("set")
def set_channel(
    channel_type: str = typer.Argument(..., help=f"One of: {', '.join(CHANNEL_TYPES)}"),
    assignments: list[str] | None = typer.Argument(None, help="FIELD=VALUE pairs, e.g. secretKey=abc"),
    enable: bool | None = typer.Option(None, "--enable/--disable", help="Activate or deactivate"),
) -> None:
    """Change one channel's settings and save the whole channel list."""
    changes = _parse_assignments(assignments or [])
    if enable is not None:
        changes["enabled"] = enable

    async def action(client: Client) -> bool:
        editor = client.channel_editor()
        try:
            await editor.load()
            if not editor.loaded:
                return False
            editor.edit(channel_type, **changes)
            return await editor.save()
        finally:
            editor.close()

    _exit_for(_run(action))


@channels_app.command("test")
def test_channel(
    channel_type: str = typer.Argument(..., help=f"One of: {', '.join(CHANNEL_TYPES)}"),
) -> None:
    """Send a test notification using the saved settings of a channel."""

    async def action(client: Client) -> bool:
        editor = client.channel_editor()
        try:
            await editor.load()
            return await editor.test(channel_type)
        finally:
            editor.close()

    _exit_for(_run(action))


def _format_time(created_at: int | None) -> str:
    if not created_at:
        return "-"
    return datetime.fromtimestamp(created_at / 1000).strftime("%Y-%m-%d %H:%M")


def _format_conversation(conversation: Conversation) -> str:
    line = f"{conversation.peer} ({conversation.message_count} message(s))"
    last = conversation.last_message
    if last is not None:
        line += f" {_format_time(last.created_at)} {last.content}"
    return line


def _format_message(message: TextMessage) -> str:
    arrow = "<-" if message.incoming else "->"
    line = f"{_format_time(message.created_at)} {arrow} {message.content}"
    if message.status:
        line += f" [{message.status}]"
    return f"{line} ({message.id})"


@messages_app.callback(invoke_without_command=True)
def list_conversations(ctx: typer.Context) -> None:
    """List conversations, newest first, with message counters."""
    if ctx.invoked_subcommand is not None:
        return

    async def action(client: Client) -> tuple[MessageStats, list[Conversation]]:
        return await client.message_stats(), await client.conversations()

    stats, conversations = _run(action)
    typer.echo(
        f"Messages: {stats.total_count} total, {stats.incoming_count} incoming, "
        f"{stats.outgoing_count} outgoing, {stats.today_count} today"
    )
    if not conversations:
        typer.echo("No conversations")
    for conversation in conversations:
        typer.echo(_format_conversation(conversation))


@messages_app.command("show")
def show_conversation(peer: str) -> None:
    """Show every message exchanged with PEER, oldest first."""
    messages = _run(lambda client: client.messages.messages(peer))
    if not messages:
        typer.echo(f"No messages with {peer}")
    for message in messages:
        typer.echo(_format_message(message))


@messages_app.command("rm")
def remove_messages(
    message_id: str | None = typer.Argument(None, help="Id of a single message"),
    peer: str | None = typer.Option(None, "--peer", help="Delete the whole conversation with this number"),
    all_messages: bool = typer.Option(False, "--all", help="Delete every stored message"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation for --all"),
) -> None:
    """Delete one message, one conversation or the whole history."""
    if sum((message_id is not None, peer is not None, all_messages)) != 1:
        typer.echo("Error: give exactly one of MESSAGE_ID, --peer or --all", err=True)
        raise typer.Exit(code=1)

    if all_messages:
        if not yes:
            typer.confirm("Delete every stored message?", abort=True)
        outcome = _run(lambda client: client.messages.clear())
    elif peer is not None:
        outcome = _run(lambda client: client.messages.delete_conversation(peer))
    else:
        outcome = _run(lambda client: client.messages.delete_message(message_id or ""))
    _exit_for(outcome.ok)


def run() -> None:
    app()


if __name__ == "__main__":
    run()
