from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest
from typer.testing import CliRunner

from smsgw import cli
from smsgw.api import Client
from smsgw.core.config import Settings
from smsgw.core.errors import ServerError, TransportError, UnauthorizedError

DEVICES = [
    {"id": "1", "name": "gw-north", "serialPort": "/dev/ttyUSB0", "status": "online", "signalLevel": 25},
    {"id": "2", "name": "gw-south", "serialPort": "/dev/ttyUSB1", "status": "offline", "signalLevel": 0},
]


class FakeTransport:
    def __init__(self, replies: dict[tuple[str, str], Any] | None = None) -> None:
        self.replies = dict(replies or {})
        self.calls: list[tuple[str, str, Any]] = []

    async def request(self, method: str, path: str, *, json: Any = None) -> Any:
        self.calls.append((method, path, json))
        reply = self.replies.get((method, path), {"message": "ok"})
        if isinstance(reply, Exception):
            raise reply
        return reply


runner = CliRunner()


def _use_transport(monkeypatch: pytest.MonkeyPatch, transport: FakeTransport) -> None:
    def factory(**kwargs: Any) -> Client:
        return Client(settings=Settings(), transport=transport, **kwargs)

    monkeypatch.setattr(cli, "Client", factory)


def test_devices_command(monkeypatch: pytest.MonkeyPatch) -> None:
    _use_transport(monkeypatch, FakeTransport({("GET", "/devices"): DEVICES}))
    result = runner.invoke(cli.app, ["devices"])
    assert result.exit_code == 0
    assert "1 gw-north [online] /dev/ttyUSB0 signal=excellent (81%)" in result.stdout
    assert "2 gw-south [offline]" in result.stdout
    assert "Online: 1/2, best signal: gw-north excellent (81%)" in result.stdout


def test_devices_watch_renders_each_refresh(monkeypatch: pytest.MonkeyPatch) -> None:
    transport = FakeTransport({("GET", "/devices"): DEVICES})
    _use_transport(monkeypatch, transport)
    result = runner.invoke(cli.app, ["devices", "--watch", "--interval", "0", "--count", "2"])
    assert result.exit_code == 0
    assert result.stdout.count("--- 2 device(s)") == 2
    assert len(transport.calls) == 2


def test_devices_watch_stops_on_unauthorized(monkeypatch: pytest.MonkeyPatch) -> None:
    transport = FakeTransport({("GET", "/devices"): UnauthorizedError()})
    _use_transport(monkeypatch, transport)
    result = runner.invoke(cli.app, ["devices", "--watch", "--interval", "0", "--count", "3"])
    assert result.exit_code == 1
    assert len(transport.calls) == 1


def test_enable_command(monkeypatch: pytest.MonkeyPatch) -> None:
    transport = FakeTransport()
    _use_transport(monkeypatch, transport)
    result = runner.invoke(cli.app, ["enable", "1"])
    assert result.exit_code == 0
    assert "Device enabled" in result.stdout
    assert transport.calls == [("POST", "/devices/1/enable", None)]


def test_command_failure_shows_server_message(monkeypatch: pytest.MonkeyPatch) -> None:
    _use_transport(
        monkeypatch,
        FakeTransport({("POST", "/devices/1/reboot"): ServerError("device offline", status_code=409)}),
    )
    result = runner.invoke(cli.app, ["reboot", "1"])
    assert result.exit_code == 1
    assert "Error: device offline" in result.stderr


def test_flymode_rejects_bad_state(monkeypatch: pytest.MonkeyPatch) -> None:
    transport = FakeTransport()
    _use_transport(monkeypatch, transport)
    result = runner.invoke(cli.app, ["flymode", "1", "maybe"])
    assert result.exit_code == 1
    assert transport.calls == []


def test_flymode_on(monkeypatch: pytest.MonkeyPatch) -> None:
    transport = FakeTransport()
    _use_transport(monkeypatch, transport)
    result = runner.invoke(cli.app, ["flymode", "1", "on"])
    assert result.exit_code == 0
    assert transport.calls == [("POST", "/devices/1/flymode", {"enabled": True})]


def test_sms_command(monkeypatch: pytest.MonkeyPatch) -> None:
    transport = FakeTransport()
    _use_transport(monkeypatch, transport)
    result = runner.invoke(cli.app, ["sms", "1", "+15550100", "hello there"])
    assert result.exit_code == 0
    assert transport.calls == [("POST", "/devices/1/sms", {"to": "+15550100", "content": "hello there"})]


def test_discover_command(monkeypatch: pytest.MonkeyPatch) -> None:
    _use_transport(
        monkeypatch,
        FakeTransport({("GET", "/devices/discover"): {"ports": ["/dev/ttyUSB0", "/dev/ttyUSB1"]}}),
    )
    result = runner.invoke(cli.app, ["discover"])
    assert result.exit_code == 0
    assert "Found 2 serial port(s)" in result.stdout
    assert "/dev/ttyUSB1" in result.stdout


def test_discover_failure_is_clean(monkeypatch: pytest.MonkeyPatch) -> None:
    _use_transport(monkeypatch, FakeTransport({("GET", "/devices/discover"): TransportError("refused")}))
    result = runner.invoke(cli.app, ["discover"])
    assert result.exit_code == 1
    assert "Error: refused" in result.stderr
    assert "Traceback" not in result.stderr


def test_unexpected_failure_hits_recovery_boundary(monkeypatch: pytest.MonkeyPatch) -> None:
    _use_transport(monkeypatch, FakeTransport({("GET", "/devices"): RuntimeError("boom")}))
    result = runner.invoke(cli.app, ["devices"])
    assert result.exit_code == 2
    assert "Unexpected error: boom" in result.stderr
    assert "smsgw devices" in result.stderr


def test_batch_command(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    recipients = tmp_path / "recipients.txt"
    recipients.write_text("+2\n\n  +3  \n", encoding="utf-8")
    transport = FakeTransport(
        {
            ("POST", "/sms/batch"): {
                "results": [
                    {"recipient": "+3", "success": False, "error": "no device"},
                    {"recipient": "+1", "success": True, "deviceId": "1", "messageId": "m1"},
                    {"recipient": "+2", "success": True, "deviceId": "1", "messageId": "m2"},
                ]
            }
        }
    )
    _use_transport(monkeypatch, transport)

    result = runner.invoke(
        cli.app,
        ["batch", "hi", "--to", "+1", "--file", str(recipients), "--strategy", "signal_best"],
    )

    assert result.exit_code == 0
    assert transport.calls == [
        ("POST", "/sms/batch", {"recipients": ["+1", "+2", "+3"], "content": "hi", "strategy": "signal_best"})
    ]
    assert "Warning: Batch finished: 2 succeeded, 1 failed" in result.stderr
    lines = result.stdout.splitlines()
    assert lines.index("  +1: sent via 1 (m1)") < lines.index("  +3: failed (no device)")


def test_batch_without_recipients_fails_locally(monkeypatch: pytest.MonkeyPatch) -> None:
    transport = FakeTransport()
    _use_transport(monkeypatch, transport)
    result = runner.invoke(cli.app, ["batch", "hi"])
    assert result.exit_code == 1
    assert "Error: Enter at least one recipient" in result.stderr
    assert transport.calls == []


def test_channels_show(monkeypatch: pytest.MonkeyPatch) -> None:
    _use_transport(
        monkeypatch,
        FakeTransport(
            {
                ("GET", "/properties/notificationChannels"): [
                    {"type": "dingtalk", "enabled": False, "config": {"secretKey": "X"}},
                    {"type": "email", "enabled": True, "config": {"smtpHost": "smtp.test"}},
                ]
            }
        ),
    )
    result = runner.invoke(cli.app, ["channels", "show"])
    assert result.exit_code == 0
    assert "dingtalk: staged" in result.stdout
    assert "email: enabled" in result.stdout
    assert "  smtpPort: 587" in result.stdout
    assert "wecom: not configured" in result.stdout


def test_channels_set_saves_full_list(monkeypatch: pytest.MonkeyPatch) -> None:
    transport = FakeTransport(
        {
            ("GET", "/properties/notificationChannels"): [
                {"type": "wecom", "enabled": True, "config": {"secretKey": "w"}},
            ]
        }
    )
    _use_transport(monkeypatch, transport)

    result = runner.invoke(cli.app, ["channels", "set", "telegram", "apiToken=123:abc", "userid=42", "--enable"])

    assert result.exit_code == 0
    puts = [c for c in transport.calls if c[0] == "PUT"]
    assert len(puts) == 1
    saved = puts[0][2]
    assert [r["type"] for r in saved] == ["wecom", "telegram"]
    assert saved[1]["enabled"] is True
    assert saved[1]["config"]["apiToken"] == "123:abc"
    assert saved[1]["config"]["userid"] == "42"


def test_channels_set_does_not_save_after_failed_load(monkeypatch: pytest.MonkeyPatch) -> None:
    transport = FakeTransport(
        {("GET", "/properties/notificationChannels"): ServerError("service unavailable", status_code=503)}
    )
    _use_transport(monkeypatch, transport)

    result = runner.invoke(cli.app, ["channels", "set", "dingtalk", "secretKey=X"])

    assert result.exit_code == 1
    assert "Error: Failed to load notification channels" in result.stderr
    assert [c for c in transport.calls if c[0] == "PUT"] == []


def test_channels_show_fails_when_load_fails(monkeypatch: pytest.MonkeyPatch) -> None:
    _use_transport(
        monkeypatch,
        FakeTransport({("GET", "/properties/notificationChannels"): TransportError("refused")}),
    )
    result = runner.invoke(cli.app, ["channels", "show"])
    assert result.exit_code == 1
    assert "dingtalk:" not in result.stdout


def test_channels_set_rejects_bad_headers(monkeypatch: pytest.MonkeyPatch) -> None:
    transport = FakeTransport({("GET", "/properties/notificationChannels"): []})
    _use_transport(monkeypatch, transport)

    result = runner.invoke(cli.app, ["channels", "set", "webhook", "url=https://hook.test", "headers={not json"])

    assert result.exit_code == 1
    assert "Webhook headers are not valid JSON" in result.stderr
    assert [c for c in transport.calls if c[0] == "PUT"] == []


def test_channels_test(monkeypatch: pytest.MonkeyPatch) -> None:
    transport = FakeTransport({("GET", "/properties/notificationChannels"): []})
    _use_transport(monkeypatch, transport)
    result = runner.invoke(cli.app, ["channels", "test", "feishu"])
    assert result.exit_code == 0
    assert ("POST", "/notifications/feishu/test", {"type": "feishu"}) in transport.calls


def test_messages_lists_conversations(monkeypatch: pytest.MonkeyPatch) -> None:
    _use_transport(
        monkeypatch,
        FakeTransport(
            {
                ("GET", "/messages/stats"): {"totalCount": 3, "incomingCount": 2, "outgoingCount": 1, "todayCount": 1},
                ("GET", "/messages/conversations"): [
                    {
                        "peer": "+15550100",
                        "messageCount": 3,
                        "lastMessage": {"id": "m3", "content": "see you", "type": "incoming", "from": "+15550100"},
                    }
                ],
            }
        ),
    )
    result = runner.invoke(cli.app, ["messages"])
    assert result.exit_code == 0
    assert "Messages: 3 total, 2 incoming, 1 outgoing, 1 today" in result.stdout
    assert "+15550100 (3 message(s)) - see you" in result.stdout


def test_messages_show(monkeypatch: pytest.MonkeyPatch) -> None:
    _use_transport(
        monkeypatch,
        FakeTransport(
            {
                ("GET", "/messages/conversations/%2B15550100/messages"): [
                    {"id": "m1", "from": "+15550100", "to": "+1", "content": "ping", "type": "incoming"},
                    {"id": "m2", "from": "+1", "to": "+15550100", "content": "pong", "type": "outgoing", "status": "sent"},
                ]
            }
        ),
    )
    result = runner.invoke(cli.app, ["messages", "show", "+15550100"])
    assert result.exit_code == 0
    assert result.stdout.splitlines() == ["- <- ping (m1)", "- -> pong [sent] (m2)"]


def test_messages_rm(monkeypatch: pytest.MonkeyPatch) -> None:
    transport = FakeTransport()
    _use_transport(monkeypatch, transport)

    assert runner.invoke(cli.app, ["messages", "rm", "m1"]).exit_code == 0
    assert runner.invoke(cli.app, ["messages", "rm", "--peer", "+15550100"]).exit_code == 0
    assert runner.invoke(cli.app, ["messages", "rm", "--all"], input="y\n").exit_code == 0

    assert transport.calls == [
        ("DELETE", "/messages/m1", None),
        ("DELETE", "/messages/conversations/%2B15550100", None),
        ("DELETE", "/messages", None),
    ]


def test_messages_rm_needs_exactly_one_target(monkeypatch: pytest.MonkeyPatch) -> None:
    transport = FakeTransport()
    _use_transport(monkeypatch, transport)

    assert runner.invoke(cli.app, ["messages", "rm"]).exit_code == 1
    assert runner.invoke(cli.app, ["messages", "rm", "m1", "--all"]).exit_code == 1
    declined = runner.invoke(cli.app, ["messages", "rm", "--all"], input="n\n")
    assert declined.exit_code == 1
    assert transport.calls == []


def test_login_stores_token(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path))
    result = runner.invoke(cli.app, ["login", "abc123"])
    assert result.exit_code == 0
    assert (tmp_path / "smsgw" / "token").read_text(encoding="utf-8").strip() == "abc123"
