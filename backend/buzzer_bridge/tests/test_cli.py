from __future__ import annotations

import json

from typer.testing import CliRunner

from backend.buzzer_bridge.cli import app, main

runner = CliRunner()


def test_parse_prints_one_json_object_per_line() -> None:
    result = runner.invoke(app, ["parse", "BUZZER:AA:BB:CC:DD:EE:FF,42", "ACK:ARMED"])

    assert result.exit_code == 0
    first, second = [json.loads(line) for line in result.output.strip().splitlines()]
    assert first["kind"] == "PressEvent"
    assert first["timestamp_ms"] == 42
    assert second == {"kind": "Acknowledgement", "raw": "ACK:ARMED", "text": "ARMED"}


def test_command_in_simulation_prints_reply() -> None:
    result = runner.invoke(app, ["command", "DISARM", "--wait", "0.5"])

    assert result.exit_code == 0
    assert '"text": "DISARMED"' in result.output


def test_command_rejects_unknown_command() -> None:
    assert main(["command", "REBOOT", "--wait", "0"]) == 1
