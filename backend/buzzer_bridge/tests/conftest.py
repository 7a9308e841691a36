"""Pytest fixtures shared across buzzer bridge tests."""
from __future__ import annotations

from pathlib import Path

import pytest

from backend.buzzer_bridge.services.config_store import (
    BridgeConfiguration,
    BuzzerBinding,
    CommandMapping,
    OscCommand,
    OscTarget,
    StaticConfigurationStore,
)


@pytest.fixture(autouse=True)
def bridge_env_sandbox(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for name in (
        "BRIDGE_SERIAL_PORT",
        "BRIDGE_SERIAL_BAUDRATE",
        "BRIDGE_SERIAL_TIMEOUT",
        "BRIDGE_STALE_AFTER",
        "BRIDGE_SIMULATION_DELAY",
    ):
        monkeypatch.delenv(name, raising=False)

    monkeypatch.setenv("BRIDGE_CONFIG_PATH", str(tmp_path / "bridge_config.json"))
    monkeypatch.setenv("BRIDGE_ACTIVITY_LOG_PATH", str(tmp_path / "activity.jsonl"))


@pytest.fixture
def bridge_config() -> BridgeConfiguration:
    """Two buzzers: one fanned out to three targets, one with an inactive mapping."""

    return BridgeConfiguration(
        bindings=[
            BuzzerBinding(id=1, mac_address="AA:BB:CC:DD:EE:FF", device_name="Team Red"),
            BuzzerBinding(id=2, mac_address="11:22:33:44:55:66", device_name="Team Blue"),
            BuzzerBinding(
                id=3, mac_address="DE:AD:BE:EF:00:01", device_name="Retired", is_active=False
            ),
        ],
        commands=[
            OscCommand(id=1, name="QLab - GO", address="/go"),
            OscCommand(id=2, name="Light - Scene 1", address="/light/scene", arguments=[1]),
            OscCommand(id=3, name="Flash", address="/layer1/video/opacity/values", arguments=[1.0]),
        ],
        targets=[
            OscTarget(id=1, name="QLab", ip_address="10.0.0.10", port=53000),
            OscTarget(id=2, name="Lighting", ip_address="10.0.0.20", port=8000),
            OscTarget(id=3, name="Resolume", ip_address="10.0.0.30", port=7000),
            OscTarget(id=4, name="Spare", ip_address="10.0.0.40", port=9000, is_active=False),
        ],
        mappings=[
            CommandMapping(id=1, buzzer_binding_id=1, osc_command_id=1, osc_target_id=1),
            CommandMapping(id=2, buzzer_binding_id=1, osc_command_id=2, osc_target_id=2),
            CommandMapping(id=3, buzzer_binding_id=1, osc_command_id=3, osc_target_id=3),
            CommandMapping(id=4, buzzer_binding_id=1, osc_command_id=1, osc_target_id=4),
            CommandMapping(
                id=5, buzzer_binding_id=2, osc_command_id=1, osc_target_id=1, is_active=False
            ),
            CommandMapping(id=6, buzzer_binding_id=3, osc_command_id=1, osc_target_id=1),
        ],
    )


@pytest.fixture
def config_store(bridge_config: BridgeConfiguration) -> StaticConfigurationStore:
    return StaticConfigurationStore(bridge_config)
