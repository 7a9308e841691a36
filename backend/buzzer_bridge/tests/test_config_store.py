from __future__ import annotations

import json
import os
from pathlib import Path

import pytest

from backend.buzzer_bridge.services.config_store import (
    ConfigurationReadError,
    JsonConfigurationStore,
    OscCommand,
    StaticConfigurationStore,
    load_configuration,
)
from backend.buzzer_bridge.services.mapping_resolver import MappingResolver


def test_missing_document_seeds_default_catalogue(tmp_path: Path) -> None:
    config = load_configuration(tmp_path / "absent.json")

    assert len(config.commands) == 19
    assert config.targets[0].name == "Local Test"
    assert config.targets[0].port == 53000
    assert config.mappings == []


def test_invalid_document_raises_read_error(tmp_path: Path) -> None:
    path = tmp_path / "broken.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(ConfigurationReadError):
        load_configuration(path)


def test_arguments_stored_as_json_string_are_decoded() -> None:
    assert OscCommand(id=1, name="Scene", address="/scene", arguments="[1, 0.5]").arguments == [1, 0.5]
    assert OscCommand(id=2, name="Bad", address="/bad", arguments="[oops").arguments == []


def test_resolver_returns_only_fully_active_mappings(config_store: StaticConfigurationStore) -> None:
    instructions = MappingResolver(config_store).resolve("AA:BB:CC:DD:EE:FF")

    assert [instruction.mapping_id for instruction in instructions] == [1, 2, 3]
    assert [instruction.target_name for instruction in instructions] == ["QLab", "Lighting", "Resolume"]
    assert instructions[1].arguments == (1,)
    assert instructions[0].device_name == "Team Red"


def test_resolver_skips_inactive_mapping_and_binding(config_store: StaticConfigurationStore) -> None:
    resolver = MappingResolver(config_store)

    assert resolver.resolve("11:22:33:44:55:66") == []
    assert resolver.resolve("DE:AD:BE:EF:00:01") == []
    assert resolver.resolve("99:99:99:99:99:99") == []


def test_resolver_wraps_store_failures() -> None:
    class _Broken:
        def mappings_for_buzzer(self, mac_address: str):
            raise RuntimeError("database locked")

    with pytest.raises(ConfigurationReadError, match="database locked"):
        MappingResolver(_Broken()).resolve("AA:BB:CC:DD:EE:FF")  # type: ignore[arg-type]


def test_json_store_reloads_when_document_changes(tmp_path: Path, bridge_config) -> None:
    path = tmp_path / "bridge_config.json"
    path.write_text(bridge_config.model_dump_json(), encoding="utf-8")
    store = JsonConfigurationStore(path)

    assert len(store.mappings_for_buzzer("AA:BB:CC:DD:EE:FF")) == 3

    payload = json.loads(path.read_text(encoding="utf-8"))
    payload["mappings"] = payload["mappings"][:1]
    path.write_text(json.dumps(payload), encoding="utf-8")
    stat = path.stat()
    os.utime(path, (stat.st_atime, stat.st_mtime + 10))

    assert len(store.mappings_for_buzzer("AA:BB:CC:DD:EE:FF")) == 1


def test_json_store_uses_env_path() -> None:
    store = JsonConfigurationStore()

    assert store.path.name == "bridge_config.json"
    assert store.get_target(1).name == "Local Test"
    assert [target.id for target in store.active_targets()] == [1]


def test_unsupported_arguments_degrade_only_their_command(tmp_path: Path) -> None:
    path = tmp_path / "bridge_config.json"
    path.write_text(
        json.dumps(
            {
                "bindings": [
                    {"id": 1, "mac_address": "AA", "device_name": "Team Red"},
                    {"id": 2, "mac_address": "BB", "device_name": "Team Blue"},
                ],
                "commands": [
                    {"id": 1, "name": "Scene", "address": "/scene", "arguments": [1]},
                    {"id": 2, "name": "Toggle", "address": "/toggle", "arguments": "[true]"},
                    {"id": 3, "name": "Nested", "address": "/nested", "arguments": [[1, 2]]},
                ],
                "targets": [{"id": 1, "name": "QLab", "ip_address": "10.0.0.10", "port": 53000}],
                "mappings": [
                    {"id": 1, "buzzer_binding_id": 1, "osc_command_id": 1, "osc_target_id": 1},
                    {"id": 2, "buzzer_binding_id": 2, "osc_command_id": 2, "osc_target_id": 1},
                ],
            }
        ),
        encoding="utf-8",
    )
    resolver = MappingResolver(JsonConfigurationStore(path))

    (healthy,) = resolver.resolve("AA")
    (degraded,) = resolver.resolve("BB")

    assert healthy.arguments == (1,)
    assert degraded.osc_address == "/toggle"
    assert degraded.arguments == ()
    assert load_configuration(path).commands[2].arguments == []
