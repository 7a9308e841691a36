"""Read-only access to buzzer bindings, OSC commands, targets and mappings.

The admin layer owns the document; the bridge only reads it. The document is
plain JSON validated through pydantic so a malformed entry is rejected with a
clear message instead of failing later during dispatch.
"""
from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Union

from pydantic import BaseModel, Field, StrictFloat, StrictInt, StrictStr, ValidationError, field_validator

logger = logging.getLogger(__name__)

_CONFIG_ENV_VAR = "BRIDGE_CONFIG_PATH"
_DEFAULT_CONFIG_PATH = Path.home() / ".config" / "osc-buzzer" / "bridge_config.json"

OscArgument = Union[StrictInt, StrictFloat, StrictStr]


def _is_osc_argument(item: Any) -> bool:
    return isinstance(item, (int, float, str)) and not isinstance(item, bool)


class ConfigurationReadError(RuntimeError):
    """Raised when the configuration store cannot be queried."""


class BuzzerBinding(BaseModel):
    id: int
    mac_address: str
    device_name: str
    description: str = ""
    is_active: bool = True


class OscCommand(BaseModel):
    id: int
    name: str
    address: str
    category: str = "custom"
    arguments: List[OscArgument] = Field(default_factory=list)
    description: str = ""

    @field_validator("arguments", mode="before")
    @classmethod
    def _decode_arguments(cls, value: Any) -> Any:
        # Older documents store the argument list as a JSON string.
        if value is None:
            return []
        if isinstance(value, str):
            try:
                decoded = json.loads(value or "[]")
            except json.JSONDecodeError:
                logger.warning("Invalid JSON arguments for command: %s", value)
                return []
            value = decoded if isinstance(decoded, list) else [decoded]
        if not isinstance(value, list) or not all(_is_osc_argument(item) for item in value):
            # degrade this command only, never the whole document
            logger.warning("Unsupported OSC arguments for command: %r", value)
            return []
        return value


class OscTarget(BaseModel):
    id: int
    name: str
    ip_address: str
    port: int = Field(gt=0, lt=65536)
    description: str = ""
    is_active: bool = True

    @property
    def pool_key(self) -> str:
        return f"{self.ip_address}:{self.port}"


class CommandMapping(BaseModel):
    id: int
    buzzer_binding_id: int
    osc_command_id: int
    osc_target_id: int
    is_active: bool = True


class BridgeConfiguration(BaseModel):
    bindings: List[BuzzerBinding] = Field(default_factory=list)
    commands: List[OscCommand] = Field(default_factory=list)
    targets: List[OscTarget] = Field(default_factory=list)
    mappings: List[CommandMapping] = Field(default_factory=list)


class ResolvedMapping(BaseModel):
    """A mapping joined with its binding, command and target rows."""

    mapping_id: int
    binding: BuzzerBinding
    command: OscCommand
    target: OscTarget


class ConfigurationStore(Protocol):
    def mappings_for_buzzer(self, mac_address: str) -> List[ResolvedMapping]:
        ...

    def get_command(self, command_id: int) -> Optional[OscCommand]:
        ...

    def get_target(self, target_id: int) -> Optional[OscTarget]:
        ...

    def active_targets(self) -> List[OscTarget]:
        ...


_DEFAULT_COMMANDS: List[Dict[str, Any]] = [
    {"name": "Resolume - Flash Layer 1", "address": "/layer1/video/opacity/values", "category": "resolume", "arguments": [1.0]},
    {"name": "Resolume - Flash Layer 2", "address": "/layer2/video/opacity/values", "category": "resolume", "arguments": [1.0]},
    {"name": "Resolume - Trigger Clip 1-1", "address": "/layer1/clip1/connect", "category": "resolume", "arguments": [1]},
    {"name": "Resolume - Trigger Clip 1-2", "address": "/layer1/clip2/connect", "category": "resolume", "arguments": [1]},
    {"name": "Resolume - BPM Sync", "address": "/tempo/resync", "category": "resolume", "arguments": []},
    {"name": "QLab - GO", "address": "/go", "category": "qlab", "arguments": []},
    {"name": "QLab - Stop All", "address": "/stop", "category": "qlab", "arguments": []},
    {"name": "QLab - Panic", "address": "/panic", "category": "qlab", "arguments": []},
    {"name": "QLab - Cue 1", "address": "/cue/1/start", "category": "qlab", "arguments": []},
    {"name": "QLab - Cue 2", "address": "/cue/2/start", "category": "qlab", "arguments": []},
    {"name": "Light - Scene 1", "address": "/light/scene", "category": "lighting", "arguments": [1]},
    {"name": "Light - Scene 2", "address": "/light/scene", "category": "lighting", "arguments": [2]},
    {"name": "Light - Strobe On", "address": "/light/strobe", "category": "lighting", "arguments": [1]},
    {"name": "Light - Strobe Off", "address": "/light/strobe", "category": "lighting", "arguments": [0]},
    {"name": "Light - Blackout", "address": "/light/blackout", "category": "lighting", "arguments": []},
    {"name": "Audio - SFX 1", "address": "/audio/sfx/trigger", "category": "audio", "arguments": [1]},
    {"name": "Audio - SFX 2", "address": "/audio/sfx/trigger", "category": "audio", "arguments": [2]},
    {"name": "Audio - Music Start", "address": "/audio/music/play", "category": "audio", "arguments": []},
    {"name": "Audio - Music Stop", "address": "/audio/music/stop", "category": "audio", "arguments": []},
]


def default_configuration() -> BridgeConfiguration:
    """Seed catalogue used when no configuration document exists yet."""

    commands = [
        OscCommand(id=index, **entry) for index, entry in enumerate(_DEFAULT_COMMANDS, start=1)
    ]
    targets = [
        OscTarget(
            id=1,
            name="Local Test",
            ip_address="127.0.0.1",
            port=53000,
            description="Local OSC receiver for testing",
        )
    ]
    return BridgeConfiguration(commands=commands, targets=targets)


def _resolve_path(path: Optional[os.PathLike[str] | str] = None) -> Path:
    if path is not None:
        return Path(path).expanduser().resolve()

    env_override = os.getenv(_CONFIG_ENV_VAR)
    if env_override:
        return Path(env_override).expanduser().resolve()

    return _DEFAULT_CONFIG_PATH


def load_configuration(path: Optional[os.PathLike[str] | str] = None) -> BridgeConfiguration:
    """Load the configuration document, seeding defaults when it is missing."""

    config_path = _resolve_path(path)
    if not config_path.is_file():
        logger.info("No configuration at %s; using default command catalogue", config_path)
        return default_configuration()
    try:
        with config_path.open("r", encoding="utf-8") as handle:
            payload = json.load(handle)
        return BridgeConfiguration.model_validate(payload)
    except (OSError, json.JSONDecodeError, ValidationError) as exc:
        raise ConfigurationReadError(f"could not load {config_path}: {exc}") from exc


class StaticConfigurationStore:
    """Configuration store backed by an in-memory :class:`BridgeConfiguration`."""

    def __init__(self, configuration: BridgeConfiguration) -> None:
        self._config = configuration

    @property
    def configuration(self) -> BridgeConfiguration:
        return self._config

    def mappings_for_buzzer(self, mac_address: str) -> List[ResolvedMapping]:
        bindings = {
            binding.id: binding
            for binding in self._config.bindings
            if binding.mac_address == mac_address and binding.is_active
        }
        if not bindings:
            return []
        commands = {command.id: command for command in self._config.commands}
        targets = {target.id: target for target in self._config.targets if target.is_active}

        resolved: List[ResolvedMapping] = []
        for mapping in self._config.mappings:
            if not mapping.is_active:
                continue
            binding = bindings.get(mapping.buzzer_binding_id)
            command = commands.get(mapping.osc_command_id)
            target = targets.get(mapping.osc_target_id)
            if binding is None or command is None or target is None:
                continue
            resolved.append(
                ResolvedMapping(
                    mapping_id=mapping.id,
                    binding=binding,
                    command=command,
                    target=target,
                )
            )
        return resolved

    def get_command(self, command_id: int) -> Optional[OscCommand]:
        return next((c for c in self._config.commands if c.id == command_id), None)

    def get_target(self, target_id: int) -> Optional[OscTarget]:
        return next((t for t in self._config.targets if t.id == target_id), None)

    def active_targets(self) -> List[OscTarget]:
        return [target for target in self._config.targets if target.is_active]


class JsonConfigurationStore(StaticConfigurationStore):
    """Store that re-reads its JSON document whenever the file changes."""

    def __init__(self, path: Optional[os.PathLike[str] | str] = None) -> None:
        super().__init__(BridgeConfiguration())
        self._path = _resolve_path(path)
        self._mtime: Optional[float] = None
        self._loaded = False

    @property
    def path(self) -> Path:
        return self._path

    @property
    def configuration(self) -> BridgeConfiguration:
        self._refresh()
        return self._config

    def _current_mtime(self) -> Optional[float]:
        try:
            return self._path.stat().st_mtime
        except OSError:
            return None

    def _refresh(self) -> None:
        mtime = self._current_mtime()
        if self._loaded and mtime == self._mtime:
            return
        self._config = load_configuration(self._path)
        self._mtime = mtime
        if self._loaded:
            logger.info("Reloaded configuration from %s", self._path)
        self._loaded = True

    def mappings_for_buzzer(self, mac_address: str) -> List[ResolvedMapping]:
        self._refresh()
        return super().mappings_for_buzzer(mac_address)

    def get_command(self, command_id: int) -> Optional[OscCommand]:
        self._refresh()
        return super().get_command(command_id)

    def get_target(self, target_id: int) -> Optional[OscTarget]:
        self._refresh()
        return super().get_target(target_id)

    def active_targets(self) -> List[OscTarget]:
        self._refresh()
        return super().active_targets()


__all__ = [
    "BridgeConfiguration",
    "BuzzerBinding",
    "CommandMapping",
    "ConfigurationReadError",
    "ConfigurationStore",
    "JsonConfigurationStore",
    "OscArgument",
    "OscCommand",
    "OscTarget",
    "ResolvedMapping",
    "StaticConfigurationStore",
    "default_configuration",
    "load_configuration",
]
