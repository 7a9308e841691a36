"""Classify raw coordinator lines into typed events.

The coordinator firmware has gone through several revisions and the lines it
emits overlap only partially. ``parse_line`` recognises every known shape and
degrades per field: a malformed ``key=value`` pair is dropped, the rest of the
line is still used. It never raises.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

logger = logging.getLogger(__name__)

DISCOVERY_NORMAL = "normal"
DISCOVERY_HEARTBEAT = "heartbeat-inferred"

_HEARTBEAT_RE = re.compile(r"Heartbeat from device (?P<slot>\d+)")
_BYTES_FROM_RE = re.compile(
    r"Received (?P<count>\d+) bytes from: (?P<mac>[0-9A-Fa-f]{2}(?::[0-9A-Fa-f]{2}){5})"
)


@dataclass(frozen=True)
class PressEvent:
    identifier: str
    timestamp_ms: Optional[int]
    raw: str = ""


@dataclass(frozen=True)
class StatusReport:
    armed: Optional[int] = None
    devices: Optional[int] = None
    extra: Dict[str, Union[int, str]] = field(default_factory=dict)
    raw: str = ""


@dataclass(frozen=True)
class PresenceUpdate:
    """Presence observation for a single device.

    ``None`` means the field was not present on the line.
    """

    identifier: str
    online: Optional[bool] = None
    armed: Optional[bool] = None
    pressed: Optional[bool] = None
    discovery_mode: str = DISCOVERY_NORMAL
    raw: str = ""


@dataclass(frozen=True)
class HeartbeatSignal:
    slot: int
    raw: str = ""


@dataclass(frozen=True)
class Acknowledgement:
    text: str
    raw: str = ""


@dataclass(frozen=True)
class DeviceError:
    text: str
    raw: str = ""


@dataclass(frozen=True)
class UnrecognizedLine:
    raw: str
    reason: str = "unrecognized"


CoordinatorEvent = Union[
    PressEvent,
    StatusReport,
    PresenceUpdate,
    HeartbeatSignal,
    Acknowledgement,
    DeviceError,
    UnrecognizedLine,
]


# ----------------------------------------------------------------------
# Value decoding
# ----------------------------------------------------------------------
def decode_int(token: str) -> int:
    return int(token.strip(), 10)


def decode_flag(token: str) -> bool:
    value = token.strip().lower()
    if value in {"1", "true"}:
        return True
    if value in {"0", "false"}:
        return False
    raise ValueError(f"not a flag: {token!r}")


def decode_loose(token: str) -> Union[int, str]:
    token = token.strip()
    try:
        return decode_int(token)
    except ValueError:
        return token


STATUS_SCHEMA: Dict[str, Callable[[str], object]] = {
    "armed": decode_int,
    "devices": decode_int,
}

DEVICE_SCHEMA: Dict[str, Callable[[str], object]] = {
    "online": decode_flag,
    "armed": decode_flag,
    "pressed": decode_flag,
}


def split_pairs(segments: Iterable[str]) -> List[Tuple[str, str]]:
    """Return ``(key, value)`` tuples, skipping segments without ``=``."""

    pairs: List[Tuple[str, str]] = []
    for segment in segments:
        if "=" not in segment:
            continue
        key, value = segment.split("=", 1)
        key = key.strip()
        if not key:
            continue
        pairs.append((key, value))
    return pairs


def decode_fields(
    pairs: Iterable[Tuple[str, str]],
    schema: Dict[str, Callable[[str], object]],
) -> Tuple[Dict[str, object], Dict[str, str]]:
    """Decode ``pairs`` against ``schema``.

    Returns the decoded known fields and the raw unknown ones. A known field
    whose value does not decode is dropped.
    """

    known: Dict[str, object] = {}
    unknown: Dict[str, str] = {}
    for key, value in pairs:
        decoder = schema.get(key)
        if decoder is None:
            unknown[key] = value
            continue
        try:
            known[key] = decoder(value)
        except ValueError:
            logger.debug("Skipping malformed field %s=%r", key, value)
    return known, unknown


# ----------------------------------------------------------------------
# Line shapes
# ----------------------------------------------------------------------
def _parse_buzzer(raw: str, body: str) -> CoordinatorEvent:
    identifier, _, stamp = body.partition(",")
    identifier = identifier.strip()
    if not identifier:
        return UnrecognizedLine(raw=raw, reason="empty buzzer identifier")
    try:
        timestamp_ms: Optional[int] = decode_int(stamp) if stamp.strip() else None
    except ValueError:
        logger.debug("Non-numeric buzzer timestamp %r", stamp)
        timestamp_ms = None
    return PressEvent(identifier=identifier, timestamp_ms=timestamp_ms, raw=raw)


def _parse_status(raw: str, body: str) -> CoordinatorEvent:
    known, unknown = decode_fields(split_pairs(body.split(",")), STATUS_SCHEMA)
    extra: Dict[str, Union[int, str]] = {}
    for key, value in unknown.items():
        logger.debug("Unrecognised STATUS key %s", key)
        extra[key] = decode_loose(value)
    return StatusReport(
        armed=known.get("armed"),  # type: ignore[arg-type]
        devices=known.get("devices"),  # type: ignore[arg-type]
        extra=extra,
        raw=raw,
    )


def _parse_device(raw: str, body: str) -> CoordinatorEvent:
    identifier, _, rest = body.partition(",")
    identifier = identifier.strip()
    if not identifier:
        return UnrecognizedLine(raw=raw, reason="empty device identifier")
    if not rest.strip():
        return UnrecognizedLine(raw=raw, reason="device line without fields")

    known, unknown = decode_fields(split_pairs(rest.split(",")), DEVICE_SCHEMA)
    for key in unknown:
        logger.debug("Ignoring DEVICE key %s for %s", key, identifier)
    return PresenceUpdate(
        identifier=identifier,
        online=known.get("online"),  # type: ignore[arg-type]
        armed=known.get("armed"),  # type: ignore[arg-type]
        pressed=known.get("pressed"),  # type: ignore[arg-type]
        raw=raw,
    )


def parse_line(line: str) -> CoordinatorEvent:
    """Classify a single decoded line from the coordinator."""

    raw = (line or "").strip()
    if not raw:
        return UnrecognizedLine(raw=raw, reason="empty line")

    if raw.startswith("BUZZER:"):
        return _parse_buzzer(raw, raw[len("BUZZER:"):])
    if raw.startswith("STATUS:"):
        return _parse_status(raw, raw[len("STATUS:"):])
    if raw.startswith("DEVICE:"):
        return _parse_device(raw, raw[len("DEVICE:"):])

    heartbeat = _HEARTBEAT_RE.search(raw)
    if heartbeat:
        return HeartbeatSignal(slot=int(heartbeat.group("slot")), raw=raw)

    received = _BYTES_FROM_RE.search(raw)
    if received:
        return PresenceUpdate(
            identifier=received.group("mac"),
            online=True,
            armed=False,
            pressed=False,
            discovery_mode=DISCOVERY_HEARTBEAT,
            raw=raw,
        )

    if raw.startswith("ACK:"):
        return Acknowledgement(text=raw[len("ACK:"):].strip(), raw=raw)
    if raw.startswith("ERROR:"):
        return DeviceError(text=raw[len("ERROR:"):].strip(), raw=raw)

    return UnrecognizedLine(raw=raw)


def describe_event(event: CoordinatorEvent) -> Dict[str, object]:
    """Return a JSON-friendly description of ``event``."""

    payload: Dict[str, object] = {"kind": type(event).__name__}
    payload.update({key: value for key, value in vars(event).items()})
    return payload


__all__ = [
    "Acknowledgement",
    "CoordinatorEvent",
    "DEVICE_SCHEMA",
    "DISCOVERY_HEARTBEAT",
    "DISCOVERY_NORMAL",
    "DeviceError",
    "HeartbeatSignal",
    "PresenceUpdate",
    "PressEvent",
    "STATUS_SCHEMA",
    "StatusReport",
    "UnrecognizedLine",
    "decode_fields",
    "describe_event",
    "parse_line",
    "split_pairs",
]
