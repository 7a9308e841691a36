"""In-memory presence table for buzzer devices seen on the coordinator link."""
from __future__ import annotations

import time
from dataclasses import asdict, dataclass
from typing import Callable, Dict, List, Optional, Tuple

from .line_protocol import DISCOVERY_HEARTBEAT, DISCOVERY_NORMAL, PresenceUpdate

DEFAULT_STALE_AFTER = 60.0  # seconds


@dataclass
class DeviceState:
    identifier: str
    last_seen_at: float
    online: bool = False
    armed: bool = False
    pressed: bool = False
    press_count: int = 0
    last_online_at: Optional[float] = None
    last_press_at: Optional[float] = None
    discovery_mode: str = DISCOVERY_NORMAL


@dataclass(frozen=True)
class DeviceView:
    """Point-in-time projection of a :class:`DeviceState`."""

    identifier: str
    status: str
    online: bool
    armed: bool
    pressed: bool
    press_count: int
    last_seen_at: float
    last_online_at: Optional[float]
    last_press_at: Optional[float]
    discovery_mode: str
    seconds_since_last_seen: float
    seconds_since_last_online: Optional[float]

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)


class DeviceStateStore:
    """Owns every :class:`DeviceState`; callers only go through its methods.

    Online/offline is not a stored verdict: ``snapshot`` compares
    ``last_seen_at`` against ``stale_after`` on every read.
    """

    def __init__(
        self,
        stale_after: float = DEFAULT_STALE_AFTER,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._stale_after = stale_after
        self._clock = clock
        self._devices: Dict[str, DeviceState] = {}
        self._last_heartbeat: Optional[Tuple[int, float]] = None

    @property
    def stale_after(self) -> float:
        return self._stale_after

    @property
    def last_heartbeat(self) -> Optional[Tuple[int, float]]:
        """Slot and time of the most recent heartbeat announcement."""

        return self._last_heartbeat

    def __len__(self) -> int:
        return len(self._devices)

    def __contains__(self, identifier: object) -> bool:
        return identifier in self._devices

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def record_presence(self, update: PresenceUpdate) -> DeviceView:
        now = self._clock()
        state = self._devices.get(update.identifier)
        if state is None:
            state = DeviceState(identifier=update.identifier, last_seen_at=now)
            self._devices[update.identifier] = state

        state.last_seen_at = now
        # Fields missing from the line mean "off", matching the firmware's defaults.
        state.online = bool(update.online)
        state.armed = bool(update.armed)
        state.pressed = bool(update.pressed)
        state.discovery_mode = (
            DISCOVERY_HEARTBEAT
            if update.discovery_mode == DISCOVERY_HEARTBEAT
            else DISCOVERY_NORMAL
        )
        if state.online:
            self._advance_last_online(state, now)
        return self._project(state, now)

    def record_press(self, identifier: str, timestamp_ms: Optional[int] = None) -> DeviceView:
        now = self._clock()
        state = self._devices.get(identifier)
        if state is None:
            state = DeviceState(identifier=identifier, last_seen_at=now)
            self._devices[identifier] = state

        state.last_seen_at = now
        state.pressed = True
        state.press_count += 1
        state.last_press_at = timestamp_ms / 1000.0 if timestamp_ms is not None else now
        return self._project(state, now)

    def record_heartbeat(self, slot: int) -> None:
        self._last_heartbeat = (slot, self._clock())

    @staticmethod
    def _advance_last_online(state: DeviceState, now: float) -> None:
        if state.last_online_at is None or now > state.last_online_at:
            state.last_online_at = now

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def get(self, identifier: str) -> Optional[DeviceView]:
        state = self._devices.get(identifier)
        if state is None:
            return None
        return self._project(state, self._clock())

    def snapshot(self) -> List[DeviceView]:
        now = self._clock()
        return [self._project(state, now) for state in self._devices.values()]

    def online_count(self) -> int:
        return sum(1 for view in self.snapshot() if view.online)

    def _project(self, state: DeviceState, now: float) -> DeviceView:
        since_seen = max(0.0, now - state.last_seen_at)
        online = state.online and since_seen < self._stale_after
        since_online = (
            max(0.0, now - state.last_online_at) if state.last_online_at is not None else None
        )
        return DeviceView(
            identifier=state.identifier,
            status="online" if online else "offline",
            online=online,
            armed=state.armed,
            pressed=state.pressed,
            press_count=state.press_count,
            last_seen_at=state.last_seen_at,
            last_online_at=state.last_online_at,
            last_press_at=state.last_press_at,
            discovery_mode=state.discovery_mode,
            seconds_since_last_seen=since_seen,
            seconds_since_last_online=since_online,
        )


__all__ = [
    "DEFAULT_STALE_AFTER",
    "DeviceState",
    "DeviceStateStore",
    "DeviceView",
]
