from __future__ import annotations

import pytest

from backend.buzzer_bridge.device_state import DeviceStateStore
from backend.buzzer_bridge.line_protocol import DISCOVERY_HEARTBEAT, parse_line


class _Clock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> _Clock:
    return _Clock()


@pytest.fixture
def store(clock: _Clock) -> DeviceStateStore:
    return DeviceStateStore(stale_after=60.0, clock=clock)


def test_unseen_device_is_absent(store: DeviceStateStore) -> None:
    assert store.get("AA:BB:CC:DD:EE:FF") is None
    assert "AA:BB:CC:DD:EE:FF" not in store
    assert store.snapshot() == []


def test_presence_creates_online_entry(store: DeviceStateStore, clock: _Clock) -> None:
    view = store.record_presence(parse_line("DEVICE:AA:BB:CC:DD:EE:FF,online=1,armed=1,pressed=0"))

    assert view.online is True
    assert view.status == "online"
    assert view.armed is True
    assert view.last_seen_at == clock.now
    assert view.last_online_at == clock.now
    assert len(store) == 1


def test_offline_line_keeps_last_online_timestamp(store: DeviceStateStore, clock: _Clock) -> None:
    store.record_presence(parse_line("DEVICE:11:22:33:44:55:66,online=1"))
    first_online = clock.now
    clock.advance(5)
    view = store.record_presence(parse_line("DEVICE:11:22:33:44:55:66,online=0"))

    assert view.online is False
    assert view.last_seen_at == clock.now
    assert view.last_online_at == first_online
    assert view.seconds_since_last_online == pytest.approx(5.0)


def test_missing_fields_default_to_false(store: DeviceStateStore) -> None:
    store.record_presence(parse_line("DEVICE:11:22:33:44:55:66,online=1,armed=1,pressed=1"))
    view = store.record_presence(parse_line("DEVICE:11:22:33:44:55:66,online=1"))

    assert view.online is True
    assert view.armed is False
    assert view.pressed is False


def test_last_online_never_moves_backwards(store: DeviceStateStore, clock: _Clock) -> None:
    store.record_presence(parse_line("DEVICE:11:22:33:44:55:66,online=1"))
    recorded = clock.now
    clock.now -= 30  # wall clock stepped back
    view = store.record_presence(parse_line("DEVICE:11:22:33:44:55:66,online=1"))

    assert view.last_online_at == recorded


def test_stale_device_is_reported_offline(store: DeviceStateStore, clock: _Clock) -> None:
    store.record_presence(parse_line("DEVICE:11:22:33:44:55:66,online=1"))
    clock.advance(59.9)
    assert store.get("11:22:33:44:55:66").online is True

    clock.advance(0.2)
    view = store.get("11:22:33:44:55:66")
    assert view.online is False
    assert view.status == "offline"
    assert store.online_count() == 0


def test_heartbeat_inferred_presence(store: DeviceStateStore) -> None:
    view = store.record_presence(parse_line("Received 16 bytes from: EC:62:60:1D:E8:D4"))

    assert view.online is True
    assert view.armed is False
    assert view.discovery_mode == DISCOVERY_HEARTBEAT


def test_later_update_sets_its_own_discovery_mode(store: DeviceStateStore) -> None:
    store.record_presence(parse_line("Received 16 bytes from: EC:62:60:1D:E8:D4"))
    view = store.record_presence(parse_line("DEVICE:EC:62:60:1D:E8:D4,online=1,armed=1"))

    assert view.discovery_mode == "normal"
    assert view.armed is True


def test_press_creates_entry_without_marking_online(store: DeviceStateStore) -> None:
    view = store.record_press("AA:BB:CC:DD:EE:FF", 1700000000000)

    assert view.pressed is True
    assert view.press_count == 1
    assert view.online is False
    assert view.last_press_at == pytest.approx(1700000000.0)
    assert view.last_online_at is None


def test_press_without_timestamp_uses_clock(store: DeviceStateStore, clock: _Clock) -> None:
    store.record_press("AA:BB:CC:DD:EE:FF")
    view = store.record_press("AA:BB:CC:DD:EE:FF")

    assert view.press_count == 2
    assert view.last_press_at == clock.now


def test_heartbeat_slot_is_remembered(store: DeviceStateStore, clock: _Clock) -> None:
    assert store.last_heartbeat is None
    store.record_heartbeat(3)
    assert store.last_heartbeat == (3, clock.now)


def test_snapshot_preserves_first_seen_order(store: DeviceStateStore) -> None:
    store.record_presence(parse_line("DEVICE:BB,online=1"))
    store.record_press("AA")
    store.record_presence(parse_line("DEVICE:BB,online=0"))

    assert [view.identifier for view in store.snapshot()] == ["BB", "AA"]
    assert set(store.snapshot()[0].to_dict()) >= {"identifier", "status", "press_count"}


def test_byte_count_report_keeps_press_history(store: DeviceStateStore) -> None:
    store.record_press("EC:62:60:1D:E8:D4", 1700000000000)

    view = store.record_presence(parse_line("Received 16 bytes from: EC:62:60:1D:E8:D4"))

    assert view.press_count == 1
    assert view.last_press_at == pytest.approx(1700000000.0)
    assert view.online is True
    assert view.pressed is False
