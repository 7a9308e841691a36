"""Core business logic for the buzzer bridge backend."""
from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from ..coordinator_link import (
    DEFAULT_BAUDRATE,
    DEFAULT_SIMULATION_DELAY,
    DEFAULT_TIMEOUT,
    CoordinatorLink,
    SerialNotFoundError,
    SimulatedCoordinatorLink,
    normalize_command,
    open_coordinator_link,
)
from ..device_state import DEFAULT_STALE_AFTER, DeviceStateStore
from ..line_protocol import (
    Acknowledgement,
    CoordinatorEvent,
    DeviceError,
    HeartbeatSignal,
    PresenceUpdate,
    PressEvent,
    StatusReport,
    UnrecognizedLine,
    parse_line,
)
from .activity_log import ActivityLog, JsonLinesActivityLog
from .config_store import ConfigurationReadError, ConfigurationStore, JsonConfigurationStore
from .event_sink import (
    EVENT_BUZZER_PRESS,
    EVENT_COORDINATOR_STATUS,
    EVENT_DEVICE_UPDATE,
    ActivitySink,
)
from .mapping_resolver import MappingResolver
from .osc_dispatch import OscDispatchEngine, OscSender, SenderFactory
from .outcomes import DispatchOutcome

logger = logging.getLogger("bridge.service")

DEFAULT_TEST_MAC = "AA:BB:CC:DD:EE:FF"

LinkFactory = Callable[..., Awaitable[CoordinatorLink]]


@dataclass(frozen=True)
class LineReceived:
    line: str


@dataclass(frozen=True)
class PressInjected:
    press: PressEvent


@dataclass
class ManualDispatchRequest:
    command_id: int
    target_id: int
    arguments: Optional[Sequence[Any]]
    future: "asyncio.Future[DispatchOutcome]" = field(repr=False)


_STOP = object()


def _env_number(name: str, default: Any, cast: Callable[[str], Any]) -> Any:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return cast(raw)
    except ValueError:
        logger.warning("Invalid %s=%s; using %s", name, raw, default)
        return default


def _chain_result(task: "asyncio.Task[DispatchOutcome]", future: "asyncio.Future[DispatchOutcome]") -> None:
    if future.done():
        return
    if task.cancelled():
        future.cancel()
        return
    exc = task.exception()
    if exc is not None:
        future.set_exception(exc)
    else:
        future.set_result(task.result())


class BridgeService:
    """Async facade tying the coordinator link to OSC dispatch.

    Serial lines, simulated replies, injected presses and test requests all
    travel through one queue consumed by a single task, so device state is
    updated strictly in arrival order.
    """

    def __init__(
        self,
        port: Optional[str] = None,
        baudrate: Optional[int] = None,
        timeout: Optional[float] = None,
        stale_after: Optional[float] = None,
        simulation_delay: Optional[float] = None,
        config_store: Optional[ConfigurationStore] = None,
        activity_log: Optional[ActivityLog] = None,
        sender_factory: SenderFactory = OscSender,
        link_factory: LinkFactory = open_coordinator_link,
    ) -> None:
        port_override = port
        if not port_override:
            env_port = os.getenv("BRIDGE_SERIAL_PORT")
            if env_port and env_port.strip():
                port_override = env_port.strip()
        self._port = port_override
        self._baudrate = (
            baudrate if baudrate is not None else _env_number("BRIDGE_SERIAL_BAUDRATE", DEFAULT_BAUDRATE, int)
        )
        self._timeout = (
            timeout if timeout is not None else _env_number("BRIDGE_SERIAL_TIMEOUT", DEFAULT_TIMEOUT, float)
        )
        self._simulation_delay = (
            simulation_delay
            if simulation_delay is not None
            else _env_number("BRIDGE_SIMULATION_DELAY", DEFAULT_SIMULATION_DELAY, float)
        )
        resolved_stale = (
            stale_after
            if stale_after is not None
            else _env_number("BRIDGE_STALE_AFTER", DEFAULT_STALE_AFTER, float)
        )
        if resolved_stale <= 0:
            logger.warning("Stale threshold must be positive; using %.1f", DEFAULT_STALE_AFTER)
            resolved_stale = DEFAULT_STALE_AFTER

        self.devices = DeviceStateStore(stale_after=resolved_stale)
        self._config_store: ConfigurationStore = config_store or JsonConfigurationStore()
        self._activity_log: ActivityLog = activity_log or JsonLinesActivityLog()
        self._sink = ActivitySink(self._activity_log)
        self._resolver = MappingResolver(self._config_store)
        self._engine = OscDispatchEngine(self._sink, sender_factory=sender_factory)
        self._link_factory = link_factory

        self._link: Optional[CoordinatorLink] = None
        self._events: Optional[asyncio.Queue[Any]] = None
        self._reader_task: Optional[asyncio.Task[None]] = None
        self._processor_task: Optional[asyncio.Task[None]] = None
        self._stopping = False
        self._last_status: Dict[str, Any] = {}
        self._started_at: Optional[float] = None

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------
    @property
    def engine(self) -> OscDispatchEngine:
        return self._engine

    @property
    def sink(self) -> ActivitySink:
        return self._sink

    @property
    def link(self) -> Optional[CoordinatorLink]:
        return self._link

    @property
    def running(self) -> bool:
        return self._processor_task is not None and not self._processor_task.done()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def start(self) -> None:
        if self.running:
            return
        self._stopping = False
        self._events = asyncio.Queue()
        self._link = await self._link_factory(
            self._port,
            baudrate=self._baudrate,
            timeout=self._timeout,
            simulation_delay=self._simulation_delay,
        )
        self._processor_task = asyncio.create_task(self._process_loop(), name="bridge-processor")
        self._reader_task = asyncio.create_task(self._reader_loop(), name="bridge-reader")
        self._started_at = time.time()
        with contextlib.suppress(SerialNotFoundError):
            await self.send_command("STATUS")

    async def stop(self) -> None:
        self._stopping = True
        if self._link is not None:
            await self._link.close()
        if self._reader_task is not None:
            self._reader_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reader_task
        if self._events is not None and self._processor_task is not None:
            await self._events.put(_STOP)
            with contextlib.suppress(asyncio.CancelledError):
                await self._processor_task
            self._abandon_pending(self._events)
        await self._engine.close()
        self._reader_task = None
        self._processor_task = None

    @staticmethod
    def _abandon_pending(events: "asyncio.Queue[Any]") -> None:
        while not events.empty():
            item = events.get_nowait()
            if isinstance(item, ManualDispatchRequest) and not item.future.done():
                item.future.set_exception(RuntimeError("Bridge service stopped"))

    async def _fallback_to_simulation(self, reason: str) -> None:
        previous = self._link
        logger.warning("Coordinator link unavailable (%s); switching to simulation mode", reason)
        simulated = SimulatedCoordinatorLink(delay=self._simulation_delay, reason=reason)
        await simulated.open()
        self._link = simulated
        if previous is not None and previous is not simulated:
            with contextlib.suppress(SerialNotFoundError):
                await previous.close()
        await self._sink.publish(EVENT_COORDINATOR_STATUS, {"connected": False, **simulated.describe()})

    # ------------------------------------------------------------------
    # Background loops
    # ------------------------------------------------------------------
    async def _reader_loop(self) -> None:
        events = self._events
        if events is None:
            return
        while not self._stopping:
            link = self._link
            if link is None:
                return
            try:
                line = await link.read_line()
            except SerialNotFoundError as exc:
                if self._stopping:
                    return
                # send_command may already have replaced the link while we were blocked
                if link is self._link:
                    await self._fallback_to_simulation(str(exc))
                continue

            if line is None:
                if self._stopping:
                    return
                if link.closed and link is self._link:
                    if link.simulated:
                        return
                    await self._fallback_to_simulation("serial link closed")
                continue
            await events.put(LineReceived(line))

    async def _process_loop(self) -> None:
        events = self._events
        if events is None:
            return
        while True:
            item = await events.get()
            if item is _STOP:
                return
            try:
                await self._handle(item)
            except Exception:
                logger.exception("Failed to handle %r", item)

    async def _handle(self, item: Any) -> None:
        if isinstance(item, LineReceived):
            await self.apply_event(parse_line(item.line))
        elif isinstance(item, PressInjected):
            await self.apply_event(item.press)
        elif isinstance(item, ManualDispatchRequest):
            task = asyncio.create_task(
                self._run_test_dispatch(item.command_id, item.target_id, item.arguments)
            )
            task.add_done_callback(lambda done: _chain_result(done, item.future))
        else:  # pragma: no cover - programming error
            logger.error("Unknown queue item %r", item)

    # ------------------------------------------------------------------
    # Event handling
    # ------------------------------------------------------------------
    async def process_line(self, line: str) -> List["asyncio.Task[DispatchOutcome]"]:
        """Parse and apply a single line outside of the queue."""

        return await self.apply_event(parse_line(line))

    async def apply_event(self, event: CoordinatorEvent) -> List["asyncio.Task[DispatchOutcome]"]:
        if isinstance(event, PressEvent):
            return await self._handle_press(event)
        if isinstance(event, PresenceUpdate):
            view = self.devices.record_presence(event)
            logger.debug("Updated device %s: %s", view.identifier, view.status)
            await self._sink.publish(
                EVENT_DEVICE_UPDATE, {"device": view.to_dict(), "raw": event.raw}
            )
        elif isinstance(event, StatusReport):
            self._last_status = {
                "armed": event.armed,
                "devices": event.devices,
                **event.extra,
            }
            await self._sink.publish(
                EVENT_COORDINATOR_STATUS, {"connected": True, **self._last_status}
            )
        elif isinstance(event, HeartbeatSignal):
            self.devices.record_heartbeat(event.slot)
            logger.debug("Heartbeat from device slot %d", event.slot)
        elif isinstance(event, Acknowledgement):
            logger.info("Coordinator acknowledged: %s", event.text)
        elif isinstance(event, DeviceError):
            logger.error("Coordinator error: %s", event.text)
        elif isinstance(event, UnrecognizedLine):
            logger.debug("Unrecognised coordinator line (%s): %s", event.reason, event.raw)
        return []

    async def _handle_press(self, press: PressEvent) -> List["asyncio.Task[DispatchOutcome]"]:
        view = self.devices.record_press(press.identifier, press.timestamp_ms)
        logger.info("Buzzer press detected: %s", press.identifier)
        await self._sink.publish(
            EVENT_BUZZER_PRESS,
            {
                "mac_address": press.identifier,
                "timestamp": press.timestamp_ms,
                "received_at": time.time(),
                "press_count": view.press_count,
            },
        )
        try:
            instructions = await asyncio.to_thread(self._resolver.resolve, press.identifier)
        except ConfigurationReadError as exc:
            await self._engine.record_press_error(press, exc)
            return []
        if not instructions:
            await self._engine.record_unmapped(press)
            return []
        return self._engine.dispatch_press(press, instructions)

    # ------------------------------------------------------------------
    # Operations used by the API and CLI
    # ------------------------------------------------------------------
    async def send_command(self, command: str) -> Dict[str, Any]:
        command = normalize_command(command)
        if self._link is None:
            raise SerialNotFoundError("Coordinator link not started")
        try:
            hardware = await self._link.send_command(command)
        except SerialNotFoundError as exc:
            await self._fallback_to_simulation(str(exc))
            hardware = await self._link.send_command(command)
        return {"command": command, "hardware": hardware, "timestamp": time.time()}

    async def start_device_scan(self) -> Dict[str, Any]:
        result = await self.send_command("SCAN")
        return {
            "success": True,
            "scanning": True,
            "timestamp": result["timestamp"],
            "hardware_connected": result["hardware"],
        }

    async def simulate_press(
        self,
        identifier: Optional[str] = None,
        timestamp_ms: Optional[int] = None,
    ) -> PressEvent:
        """Inject a press as if the coordinator had reported it."""

        press = PressEvent(
            identifier=identifier or DEFAULT_TEST_MAC,
            timestamp_ms=timestamp_ms if timestamp_ms is not None else int(time.time() * 1000),
            raw="",
        )
        logger.info("Simulating buzzer press from %s", press.identifier)
        if self.running and not self._stopping and self._events is not None:
            await self._events.put(PressInjected(press))
        else:
            await self.apply_event(press)
        return press

    async def send_test_command(
        self,
        command_id: int,
        target_id: int,
        arguments: Optional[Sequence[Any]] = None,
    ) -> DispatchOutcome:
        """Send a configured command to a configured target, bypassing mappings.

        Raises:
            LookupError: if the command or target does not exist.
        """

        if self._stopping or not self.running or self._events is None:
            return await self._run_test_dispatch(command_id, target_id, arguments)
        future: asyncio.Future[DispatchOutcome] = asyncio.get_running_loop().create_future()
        await self._events.put(ManualDispatchRequest(command_id, target_id, arguments, future))
        return await future

    async def _run_test_dispatch(
        self,
        command_id: int,
        target_id: int,
        arguments: Optional[Sequence[Any]],
    ) -> DispatchOutcome:
        try:
            command = await asyncio.to_thread(self._config_store.get_command, command_id)
            target = await asyncio.to_thread(self._config_store.get_target, target_id)
        except ConfigurationReadError as exc:
            await self._engine.record_test_failure(str(exc))
            raise
        if command is None:
            message = f"Command not found: {command_id}"
            await self._engine.record_test_failure(message)
            raise LookupError(message)
        if target is None:
            message = f"Target not found: {target_id}"
            await self._engine.record_test_failure(message)
            raise LookupError(message)
        return await self._engine.send_test(command, target, arguments)

    def get_devices(self) -> List[Dict[str, Any]]:
        return [view.to_dict() for view in self.devices.snapshot()]

    async def get_status(self) -> Dict[str, Any]:
        with contextlib.suppress(SerialNotFoundError):
            await self.send_command("STATUS")
        link_info = self._link.describe() if self._link is not None else {"connected": False}
        return {
            **link_info,
            "port": self._port,
            "baudrate": self._baudrate,
            "device_count": len(self.devices),
            "online_devices": self.devices.online_count(),
            "last_status": dict(self._last_status),
            "last_update": time.time(),
        }

    async def target_status(self) -> List[Dict[str, Any]]:
        targets = await asyncio.to_thread(self._config_store.active_targets)
        return self._engine.target_status(targets)

    async def recent_activity(self, limit: int = 50) -> List[Dict[str, Any]]:
        return await asyncio.to_thread(self._activity_log.recent, limit)

    def health(self) -> Dict[str, Any]:
        link = self._link
        return {
            "status": "healthy" if self.running else "stopped",
            "timestamp": time.time(),
            "started_at": self._started_at,
            "services": {
                "coordinator": bool(link is not None and not link.simulated and not link.closed),
                "simulation": bool(link is not None and link.simulated),
                "osc": self.running,
                "osc_clients": self._engine.pool_size,
            },
        }

    async def register_client(self) -> asyncio.Queue[dict[str, Any]]:
        return await self._sink.register_client()

    async def unregister_client(self, queue: asyncio.Queue[dict[str, Any]]) -> None:
        await self._sink.unregister_client(queue)


__all__ = [
    "BridgeService",
    "DEFAULT_TEST_MAC",
]
