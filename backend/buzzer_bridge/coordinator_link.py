"""Line-oriented links to the buzzer coordinator.

Two implementations share the :class:`CoordinatorLink` interface:

* :class:`SerialCoordinatorLink` talks to real hardware through pyserial;
  blocking calls run in worker threads so the event loop never stalls.
* :class:`SimulatedCoordinatorLink` answers outbound commands with scripted
  lines that come back through ``read_line`` exactly like hardware output.

``open_coordinator_link`` picks one at construction time and falls back to
simulation when no port is configured or the port cannot be opened.
"""
from __future__ import annotations

import abc
import asyncio
import logging
import threading
import time
from typing import Any, Dict, List, Optional, Sequence

import serial
from serial.tools import list_ports

logger = logging.getLogger(__name__)

SerialException = serial.SerialException

DEFAULT_BAUDRATE = 115200
DEFAULT_TIMEOUT = 1.0  # seconds a blocking readline may wait
DEFAULT_SIMULATION_DELAY = 0.1  # seconds before canned replies are emitted
DEFAULT_SIMULATED_DEVICES = ("AA:BB:CC:DD:EE:FF", "11:22:33:44:55:66")

OUTBOUND_COMMANDS = ("STATUS", "SCAN", "DISARM")


class SerialNotFoundError(RuntimeError):
    """Raised when no usable serial interface is available."""


def normalize_command(command: str) -> str:
    """Validate an outbound coordinator command and return it stripped.

    Accepted: ``STATUS``, ``SCAN``, ``DISARM``, ``ARM`` and ``ARM<suffix>``.
    """

    cleaned = (command or "").strip()
    if cleaned in OUTBOUND_COMMANDS or cleaned.startswith("ARM"):
        return cleaned
    raise ValueError(f"Unsupported coordinator command: {command!r}")


def discover_serial_port(preferred: Optional[str] = None) -> str:
    """Locate a serial port.

    Args:
        preferred: explicit port path or pyserial URL requested by the operator.

    Raises:
        SerialNotFoundError: if no suitable port can be found.
    """

    if preferred:
        return preferred

    ports = list(list_ports.comports())
    if not ports:
        raise SerialNotFoundError("No serial devices detected. Specify the port explicitly.")

    # Coordinators are ESP32 boards behind common USB-UART bridges.
    for candidate in ports:
        description = (candidate.description or "").lower()
        if any(keyword in description for keyword in ("esp32", "cp210", "ch34", "usb")):
            return candidate.device

    return ports[0].device


class CoordinatorLink(abc.ABC):
    """Interface shared by the physical and simulated links."""

    simulated: bool = False

    @property
    @abc.abstractmethod
    def closed(self) -> bool:
        ...

    @property
    def endpoint(self) -> Optional[str]:
        return None

    @abc.abstractmethod
    async def open(self) -> None:
        ...

    @abc.abstractmethod
    async def read_line(self) -> Optional[str]:
        """Return the next line, or ``None`` if nothing arrived or the link closed."""

    @abc.abstractmethod
    async def send_command(self, command: str) -> bool:
        """Send ``command``; return ``True`` only when it reached hardware."""

    @abc.abstractmethod
    async def close(self) -> None:
        ...

    def describe(self) -> Dict[str, Any]:
        return {
            "simulated": self.simulated,
            "connected": not self.simulated and not self.closed,
            "endpoint": self.endpoint,
        }


class SerialCoordinatorLink(CoordinatorLink):
    """Thread-safe pyserial link to the coordinator."""

    def __init__(
        self,
        port: Optional[str] = None,
        baudrate: int = DEFAULT_BAUDRATE,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self._requested_port = port
        self._baudrate = baudrate
        self._timeout = timeout
        self._serial: Optional[Any] = None
        self._lock = threading.RLock()
        self._write_lock = threading.Lock()
        self._active_port: Optional[str] = None
        self._fragment: bytes = b""

    @property
    def closed(self) -> bool:
        ser = self._serial
        return ser is None or not ser.is_open

    @property
    def endpoint(self) -> Optional[str]:
        return self._active_port or self._requested_port

    @property
    def baudrate(self) -> int:
        return self._baudrate

    # ------------------------------------------------------------------
    # Lifecycle helpers
    # ------------------------------------------------------------------
    def open_blocking(self) -> None:
        """Open the serial port if it is not already open."""

        with self._lock:
            if self._serial and self._serial.is_open:
                return

            port_path = discover_serial_port(self._requested_port)
            try:
                self._serial = serial.serial_for_url(
                    port_path,
                    baudrate=self._baudrate,
                    timeout=self._timeout,
                    write_timeout=self._timeout,
                )
            except (SerialException, OSError, ValueError) as exc:
                self._serial = None
                self._active_port = None
                raise SerialNotFoundError(f"could not open port {port_path}: {exc}") from exc
            self._serial.reset_input_buffer()
            self._serial.reset_output_buffer()
            self._active_port = port_path
            self._fragment = b""
            logger.info("Coordinator serial link open on %s @ %d baud", port_path, self._baudrate)

    def close_blocking(self) -> None:
        with self._lock:
            ser = self._serial
            self._serial = None
            self._active_port = None
            self._fragment = b""
        if ser is not None and ser.is_open:
            ser.close()
            logger.info("Coordinator serial link closed")

    def read_line_blocking(self) -> Optional[str]:
        ser = self._serial
        if ser is None:
            return None
        try:
            raw = ser.readline()
        except (SerialException, OSError, TypeError, AttributeError) as exc:
            if self._serial is None:
                # closed from another thread while waiting
                return None
            self._handle_disconnect(exc)
            raise SerialNotFoundError(str(exc)) from exc

        if not raw:
            return None
        data = self._fragment + raw
        if not data.endswith(b"\n"):
            # readline timed out mid-line; keep the partial for the next call
            self._fragment = data
            return None
        self._fragment = b""
        line = data.decode("utf-8", errors="ignore").strip()
        return line or None

    def write_line_blocking(self, command: str) -> None:
        ser = self._serial
        if ser is None:
            raise SerialNotFoundError("Serial device unavailable")
        try:
            with self._write_lock:
                ser.write((command.strip() + "\n").encode("utf-8"))
                ser.flush()
        except (SerialException, OSError) as exc:
            self._handle_disconnect(exc)
            raise SerialNotFoundError(str(exc)) from exc

    def _handle_disconnect(self, exc: BaseException) -> None:
        logger.warning("Serial link lost: %s", exc)
        with self._lock:
            ser = self._serial
            self._serial = None
            self._active_port = None
            self._fragment = b""
        if ser is not None:
            try:
                ser.close()
            except (SerialException, OSError):  # pragma: no cover - best effort cleanup
                pass

    # ------------------------------------------------------------------
    # Async facade
    # ------------------------------------------------------------------
    async def open(self) -> None:
        await asyncio.to_thread(self.open_blocking)

    async def read_line(self) -> Optional[str]:
        return await asyncio.to_thread(self.read_line_blocking)

    async def send_command(self, command: str) -> bool:
        command = normalize_command(command)
        logger.info("Sending coordinator command: %s", command)
        await asyncio.to_thread(self.write_line_blocking, command)
        return True

    async def close(self) -> None:
        await asyncio.to_thread(self.close_blocking)

    def describe(self) -> Dict[str, Any]:
        info = super().describe()
        info["baudrate"] = self._baudrate
        return info


class SimulatedCoordinatorLink(CoordinatorLink):
    """Stand-in link that replays scripted coordinator replies."""

    simulated = True

    def __init__(
        self,
        delay: float = DEFAULT_SIMULATION_DELAY,
        devices: Sequence[str] = DEFAULT_SIMULATED_DEVICES,
        reason: Optional[str] = None,
    ) -> None:
        self._delay = max(0.0, delay)
        self._devices = tuple(devices)
        self._reason = reason
        self._armed = False
        self._closed = False
        self._lines: Optional[asyncio.Queue[Optional[str]]] = None
        self._pending: List[asyncio.TimerHandle] = []

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def _queue(self) -> "asyncio.Queue[Optional[str]]":
        if self._lines is None:
            self._lines = asyncio.Queue()
        return self._lines

    async def open(self) -> None:
        self._closed = False
        self._queue()
        if self._reason:
            logger.info("Coordinator running in simulation mode (%s)", self._reason)
        else:
            logger.info("Coordinator running in simulation mode")

    async def read_line(self) -> Optional[str]:
        if self._closed:
            return None
        return await self._queue().get()

    def scripted_reply(self, command: str) -> List[str]:
        """Return the canned lines the coordinator would send for ``command``."""

        if command == "STATUS":
            return [
                f"STATUS:{int(time.time())},armed={int(self._armed)},devices={len(self._devices)}"
            ]
        if command == "DISARM":
            self._armed = False
            return ["ACK:DISARMED"]
        if command.startswith("ARM"):
            self._armed = True
            return ["ACK:ARMED"]
        if command == "SCAN":
            return [f"DEVICE:{mac},online=1,armed=0,pressed=0" for mac in self._devices]
        return []

    async def send_command(self, command: str) -> bool:
        command = normalize_command(command)
        logger.info("Coordinator not connected, simulating command: %s", command)
        lines = self.scripted_reply(command)
        if lines and not self._closed:
            loop = asyncio.get_running_loop()
            self._pending = [handle for handle in self._pending if not handle.cancelled()]
            self._pending.append(loop.call_later(self._delay, self._emit, lines))
        return False

    def inject_line(self, line: str) -> None:
        """Feed a raw line as if the coordinator had sent it."""

        if not self._closed:
            self._queue().put_nowait(line)

    def _emit(self, lines: Sequence[str]) -> None:
        if self._closed:
            return
        queue = self._queue()
        for line in lines:
            queue.put_nowait(line)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for handle in self._pending:
            handle.cancel()
        self._pending.clear()
        self._queue().put_nowait(None)

    def describe(self) -> Dict[str, Any]:
        info = super().describe()
        info["reason"] = self._reason
        return info


async def open_coordinator_link(
    port: Optional[str] = None,
    *,
    baudrate: int = DEFAULT_BAUDRATE,
    timeout: float = DEFAULT_TIMEOUT,
    simulation_delay: float = DEFAULT_SIMULATION_DELAY,
) -> CoordinatorLink:
    """Open a physical link, or a simulated one when that is not possible."""

    if not port:
        link: CoordinatorLink = SimulatedCoordinatorLink(
            delay=simulation_delay, reason="no serial port configured"
        )
        await link.open()
        return link

    physical = SerialCoordinatorLink(port=port, baudrate=baudrate, timeout=timeout)
    try:
        await physical.open()
    except SerialNotFoundError as exc:
        logger.warning("Could not connect to coordinator hardware: %s", exc)
        link = SimulatedCoordinatorLink(delay=simulation_delay, reason=str(exc))
        await link.open()
        return link
    return physical


__all__ = [
    "CoordinatorLink",
    "DEFAULT_BAUDRATE",
    "DEFAULT_SIMULATED_DEVICES",
    "DEFAULT_SIMULATION_DELAY",
    "DEFAULT_TIMEOUT",
    "SerialCoordinatorLink",
    "SerialNotFoundError",
    "SimulatedCoordinatorLink",
    "discover_serial_port",
    "normalize_command",
    "open_coordinator_link",
]
