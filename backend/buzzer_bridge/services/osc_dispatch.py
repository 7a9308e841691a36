"""OSC rendering and fire-and-forget UDP dispatch through pooled senders."""
from __future__ import annotations

import asyncio
import logging
import socket
import threading
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from pythonosc.osc_message import OscMessage
from pythonosc.osc_message_builder import BuildError, OscMessageBuilder

from ..line_protocol import PressEvent
from .config_store import OscCommand, OscTarget
from .event_sink import ActivitySink
from .mapping_resolver import DispatchInstruction
from .outcomes import (
    EVENT_OSC_FAILED,
    EVENT_OSC_SENT,
    EVENT_PRESS_ERROR,
    EVENT_TEST_FAILED,
    EVENT_TEST_SENT,
    EVENT_UNMAPPED,
    DispatchOutcome,
)

logger = logging.getLogger(__name__)

SEND_ERRORS = (OSError, ValueError, BuildError)


def build_message(address: str, arguments: Iterable[Any] = ()) -> OscMessage:
    """Render an OSC message; argument types are inferred by python-osc."""

    if not address or not address.startswith("/"):
        raise ValueError(f"Invalid OSC address: {address!r}")
    builder = OscMessageBuilder(address=address)
    for argument in arguments:
        builder.add_arg(argument)
    return builder.build()


class OscSender:
    """UDP sender for a single ``host:port`` target.

    Host resolution happens on first send so that creating a sender never
    blocks; a resolution failure surfaces as ``OSError`` from :meth:`send`.
    """

    def __init__(self, host: str, port: int) -> None:
        self.host = host
        self.port = int(port)
        self._sock: Optional[socket.socket] = None
        self._sockaddr: Optional[Tuple[Any, ...]] = None
        self._lock = threading.Lock()

    def _ensure_socket(self) -> Tuple[socket.socket, Tuple[Any, ...]]:
        with self._lock:
            if self._sock is None or self._sockaddr is None:
                infos = socket.getaddrinfo(self.host, self.port, type=socket.SOCK_DGRAM)
                family, socktype, proto, _, sockaddr = infos[0]
                self._sock = socket.socket(family, socktype, proto)
                self._sockaddr = sockaddr
            return self._sock, self._sockaddr

    def send(self, address: str, arguments: Sequence[Any] = ()) -> int:
        """Send one datagram; returns the byte count accepted by the socket."""

        message = build_message(address, arguments)
        sock, sockaddr = self._ensure_socket()
        return sock.sendto(message.dgram, sockaddr)

    def close(self) -> None:
        with self._lock:
            if self._sock is not None:
                self._sock.close()
            self._sock = None
            self._sockaddr = None


SenderFactory = Callable[[str, int], OscSender]


class OscDispatchEngine:
    """Sends resolved instructions and reports one outcome per attempt."""

    def __init__(self, sink: ActivitySink, sender_factory: SenderFactory = OscSender) -> None:
        self._sink = sink
        self._sender_factory = sender_factory
        self._senders: Dict[str, OscSender] = {}
        self._inflight: Set[asyncio.Task[DispatchOutcome]] = set()

    # ------------------------------------------------------------------
    # Sender pool
    # ------------------------------------------------------------------
    @staticmethod
    def pool_key(host: str, port: int) -> str:
        return f"{host}:{int(port)}"

    def sender_for(self, host: str, port: int) -> OscSender:
        key = self.pool_key(host, port)
        sender = self._senders.get(key)
        if sender is None:
            logger.info("Creating OSC client for %s", key)
            sender = self._sender_factory(host, int(port))
            self._senders[key] = sender
        return sender

    def has_sender(self, host: str, port: int) -> bool:
        return self.pool_key(host, port) in self._senders

    @property
    def pool_size(self) -> int:
        return len(self._senders)

    @property
    def inflight_count(self) -> int:
        return len(self._inflight)

    def target_status(self, targets: Iterable[OscTarget]) -> List[Dict[str, Any]]:
        status: List[Dict[str, Any]] = []
        for target in targets:
            pooled = self.has_sender(target.ip_address, target.port)
            entry = target.model_dump()
            entry.update({"pool_key": target.pool_key, "connected": pooled, "client_created": pooled})
            status.append(entry)
        return status

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------
    async def _send(
        self,
        *,
        address: str,
        arguments: Sequence[Any],
        host: str,
        port: int,
        target_name: str,
        success_event: str,
        failure_event: str,
        success_message: str,
        device_id: Optional[str] = None,
        device_name: Optional[str] = None,
        command_name: Optional[str] = None,
        mapping_id: Optional[int] = None,
        test: bool = False,
    ) -> DispatchOutcome:
        details: Dict[str, Any] = {
            "device_id": device_id,
            "device_name": device_name,
            "command_name": command_name,
            "osc_address": address,
            "osc_args": tuple(arguments),
            "target_name": target_name,
            "target_host": host,
            "target_port": port,
            "mapping_id": mapping_id,
            "test": test,
        }
        logger.info(
            "Sending OSC: %s %s to %s (%s)",
            address,
            list(arguments),
            target_name,
            self.pool_key(host, port),
        )
        try:
            sender = self.sender_for(host, port)
            await asyncio.to_thread(sender.send, address, arguments)
        except SEND_ERRORS as exc:
            logger.warning("OSC send to %s failed: %s", target_name, exc)
            outcome = DispatchOutcome(
                event_type=failure_event, success=False, message=str(exc), **details
            )
        except Exception as exc:
            logger.exception("Unexpected error sending OSC to %s", target_name)
            outcome = DispatchOutcome(
                event_type=failure_event, success=False, message=str(exc), **details
            )
        else:
            outcome = DispatchOutcome(
                event_type=success_event, success=True, message=success_message, **details
            )
        await self._sink.record(outcome)
        return outcome

    async def _send_instruction(
        self, press: PressEvent, instruction: DispatchInstruction
    ) -> DispatchOutcome:
        source = instruction.device_name or press.identifier
        return await self._send(
            address=instruction.osc_address,
            arguments=instruction.arguments,
            host=instruction.host,
            port=instruction.port,
            target_name=instruction.target_name,
            success_event=EVENT_OSC_SENT,
            failure_event=EVENT_OSC_FAILED,
            success_message=f"Sent to {instruction.target_name} from {source}",
            device_id=press.identifier,
            device_name=instruction.device_name,
            command_name=instruction.command_name,
            mapping_id=instruction.mapping_id,
        )

    def dispatch_press(
        self, press: PressEvent, instructions: Sequence[DispatchInstruction]
    ) -> List[asyncio.Task[DispatchOutcome]]:
        """Start one send per instruction and return without awaiting them."""

        logger.info("Processing %d OSC mapping(s) for buzzer %s", len(instructions), press.identifier)
        tasks: List[asyncio.Task[DispatchOutcome]] = []
        for instruction in instructions:
            task = asyncio.create_task(
                self._send_instruction(press, instruction),
                name=f"osc-send-{press.identifier}-{instruction.mapping_id}",
            )
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)
            tasks.append(task)
        return tasks

    async def record_unmapped(self, press: PressEvent) -> DispatchOutcome:
        logger.info("No OSC mappings found for buzzer %s", press.identifier)
        outcome = DispatchOutcome(
            event_type=EVENT_UNMAPPED,
            success=False,
            message="No mappings configured",
            device_id=press.identifier,
        )
        await self._sink.record(outcome)
        return outcome

    async def record_press_error(self, press: PressEvent, error: BaseException) -> DispatchOutcome:
        logger.error("Error processing buzzer press from %s: %s", press.identifier, error)
        outcome = DispatchOutcome(
            event_type=EVENT_PRESS_ERROR,
            success=False,
            message=str(error),
            device_id=press.identifier,
        )
        await self._sink.record(outcome)
        return outcome

    async def send_test(
        self,
        command: OscCommand,
        target: OscTarget,
        arguments: Optional[Sequence[Any]] = None,
    ) -> DispatchOutcome:
        """Send ``command`` to ``target`` outside of any mapping."""

        args = list(command.arguments) if arguments is None else list(arguments)
        return await self._send(
            address=command.address,
            arguments=args,
            host=target.ip_address,
            port=target.port,
            target_name=target.name,
            success_event=EVENT_TEST_SENT,
            failure_event=EVENT_TEST_FAILED,
            success_message=f"Test command: {command.name} to {target.name}",
            command_name=command.name,
            test=True,
        )

    async def record_test_failure(self, message: str) -> DispatchOutcome:
        outcome = DispatchOutcome(
            event_type=EVENT_TEST_FAILED, success=False, message=message, test=True
        )
        await self._sink.record(outcome)
        return outcome

    async def close(self) -> None:
        """Abandon in-flight sends and release every pooled sender."""

        for task in list(self._inflight):
            task.cancel()
        self._inflight.clear()
        for key, sender in list(self._senders.items()):
            try:
                sender.close()
                logger.info("Closed OSC client for %s", key)
            except OSError as exc:
                logger.warning("Error closing OSC client for %s: %s", key, exc)
        self._senders.clear()


__all__ = [
    "OscDispatchEngine",
    "OscSender",
    "SEND_ERRORS",
    "build_message",
]
