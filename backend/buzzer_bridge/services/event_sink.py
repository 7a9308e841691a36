"""Single fan-out point for activity records and live notifications."""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, Optional, Set

from .activity_log import ActivityLog
from .outcomes import DispatchOutcome

logger = logging.getLogger(__name__)

EVENT_BUZZER_PRESS = "buzzer-press"
EVENT_DEVICE_UPDATE = "device-update"
EVENT_COORDINATOR_STATUS = "coordinator-status"
EVENT_OSC_SENT = "osc-sent"

DEFAULT_CLIENT_QUEUE_SIZE = 200


class ActivitySink:
    """Writes outcomes to the activity log and republishes them to observers.

    Neither half can fail the other, and nothing raises back to the caller.
    """

    def __init__(
        self,
        activity_log: Optional[ActivityLog] = None,
        queue_size: int = DEFAULT_CLIENT_QUEUE_SIZE,
    ) -> None:
        self._activity_log = activity_log
        self._queue_size = max(1, queue_size)
        self._clients: Set[asyncio.Queue[dict[str, Any]]] = set()
        self._clients_lock = asyncio.Lock()

    async def register_client(self) -> asyncio.Queue[dict[str, Any]]:
        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=self._queue_size)
        async with self._clients_lock:
            self._clients.add(queue)
        return queue

    async def unregister_client(self, queue: asyncio.Queue[dict[str, Any]]) -> None:
        async with self._clients_lock:
            self._clients.discard(queue)

    @property
    def client_count(self) -> int:
        return len(self._clients)

    async def record(self, outcome: DispatchOutcome) -> None:
        payload = outcome.to_dict()
        if self._activity_log is not None:
            try:
                await asyncio.to_thread(self._activity_log.append, payload)
            except Exception:
                logger.exception("Failed to append %s to the activity log", outcome.event_type)
        await self.publish(EVENT_OSC_SENT, payload)

    async def publish(self, kind: str, payload: Dict[str, Any]) -> None:
        message = {"type": kind, "timestamp": time.time(), "data": payload}
        try:
            async with self._clients_lock:
                for queue in list(self._clients):
                    while True:
                        try:
                            queue.put_nowait(message)
                            break
                        except asyncio.QueueFull:
                            try:
                                queue.get_nowait()
                            except asyncio.QueueEmpty:  # pragma: no cover - race
                                break
        except Exception:
            logger.exception("Failed to publish %s to live observers", kind)


__all__ = [
    "ActivitySink",
    "EVENT_BUZZER_PRESS",
    "EVENT_COORDINATOR_STATUS",
    "EVENT_DEVICE_UPDATE",
    "EVENT_OSC_SENT",
]
