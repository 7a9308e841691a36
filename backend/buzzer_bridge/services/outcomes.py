"""Immutable records describing each dispatch attempt."""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

EVENT_OSC_SENT = "osc_sent"
EVENT_OSC_FAILED = "osc_failed"
EVENT_TEST_SENT = "test_osc_sent"
EVENT_TEST_FAILED = "test_osc_failed"
EVENT_UNMAPPED = "buzzer_press_unmapped"
EVENT_PRESS_ERROR = "buzzer_press_error"


@dataclass(frozen=True)
class DispatchOutcome:
    event_type: str
    success: bool
    message: str
    device_id: Optional[str] = None
    device_name: Optional[str] = None
    command_name: Optional[str] = None
    osc_address: Optional[str] = None
    osc_args: Tuple[Any, ...] = ()
    target_name: Optional[str] = None
    target_host: Optional[str] = None
    target_port: Optional[int] = None
    mapping_id: Optional[int] = None
    test: bool = False
    timestamp: float = field(default_factory=time.time)

    @property
    def target_address(self) -> Optional[str]:
        if self.target_host is None:
            return None
        if self.target_port is None:
            return self.target_host
        return f"{self.target_host}:{self.target_port}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type,
            "success": self.success,
            "message": self.message,
            "device_id": self.device_id,
            "device_name": self.device_name,
            "command_name": self.command_name,
            "osc_address": self.osc_address,
            "osc_args": list(self.osc_args),
            "target_name": self.target_name,
            "target_host": self.target_host,
            "target_port": self.target_port,
            "target_address": self.target_address,
            "mapping_id": self.mapping_id,
            "test": self.test,
            "timestamp": self.timestamp,
            "time_iso": datetime.fromtimestamp(self.timestamp, tz=timezone.utc).isoformat(),
        }


__all__ = [
    "DispatchOutcome",
    "EVENT_OSC_FAILED",
    "EVENT_OSC_SENT",
    "EVENT_PRESS_ERROR",
    "EVENT_TEST_FAILED",
    "EVENT_TEST_SENT",
    "EVENT_UNMAPPED",
]
