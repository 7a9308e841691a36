"""Pydantic schemas shared across API routes."""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, StrictFloat, StrictInt, StrictStr


class CommandRequest(BaseModel):
    command: str


class CommandResponse(BaseModel):
    command: str
    hardware: bool
    timestamp: float


class ScanResponse(BaseModel):
    success: bool
    scanning: bool
    timestamp: float
    hardware_connected: bool


class SimulatePressRequest(BaseModel):
    mac_address: Optional[str] = None
    timestamp: Optional[int] = None


class SimulatePressResponse(BaseModel):
    mac_address: str
    timestamp: Optional[int]


class OscTestRequest(BaseModel):
    command_id: int
    target_id: int
    arguments: Optional[List[Union[StrictInt, StrictFloat, StrictStr]]] = None


class DispatchOutcomeResponse(BaseModel):
    event_type: str
    success: bool
    message: str
    device_id: Optional[str] = None
    device_name: Optional[str] = None
    command_name: Optional[str] = None
    osc_address: Optional[str] = None
    osc_args: List[Any] = []
    target_name: Optional[str] = None
    target_host: Optional[str] = None
    target_port: Optional[int] = None
    target_address: Optional[str] = None
    mapping_id: Optional[int] = None
    test: bool = False
    timestamp: float
    time_iso: str


class DeviceResponse(BaseModel):
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


class DeviceListResponse(BaseModel):
    devices: List[DeviceResponse]


class ActivityResponse(BaseModel):
    entries: List[Dict[str, Any]]


__all__ = [
    "ActivityResponse",
    "CommandRequest",
    "CommandResponse",
    "DeviceListResponse",
    "DeviceResponse",
    "DispatchOutcomeResponse",
    "ScanResponse",
    "SimulatePressRequest",
    "SimulatePressResponse",
    "OscTestRequest",
]
