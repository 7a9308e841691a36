"""Pydantic models shared across the buzzer bridge backend."""

from .api import (
	ActivityResponse,
	CommandRequest,
	CommandResponse,
	DeviceListResponse,
	DeviceResponse,
	DispatchOutcomeResponse,
	ScanResponse,
	SimulatePressRequest,
	SimulatePressResponse,
	OscTestRequest,
)

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
