"""Service layer for the buzzer bridge backend."""

from .bridge_service import BridgeService
from .dependencies import get_service, service, shutdown_service, startup_service

__all__ = [
	"BridgeService",
	"get_service",
	"service",
	"shutdown_service",
	"startup_service",
]
