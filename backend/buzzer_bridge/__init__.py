"""Buzzer bridge backend: coordinator serial events to OSC dispatch."""

from .server import app, service  # noqa: F401
from .services.bridge_service import BridgeService  # noqa: F401

__all__ = ["BridgeService", "app", "service"]
