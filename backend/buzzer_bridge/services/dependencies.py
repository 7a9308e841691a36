"""Dependency helpers for wiring BridgeService into FastAPI."""
from __future__ import annotations

from .bridge_service import BridgeService


service = BridgeService()


async def startup_service() -> None:
    await service.start()


async def shutdown_service() -> None:
    await service.stop()


def get_service() -> BridgeService:
    return service


__all__ = [
    "get_service",
    "service",
    "shutdown_service",
    "startup_service",
]
