"""FastAPI routing layer for the buzzer bridge backend."""
from __future__ import annotations

import json
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect

from ..coordinator_link import SerialNotFoundError
from ..models.api import (
    ActivityResponse,
    CommandRequest,
    CommandResponse,
    DeviceListResponse,
    DispatchOutcomeResponse,
    OscTestRequest,
    ScanResponse,
    SimulatePressRequest,
    SimulatePressResponse,
)
from ..services.bridge_service import BridgeService
from ..services.config_store import ConfigurationReadError
from ..services.dependencies import get_service

router = APIRouter()


@router.get("/health")
async def health(svc: BridgeService = Depends(get_service)) -> dict[str, Any]:
    return svc.health()


@router.get("/api/status")
async def api_status(svc: BridgeService = Depends(get_service)) -> dict[str, Any]:
    return await svc.get_status()


@router.get("/api/devices", response_model=DeviceListResponse)
async def api_devices(svc: BridgeService = Depends(get_service)) -> DeviceListResponse:
    return DeviceListResponse(devices=svc.get_devices())


@router.post("/api/devices/scan", response_model=ScanResponse)
async def api_scan(svc: BridgeService = Depends(get_service)) -> ScanResponse:
    try:
        result = await svc.start_device_scan()
    except SerialNotFoundError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return ScanResponse(**result)


@router.post("/api/command", response_model=CommandResponse)
async def api_command(
    request: CommandRequest,
    svc: BridgeService = Depends(get_service),
) -> CommandResponse:
    try:
        result = await svc.send_command(request.command)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except SerialNotFoundError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return CommandResponse(**result)


@router.post("/api/buzzers/simulate", response_model=SimulatePressResponse)
async def api_simulate_press(
    request: SimulatePressRequest,
    svc: BridgeService = Depends(get_service),
) -> SimulatePressResponse:
    press = await svc.simulate_press(request.mac_address, request.timestamp)
    return SimulatePressResponse(mac_address=press.identifier, timestamp=press.timestamp_ms)


@router.post("/api/osc/test", response_model=DispatchOutcomeResponse)
async def api_osc_test(
    request: OscTestRequest,
    svc: BridgeService = Depends(get_service),
) -> DispatchOutcomeResponse:
    try:
        outcome = await svc.send_test_command(
            request.command_id, request.target_id, request.arguments
        )
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ConfigurationReadError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return DispatchOutcomeResponse(**outcome.to_dict())


@router.get("/api/targets/status")
async def api_target_status(svc: BridgeService = Depends(get_service)) -> dict[str, Any]:
    try:
        targets = await svc.target_status()
    except ConfigurationReadError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return {"targets": targets}


@router.get("/api/activity", response_model=ActivityResponse)
async def api_activity(
    limit: int = 50,
    svc: BridgeService = Depends(get_service),
) -> ActivityResponse:
    limit = max(1, min(limit, 1000))
    return ActivityResponse(entries=await svc.recent_activity(limit))


@router.websocket("/ws/events")
async def events_ws(
    websocket: WebSocket,
    svc: BridgeService = Depends(get_service),
) -> None:
    await websocket.accept()
    queue = await svc.register_client()
    try:
        await websocket.send_text(
            json.dumps({"type": "snapshot", "data": {"devices": svc.get_devices()}})
        )
        while True:
            payload = await queue.get()
            await websocket.send_text(json.dumps(payload, default=str))
    except WebSocketDisconnect:  # pragma: no cover - network event
        pass
    finally:
        await svc.unregister_client(queue)


__all__ = ["router"]
