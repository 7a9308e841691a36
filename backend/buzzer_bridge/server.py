"""ASGI entrypoint wiring the buzzer bridge components together."""
from __future__ import annotations

import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.routes import router
from .services.bridge_service import BridgeService
from .services.dependencies import (
    get_service,
    service,
    shutdown_service,
    startup_service,
)

DEFAULT_HTTP_PORT = 3002


@asynccontextmanager
async def _lifespan(_: FastAPI):
    await startup_service()
    try:
        yield
    finally:
        await shutdown_service()


app = FastAPI(title="OSC Buzzer Bridge", version="0.1.0", lifespan=_lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(router)


def run(host: str = "0.0.0.0", port: int | None = None) -> None:  # pragma: no cover - manual execution helper
    """Launch the FastAPI app using uvicorn."""

    import uvicorn

    if port is None:
        try:
            port = int(os.getenv("BRIDGE_HTTP_PORT", DEFAULT_HTTP_PORT))
        except ValueError:
            port = DEFAULT_HTTP_PORT
    uvicorn.run("backend.buzzer_bridge.server:app", host=host, port=port, reload=False)


__all__ = [
    "BridgeService",
    "app",
    "get_service",
    "run",
    "service",
]


if __name__ == "__main__":  # pragma: no cover - manual execution path
    run()
