"""Realtime call updates over WebSocket.

Subscribers receive ``callUpdate`` and ``activeCalls`` events for every call;
filtering by owner happens client-side.
"""

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from callease.api.deps import AppServices

router = APIRouter()
logger = structlog.get_logger()


@router.websocket("/ws/calls")
async def call_updates(websocket: WebSocket) -> None:
    services: AppServices = websocket.app.state.services
    broadcaster = services.broadcaster

    await websocket.accept()
    await broadcaster.connect(websocket)
    try:
        # Inbound frames are ignored; the loop only detects disconnects.
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.debug("realtime_client_disconnected")
    finally:
        broadcaster.disconnect(websocket)
