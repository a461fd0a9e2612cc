# backend/qachat/routes/v1/realtime.py
"""
Realtime route - API v1

    WS /ws?token=<jwt> -> Full-duplex socket multiplexing every conversation
"""

from fastapi import APIRouter, WebSocket

from ...api.dependencies.database import get_session_factory
from ...services.messaging.gateway import serve_websocket

router = APIRouter(tags=["realtime-v1"])


@router.websocket("/ws")
async def realtime_socket(websocket: WebSocket) -> None:
    hub = websocket.app.state.hub
    await serve_websocket(websocket, hub, get_session_factory(websocket))
