"""WebSocket entry point for live task chat."""
from fastapi import APIRouter, WebSocket

router = APIRouter()


@router.websocket("/ws")
async def realtime(websocket: WebSocket) -> None:
    """Authenticate from the handshake, then hand the socket to the gateway."""

    await websocket.app.state.gateway.serve(websocket)
