"""
API Routes definition.
Handles health checks, room creation and the real-time channel WebSocket.
"""

import json
import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect, status
from pydantic import BaseModel

from webchat.api.dependencies import get_ready_gateway
from webchat.core.errors import RoomCreationFailure, TransportError
from webchat.core.models import RoomDescriptor
from webchat.services.channel import ChannelController
from webchat.services.gateway import IChannelGateway, gateway
from webchat.services.render import WebSocketBridge

logger = logging.getLogger(__name__)

router = APIRouter()


class CreateRoomRequest(BaseModel):
    """Payload for creating a room."""

    name: str


# === PUBLIC ROUTES ===


@router.get("/health")
async def health_check() -> Dict[str, Any]:
    """Returns the gateway status"""
    return {"status": "online", "ready": gateway.is_ready(), "channels": gateway.channel_count()}


@router.post("/rooms", response_model=RoomDescriptor, status_code=status.HTTP_201_CREATED)
async def create_room(
    payload: CreateRoomRequest, ready_gateway: IChannelGateway = Depends(get_ready_gateway)
) -> RoomDescriptor:
    """Creates a room on the chat server outside of any channel."""
    if not payload.name.strip():
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="Empty room name.")

    try:
        return await ready_gateway.create_room(payload.name.strip())
    except RoomCreationFailure as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))


# === WebSocket Route ===


async def handle_frame(controller: ChannelController, bridge: WebSocketBridge, raw: str) -> None:
    """
    Dispatches one browser frame.
    {"type": "create-room", "name": ...} creates a room, anything else is chat text
    ({"type": "submit", "text": ...} or a plain string).
    """
    try:
        frame = json.loads(raw)
    except ValueError:
        frame = None

    if not isinstance(frame, dict):
        await controller.submit(raw)
        return

    if frame.get("type") == "create-room":
        try:
            await controller.create_room(str(frame.get("name", "")))
        except (RoomCreationFailure, ValueError) as e:
            logger.warning("Room creation failed: %s", e)
            await bridge.report_error(str(e))
        return

    if frame.get("type") == "submit":
        await controller.submit(str(frame.get("text", "")))
        return

    await controller.submit(raw)


@router.websocket("/ws/{room_id}")
async def websocket_endpoint(websocket: WebSocket, room_id: str, user_id: str = Query(...)) -> None:
    """
    Real-time channel endpoint.
    Binds the connection to a ChannelController for (user_id, room_id) until it closes.
    """
    await websocket.accept()
    if not gateway.is_ready():
        await websocket.close(code=1013)
        return

    bridge = WebSocketBridge(websocket)
    try:
        channel_id = await gateway.open_channel(user_id, room_id, bridge)
    except TransportError as e:
        logger.error("Could not open channel for %s in %s: %s", user_id, room_id, e)
        await websocket.close(code=1011)
        return

    controller = gateway.get_channel(channel_id)
    try:
        while True:
            raw = await websocket.receive_text()
            await handle_frame(controller, bridge, raw)
    except WebSocketDisconnect:
        logger.info("WS for %s in %s disconnected", user_id, room_id)
    finally:
        await gateway.close_channel(channel_id)
