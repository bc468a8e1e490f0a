import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from app.services.realtime import ConnectionManager

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """
    Canal de progression. Le premier message envoyé au client contient son
    jeton (type "socketId"), à renvoyer dans le cookie `socketId`.
    """
    connections: ConnectionManager = websocket.app.state.connections
    token = await connections.connect(websocket)
    try:
        while True:
            message = await websocket.receive_text()
            logger.debug("Message de %s : %.200s", token, message)
    except WebSocketDisconnect:
        logger.debug("Socket %s fermée par le client", token)
    finally:
        connections.disconnect(token)
