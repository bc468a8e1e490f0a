import logging
import uuid
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from fastapi import WebSocket
from starlette.websockets import WebSocketState

logger = logging.getLogger(__name__)


class SocketMessageType(str, Enum):
    card_generation = "CardGenerationInProgress"
    wrong_answer_generation = "WrongAnswerGenerationInProgress"
    stop = "stop"
    unknown = "UnknownMessageType"
    socket_id = "socketId"


class ConnectionManager:
    """
    Registre des connexions websocket, indexées par un jeton de session.
    Le jeton est envoyé au client à la connexion ; le client le renvoie
    ensuite dans le cookie `socketId` de ses requêtes HTTP.
    """

    def __init__(self) -> None:
        self._connections: Dict[str, WebSocket] = {}

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, token: object) -> bool:
        return token in self._connections

    async def connect(self, websocket: WebSocket) -> str:
        await websocket.accept()
        token = uuid.uuid4().hex[:8]
        self._connections[token] = websocket
        await websocket.send_json({"type": SocketMessageType.socket_id.value, "data": token})
        logger.debug("Client %s connecté", token)
        return token

    def disconnect(self, token: str) -> None:
        if self._connections.pop(token, None) is not None:
            logger.debug("Client %s déconnecté", token)

    async def send(self, token: Optional[str], message_type: SocketMessageType, data: Any) -> bool:
        websocket = self._connections.get(token) if token else None
        if websocket is None:
            return False
        if websocket.client_state != WebSocketState.CONNECTED:
            self.disconnect(token)
            return False
        try:
            await websocket.send_json({"type": message_type.value, "data": data})
        except RuntimeError as e:
            # socket fermée entre-temps
            logger.warning("Envoi impossible vers %s: %s", token, e)
            self.disconnect(token)
            return False
        return True

    def progress_callback(
        self, token: Optional[str], message_type: SocketMessageType
    ) -> Optional[Callable[[str], Awaitable[None]]]:
        """
        Callback de progression pour un flux de génération. None si le jeton
        est inconnu : la génération se fait alors sans retour temps réel.
        """
        if token not in self._connections:
            return None

        async def push(chunk: str) -> None:
            await self.send(token, message_type, {"status": "working", "chunk": chunk})

        return push

    async def send_done(self, token: Optional[str]) -> bool:
        return await self.send(token, SocketMessageType.stop, {"status": "done"})
