import asyncio

from starlette.websockets import WebSocketState

from app.services.realtime import ConnectionManager, SocketMessageType


class FakeWebSocket:
    def __init__(self):
        self.client_state = WebSocketState.CONNECTING
        self.sent = []

    async def accept(self):
        self.client_state = WebSocketState.CONNECTED

    async def send_json(self, data):
        if self.client_state != WebSocketState.CONNECTED:
            raise RuntimeError("socket closed")
        self.sent.append(data)


def test_connect_sends_token():
    manager = ConnectionManager()
    ws = FakeWebSocket()
    token = asyncio.run(manager.connect(ws))
    assert token in manager
    assert len(manager) == 1
    assert ws.sent == [{"type": "socketId", "data": token}]


def test_progress_callback_pushes_chunks_then_done():
    manager = ConnectionManager()
    ws = FakeWebSocket()

    async def scenario():
        token = await manager.connect(ws)
        push = manager.progress_callback(token, SocketMessageType.wrong_answer_generation)
        await push("abc")
        await manager.send_done(token)

    asyncio.run(scenario())
    assert ws.sent[1:] == [
        {"type": "WrongAnswerGenerationInProgress", "data": {"status": "working", "chunk": "abc"}},
        {"type": "stop", "data": {"status": "done"}},
    ]


def test_unknown_token_has_no_callback():
    manager = ConnectionManager()
    assert manager.progress_callback("inconnu", SocketMessageType.card_generation) is None
    assert manager.progress_callback(None, SocketMessageType.card_generation) is None
    assert asyncio.run(manager.send_done("inconnu")) is False


def test_closed_socket_is_dropped():
    manager = ConnectionManager()
    ws = FakeWebSocket()
    token = asyncio.run(manager.connect(ws))
    ws.client_state = WebSocketState.DISCONNECTED
    assert asyncio.run(manager.send(token, SocketMessageType.stop, {})) is False
    assert token not in manager


def test_websocket_endpoint_registers_client(test_client):
    with test_client.websocket_connect("/ws") as ws:
        message = ws.receive_json()
        assert message["type"] == "socketId"
        assert message["data"] in test_client.app.state.connections
        ws.send_text("ping")
