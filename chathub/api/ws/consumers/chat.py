import json
from typing import Any

from fastapi import APIRouter
from starlette import status
from starlette.endpoints import WebSocketEndpoint
from starlette.websockets import WebSocket

from chathub.logging import clear_log_context, logger, set_log_context
from chathub.managers.connection import ChatConnection
from chathub.managers.lifecycle import lifecycle_manager
from chathub.middlewares.correlation_id import set_correlation_id
from chathub.settings import app_settings

router = APIRouter()


def extract_message_text(payload: str) -> str:
    """
    Get the chat message body out of a client frame.

    Clients send the body as plain text. Some send a JSON object with a
    `text` field instead; that field is used when present, otherwise the
    frame is taken verbatim.

    Args:
        payload: The decoded text frame.

    Returns:
        str: The message body.
    """
    if not payload.lstrip().startswith("{"):
        return payload

    try:
        data = json.loads(payload)
    except ValueError:
        return payload

    if isinstance(data, dict) and isinstance(data.get("text"), str):
        return data["text"]
    return payload


@router.websocket_route("/ws")
class Chat(WebSocketEndpoint):  # type: ignore[misc]
    """
    Chat WebSocket endpoint.

    Adapts the ASGI connection to the LifecycleManager: the connection is
    accepted, bound to the identity behind its session cookie and
    registered in `on_connect`; every text frame is published in
    `on_receive`; `on_disconnect` always closes and unregisters it.
    """

    encoding = None  # Text frames, and UTF-8 binary frames as a fallback

    connection: ChatConnection | None = None

    async def dispatch(self) -> None:
        """
        Manage the WebSocket connection lifecycle.

        1. Accept and authenticate the connection (`on_connect`).
        2. If it was rejected, stop: the close frame has already been sent.
        3. Otherwise receive frames until the client disconnects, passing
           each one to `on_receive`.
        4. Always finish with `on_disconnect`.
        """
        websocket = WebSocket(self.scope, receive=self.receive, send=self.send)
        try:
            await self.on_connect(websocket)
        except Exception:
            if self.connection is not None:
                await lifecycle_manager.close(
                    self.connection,
                    code=status.WS_1011_INTERNAL_ERROR,
                    reason="internal_error",
                )
            clear_log_context()
            raise

        if self.connection is None or not self.connection.is_open:
            clear_log_context()
            return

        close_code = status.WS_1000_NORMAL_CLOSURE

        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.receive":
                    data = await self.decode(websocket, message)
                    await self.on_receive(websocket, data)
                elif message["type"] == "websocket.disconnect":
                    close_code = int(
                        message.get("code") or status.WS_1000_NORMAL_CLOSURE
                    )
                    break
        except Exception as exc:
            close_code = status.WS_1011_INTERNAL_ERROR
            raise exc
        finally:
            await self.on_disconnect(websocket, close_code)

    async def decode(self, websocket: WebSocket, message: dict[str, Any]) -> str:
        """
        Decode an incoming frame into the message body.

        Binary frames are read as UTF-8; frames that are not valid UTF-8
        decode to an empty body, which is then dropped.
        """
        if message.get("text") is not None:
            return extract_message_text(message["text"])

        try:
            text = (message.get("bytes") or b"").decode("utf-8")
        except UnicodeDecodeError:
            logger.debug("Ignoring binary frame that is not valid UTF-8")
            return ""
        return extract_message_text(text)

    async def on_connect(self, websocket: WebSocket) -> None:
        """
        Accept the connection and hand it to the LifecycleManager.

        The credential is the session cookie, or the session query
        parameter for clients that cannot send cookies. Rejected
        connections are closed with 1008 and the rejection reason.
        """
        await websocket.accept()

        self.connection = ChatConnection(websocket)
        set_correlation_id(self.connection.connection_id)
        set_log_context(connection_id=self.connection.connection_id)

        credential = websocket.cookies.get(
            app_settings.SESSION_COOKIE_NAME
        ) or websocket.query_params.get(app_settings.SESSION_QUERY_PARAM)

        entry = await lifecycle_manager.open(self.connection, credential)
        if entry is not None:
            set_log_context(user_id=entry.identity.user_id)
            logger.debug("Client connected to chat")

    async def on_receive(self, websocket: WebSocket, data: str) -> None:
        if self.connection is None:
            return
        lifecycle_manager.receive(self.connection, data)

    async def on_disconnect(self, websocket: WebSocket, close_code: int) -> None:
        if self.connection is not None:
            await lifecycle_manager.close(self.connection, code=close_code)
        logger.debug(f"Client disconnected with code {close_code}")
        clear_log_context()
