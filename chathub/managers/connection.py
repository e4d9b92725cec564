import asyncio
import uuid
from collections.abc import Callable
from enum import Enum

from starlette.websockets import WebSocket, WebSocketDisconnect, WebSocketState

from chathub.exceptions import Backpressure, TransportError
from chathub.logging import logger
from chathub.schemas.envelope import MessageEnvelope
from chathub.settings import app_settings


class ConnectionState(str, Enum):
    """Lifecycle states of a chat connection."""

    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class ChatConnection:
    """
    A live chat WebSocket and its outbound queue.

    Envelopes are never written to the socket by the broadcaster. They are
    queued with `deliver()` and a dedicated writer task sends them one at
    a time, so a slow socket only ever stalls its own queue.

    `state` is written only by the LifecycleManager.
    """

    def __init__(
        self,
        websocket: WebSocket,
        queue_size: int | None = None,
        send_timeout: float | None = None,
    ) -> None:
        self.websocket = websocket
        self.connection_id = str(uuid.uuid4())
        self.state = ConnectionState.CONNECTING
        self.send_timeout = (
            send_timeout
            if send_timeout is not None
            else app_settings.WS_SEND_TIMEOUT_SECONDS
        )
        self.queue: asyncio.Queue[MessageEnvelope] = asyncio.Queue(
            maxsize=queue_size or app_settings.WS_OUTBOUND_QUEUE_SIZE
        )
        self.closed = asyncio.Event()
        self._writer: asyncio.Task[None] | None = None

    def __repr__(self) -> str:
        return f"<ChatConnection {self.connection_id[:8]} {self.state.value}>"

    @property
    def is_open(self) -> bool:
        return self.state is ConnectionState.OPEN

    @property
    def outbound_queue_depth(self) -> int:
        return self.queue.qsize()

    def deliver(self, envelope: MessageEnvelope) -> None:
        """
        Queue an envelope for this connection without waiting.

        Args:
            envelope: The envelope to send.

        Raises:
            Backpressure: If the outbound queue is full.
        """
        try:
            self.queue.put_nowait(envelope)
        except asyncio.QueueFull as ex:
            raise Backpressure(
                f"Outbound queue of connection {self.connection_id} is full "
                f"({self.queue.maxsize} envelopes)"
            ) from ex

    def start_writer(
        self, on_error: Callable[["ChatConnection", TransportError], None]
    ) -> None:
        """
        Start the writer task that drains the outbound queue.

        Args:
            on_error: Called once, from the writer task, when a send fails.
                The writer stops after calling it.
        """
        self._writer = asyncio.create_task(
            self._write_loop(on_error),
            name=f"chat-writer-{self.connection_id[:8]}",
        )

    async def _write_loop(
        self, on_error: Callable[["ChatConnection", TransportError], None]
    ) -> None:
        while True:
            envelope = await self.queue.get()
            try:
                await self.send_text(envelope.to_wire())
            except TransportError as ex:
                on_error(self, ex)
                return
            finally:
                self.queue.task_done()

    async def send_text(self, text: str) -> None:
        """
        Send a text frame, bounded by the send timeout.

        Raises:
            TransportError: If the send fails or times out.
        """
        try:
            await asyncio.wait_for(
                self.websocket.send_text(text), timeout=self.send_timeout
            )
        except (WebSocketDisconnect, OSError, RuntimeError, TimeoutError) as ex:
            raise TransportError(
                f"Send to connection {self.connection_id} failed: {ex!r}"
            ) from ex

    async def flush(self, timeout: float) -> bool:
        """
        Wait until the writer has sent everything queued.

        Args:
            timeout: Maximum number of seconds to wait.

        Returns:
            True if the queue was drained, False if the wait timed out or
            the writer is no longer running.
        """
        if self._writer is None or self._writer.done():
            return self.queue.empty()

        try:
            await asyncio.wait_for(self.queue.join(), timeout=timeout)
        except TimeoutError:
            return False
        return True

    async def stop_writer(self) -> int:
        """
        Cancel the writer task and discard anything still queued.

        Returns:
            int: Number of envelopes abandoned.
        """
        if self._writer is not None and not self._writer.done():
            self._writer.cancel()
            await asyncio.gather(self._writer, return_exceptions=True)

        abandoned = 0
        while not self.queue.empty():
            self.queue.get_nowait()
            self.queue.task_done()
            abandoned += 1

        if abandoned:
            logger.debug(
                f"Abandoned {abandoned} queued envelopes for connection "
                f"{self.connection_id}"
            )
        return abandoned

    async def close_transport(self, code: int, reason: str = "") -> None:
        """
        Close the underlying WebSocket unless it is already closed.

        Raises:
            TransportError: If sending the close frame fails.
        """
        if (
            self.websocket.application_state == WebSocketState.DISCONNECTED
            or self.websocket.client_state == WebSocketState.DISCONNECTED
        ):
            return

        try:
            await asyncio.wait_for(
                self.websocket.close(code=code, reason=reason),
                timeout=self.send_timeout,
            )
        except (WebSocketDisconnect, OSError, RuntimeError, TimeoutError) as ex:
            raise TransportError(
                f"Close of connection {self.connection_id} failed: {ex!r}"
            ) from ex
