import asyncio

from chathub.constants import (
    WS_CLOSE_REASON_MAX_BYTES,
    WS_GOING_AWAY_CODE,
    WS_INTERNAL_ERROR_CODE,
    WS_NORMAL_CLOSURE_CODE,
    WS_POLICY_VIOLATION_CODE,
)
from chathub.exceptions import AlreadyRegistered, TransportError, Unauthenticated
from chathub.logging import logger
from chathub.managers.broadcaster import MessageBroadcaster, PublishResult
from chathub.managers.connection import ChatConnection, ConnectionState
from chathub.managers.connection_registry import (
    ConnectionRegistry,
    RegistryEntry,
    connection_registry,
)
from chathub.managers.identity_binder import IdentityBinder
from chathub.settings import app_settings
from chathub.storage.redis import RedisProfileStore, RedisSessionStore
from chathub.utils.metrics import (
    chat_connections_total,
    chat_deliveries_failed_total,
    chat_evictions_total,
    chat_messages_received_total,
)


def _truncate_reason(reason: str) -> str:
    encoded = reason.encode("utf-8")[:WS_CLOSE_REASON_MAX_BYTES]
    return encoded.decode("utf-8", errors="ignore")


class LifecycleManager:
    """
    Owns every state transition of every chat connection.

    Connecting -> Open       identity bound and connection registered
    Connecting -> Closed     identity binding failed, never registered
    Open -> Closing          close requested, eviction or transport error
    Closing -> Closed        writer stopped, socket closed, entry removed

    Closing -> Closed always completes, whatever the transport does, so
    the registry never keeps an entry for a dead connection. Errors on one
    connection are logged here and go no further.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        binder: IdentityBinder,
        broadcaster: MessageBroadcaster,
        grace_seconds: float | None = None,
    ) -> None:
        self.registry = registry
        self.binder = binder
        self.broadcaster = broadcaster
        self.grace_seconds = (
            grace_seconds
            if grace_seconds is not None
            else app_settings.WS_CLOSE_GRACE_SECONDS
        )
        self._background: set[asyncio.Task[None]] = set()
        self._opening: set[ChatConnection] = set()
        self._shutting_down = False

    def start(self) -> None:
        """Accept new connections again after a previous `shutdown`."""
        self._shutting_down = False

    async def open(
        self, connection: ChatConnection, credential: str | None
    ) -> RegistryEntry | None:
        """
        Bind and register an accepted connection.

        Args:
            connection: A connection in the Connecting state.
            credential: Session credential sent with the connection.

        Returns:
            The registry entry, or None if the connection was rejected
            (it is then Closed). Connections still Connecting when
            `shutdown` starts are rejected with 1001 instead of being
            registered.
        """
        if self._shutting_down:
            await self._reject_shutdown(connection)
            return None

        self._opening.add(connection)
        try:
            identity = await self.binder.bind(credential)
        except Unauthenticated as ex:
            logger.info(
                f"Rejected connection {connection.connection_id}: {ex.reason}"
            )
            chat_connections_total.labels(status="rejected_auth").inc()
            await self._reject(connection, WS_POLICY_VIOLATION_CODE, ex.reason)
            return None
        finally:
            self._opening.discard(connection)

        if connection.state is not ConnectionState.CONNECTING:
            return None
        if self._shutting_down:
            await self._reject_shutdown(connection)
            return None

        try:
            entry = self.registry.register(connection, identity)
        except AlreadyRegistered as ex:
            logger.error(f"Connection lifecycle invariant broken: {ex}")
            chat_connections_total.labels(status="rejected_error").inc()
            await self._reject(connection, WS_INTERNAL_ERROR_CODE, "internal_error")
            return None

        connection.state = ConnectionState.OPEN
        connection.start_writer(on_error=self._on_transport_error)
        chat_connections_total.labels(status="accepted").inc()
        logger.info(
            f"User {identity.user_id} ({identity.display_name}) joined the chat"
        )
        return entry

    def receive(
        self, connection: ChatConnection, raw_text: str
    ) -> PublishResult | None:
        """
        Publish text received on an open connection.

        Recipients that could not keep up are evicted.

        Returns:
            The publish result, or None if the connection is not open.
        """
        if not connection.is_open:
            return None

        entry = self.registry.get(connection)
        if entry is None:
            return None

        chat_messages_received_total.inc()
        result = self.broadcaster.publish(entry, raw_text)
        for saturated in result.saturated:
            self.evict(saturated.connection, "backpressure")
        return result

    async def close(
        self,
        connection: ChatConnection,
        code: int = WS_NORMAL_CLOSURE_CODE,
        reason: str = "",
        flush: bool = False,
    ) -> None:
        """
        Close a connection and remove it from the registry.

        Safe to call more than once and from several tasks; later callers
        wait for the first close to finish.

        Args:
            connection: The connection to close.
            code: WebSocket close code sent to the client.
            reason: Close reason sent to the client.
            flush: Send queued envelopes first, for at most the grace
                period, instead of abandoning them.
        """
        if connection.state is ConnectionState.CONNECTING:
            await self._reject(connection, code, reason)
            return

        if connection.state is not ConnectionState.OPEN:
            await connection.closed.wait()
            return

        connection.state = ConnectionState.CLOSING
        await self._finish_close(connection, code, reason, flush)

    def evict(self, connection: ChatConnection, reason: str) -> None:
        """
        Close a connection in the background without flushing.

        Args:
            connection: The connection to evict.
            reason: 'backpressure' or 'transport'.
        """
        if connection.state is not ConnectionState.OPEN:
            return

        code = (
            WS_POLICY_VIOLATION_CODE
            if reason == "backpressure"
            else WS_INTERNAL_ERROR_CODE
        )
        logger.warning(f"Evicting connection {connection.connection_id}: {reason}")
        chat_evictions_total.labels(reason=reason).inc()

        connection.state = ConnectionState.CLOSING
        task = asyncio.create_task(
            self._finish_close(connection, code, reason, flush=False)
        )
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def shutdown(self) -> None:
        """
        Close every registered connection, flushing queued envelopes.

        Connections still being opened are rejected once their identity
        is bound; shutdown waits for them for at most the grace period.
        """
        self._shutting_down = True
        opening = [connection.closed.wait() for connection in self._opening]
        entries = self.registry.snapshot()
        if entries:
            logger.info(f"Closing {len(entries)} chat connections")

        await asyncio.gather(
            *[
                self.close(
                    entry.connection,
                    code=WS_GOING_AWAY_CODE,
                    reason="server_shutdown",
                    flush=True,
                )
                for entry in entries
            ],
            return_exceptions=True,
        )
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        if opening:
            try:
                await asyncio.wait_for(
                    asyncio.gather(*opening), timeout=self.grace_seconds
                )
            except TimeoutError:
                logger.warning(
                    f"{len(opening)} connections were still authenticating "
                    "at shutdown"
                )

    def _on_transport_error(
        self, connection: ChatConnection, exc: TransportError
    ) -> None:
        logger.warning(f"Transport error: {exc}")
        chat_deliveries_failed_total.labels(reason="transport").inc()
        self.evict(connection, "transport")

    async def _reject_shutdown(self, connection: ChatConnection) -> None:
        logger.info(
            f"Rejected connection {connection.connection_id}: server_shutdown"
        )
        chat_connections_total.labels(status="rejected_shutdown").inc()
        await self._reject(connection, WS_GOING_AWAY_CODE, "server_shutdown")

    async def _reject(
        self, connection: ChatConnection, code: int, reason: str
    ) -> None:
        try:
            await connection.close_transport(code, _truncate_reason(reason))
        except TransportError as ex:
            logger.warning(f"Failed to reject connection: {ex}")
        finally:
            connection.state = ConnectionState.CLOSED
            connection.closed.set()

    async def _finish_close(
        self,
        connection: ChatConnection,
        code: int,
        reason: str,
        flush: bool,
    ) -> None:
        try:
            if flush and not await connection.flush(self.grace_seconds):
                logger.warning(
                    f"Grace period expired with {connection.outbound_queue_depth} "
                    f"envelopes queued for connection {connection.connection_id}"
                )
        finally:
            try:
                await connection.stop_writer()
                await connection.close_transport(code, _truncate_reason(reason))
            except TransportError as ex:
                logger.warning(f"Error while closing connection: {ex}")
            finally:
                connection.state = ConnectionState.CLOSED
                entry = self.registry.get(connection)
                if entry is not None:
                    self.registry.unregister(entry)
                    logger.info(f"User {entry.identity.user_id} left the chat")
                connection.closed.set()


lifecycle_manager = LifecycleManager(
    registry=connection_registry,
    binder=IdentityBinder(
        sessions=RedisSessionStore(), profiles=RedisProfileStore()
    ),
    broadcaster=MessageBroadcaster(connection_registry),
)
