"""
Tests for the connection lifecycle manager.

This module tests admission and rejection of connections, message
fan-out through the writer tasks, eviction of slow or broken recipients
and closing.
"""

import asyncio
import json

import pytest
from redis.exceptions import TimeoutError as RedisTimeoutError

from chathub.managers.connection import ConnectionState
from chathub.managers.identity_binder import IdentityBinder
from chathub.managers.lifecycle import LifecycleManager, _truncate_reason
from chathub.schemas.identity import Identity
from tests.mocks.auth_mocks import SlowSessionStore, create_failing_session_store
from tests.mocks.websocket_mocks import (
    create_failing_websocket,
    create_stalled_websocket,
    sent_frames,
)


def _frames(connection):
    return [json.loads(frame) for frame in sent_frames(connection.websocket)]


async def _wait_closed(connection):
    await asyncio.wait_for(connection.closed.wait(), timeout=1)


class TestOpen:
    """Tests for admitting and rejecting connections."""

    @pytest.mark.asyncio
    async def test_open_registers_connection(
        self, lifecycle, registry, make_connection
    ):
        """Test a valid credential opens and registers the connection."""
        connection = make_connection()

        entry = await lifecycle.open(connection, "tok-u1")

        assert entry is not None
        assert entry.identity == Identity(
            user_id="u1", display_name="Ann", avatar_url="/a.png"
        )
        assert connection.state is ConnectionState.OPEN
        assert registry.get(connection) is entry

        await lifecycle.shutdown()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "credential, reason",
        [(None, "missing_credential"), ("tok-nobody", "invalid_session")],
    )
    async def test_open_rejects_bad_credential(
        self, lifecycle, registry, make_connection, credential, reason
    ):
        """Test rejected connections are closed with 1008 and never registered."""
        connection = make_connection()

        entry = await lifecycle.open(connection, credential)

        assert entry is None
        assert connection.state is ConnectionState.CLOSED
        assert connection.closed.is_set()
        assert len(registry) == 0
        connection.websocket.close.assert_awaited_once_with(
            code=1008, reason=reason
        )

    @pytest.mark.asyncio
    async def test_open_rejects_when_auth_unavailable(
        self, registry, broadcaster, stores, make_connection
    ):
        """Test an unreachable session store rejects the connection."""
        _, profiles = stores
        lifecycle = LifecycleManager(
            registry=registry,
            binder=IdentityBinder(
                create_failing_session_store(RedisTimeoutError("timeout")),
                profiles,
            ),
            broadcaster=broadcaster,
        )
        connection = make_connection()

        assert await lifecycle.open(connection, "tok-u1") is None

        connection.websocket.close.assert_awaited_once_with(
            code=1008, reason="auth_unavailable"
        )
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_open_already_registered_connection(
        self, lifecycle, registry, make_connection, bob
    ):
        """Test a connection that is somehow registered already is refused."""
        connection = make_connection()
        registry.register(connection, bob)

        assert await lifecycle.open(connection, "tok-u1") is None

        connection.websocket.close.assert_awaited_once_with(
            code=1011, reason="internal_error"
        )
        assert registry.get(connection).identity == bob

    @pytest.mark.asyncio
    async def test_concurrent_opens_and_closes(
        self, lifecycle, registry, make_connection
    ):
        """Test the registry holds exactly the connections that are open."""
        connections = [make_connection() for _ in range(20)]

        await asyncio.gather(
            *[lifecycle.open(c, f"tok-u{i % 3 + 1}") for i, c in enumerate(connections)]
        )
        await asyncio.gather(*[lifecycle.close(c) for c in connections[::2]])

        open_connections = {c for c in connections if c.is_open}
        assert len(open_connections) == 10
        assert {e.connection for e in registry.snapshot()} == open_connections

        await lifecycle.shutdown()
        assert len(registry) == 0


class TestReceive:
    """Tests for publishing received messages."""

    @pytest.mark.asyncio
    async def test_two_participants_both_receive(self, lifecycle, make_connection):
        """Test a message reaches the sender and the other participant."""
        ann_conn, bob_conn = make_connection(), make_connection()
        await lifecycle.open(ann_conn, "tok-u1")
        await lifecycle.open(bob_conn, "tok-u2")

        lifecycle.receive(ann_conn, "hi")
        assert await ann_conn.flush(1.0)
        assert await bob_conn.flush(1.0)

        expected = {
            "username": "Ann",
            "photo_url": "/a.png",
            "text": "hi",
            "timestamp": "14:05",
        }
        assert _frames(ann_conn) == [expected]
        assert _frames(bob_conn) == [expected]

        await lifecycle.shutdown()

    @pytest.mark.asyncio
    async def test_closed_participant_receives_nothing(
        self, lifecycle, registry, make_connection
    ):
        """Test messages sent after a close skip the closed connection."""
        ann_conn, bob_conn = make_connection(), make_connection()
        await lifecycle.open(ann_conn, "tok-u1")
        await lifecycle.open(bob_conn, "tok-u2")

        await lifecycle.close(bob_conn)
        lifecycle.receive(ann_conn, "still here?")
        assert await ann_conn.flush(1.0)

        assert [f["text"] for f in _frames(ann_conn)] == ["still here?"]
        assert _frames(bob_conn) == []
        assert len(registry) == 1

        await lifecycle.shutdown()

    @pytest.mark.asyncio
    async def test_receive_on_closed_connection_is_ignored(
        self, lifecycle, make_connection
    ):
        """Test frames arriving after close publish nothing."""
        ann_conn, bob_conn = make_connection(), make_connection()
        await lifecycle.open(ann_conn, "tok-u1")
        await lifecycle.open(bob_conn, "tok-u2")
        await lifecycle.close(ann_conn)

        assert lifecycle.receive(ann_conn, "ghost") is None
        assert await bob_conn.flush(1.0)
        assert _frames(bob_conn) == []

        await lifecycle.shutdown()

    @pytest.mark.asyncio
    async def test_receive_on_rejected_connection_is_ignored(
        self, lifecycle, make_connection
    ):
        """Test a rejected connection cannot publish."""
        connection = make_connection()
        await lifecycle.open(connection, None)

        assert lifecycle.receive(connection, "hi") is None

    @pytest.mark.asyncio
    async def test_stalled_recipient_is_evicted(
        self, lifecycle, registry, make_connection
    ):
        """Test a stalled recipient is evicted and others get every message."""
        ann_conn = make_connection()
        bob_conn = make_connection(
            websocket=create_stalled_websocket(), queue_size=2, send_timeout=5
        )
        await lifecycle.open(ann_conn, "tok-u1")
        bob_entry = await lifecycle.open(bob_conn, "tok-u2")

        results = [lifecycle.receive(ann_conn, text) for text in ("1", "2", "3")]

        assert results[-1].saturated == (bob_entry,)
        assert bob_conn.state is ConnectionState.CLOSING
        assert await ann_conn.flush(1.0)
        assert [f["text"] for f in _frames(ann_conn)] == ["1", "2", "3"]

        await _wait_closed(bob_conn)
        assert bob_conn.state is ConnectionState.CLOSED
        assert bob_conn not in registry
        bob_conn.websocket.close.assert_awaited_once_with(
            code=1008, reason="backpressure"
        )

        await lifecycle.shutdown()

    @pytest.mark.asyncio
    async def test_failing_recipient_is_evicted(
        self, lifecycle, registry, make_connection
    ):
        """Test a send failure evicts only the failing connection."""
        ann_conn = make_connection()
        bob_conn = make_connection(websocket=create_failing_websocket())
        await lifecycle.open(ann_conn, "tok-u1")
        await lifecycle.open(bob_conn, "tok-u2")

        lifecycle.receive(ann_conn, "hi")
        await _wait_closed(bob_conn)

        assert bob_conn not in registry
        assert ann_conn in registry
        bob_conn.websocket.close.assert_awaited_once_with(
            code=1011, reason="transport"
        )
        assert await ann_conn.flush(1.0)
        assert [f["text"] for f in _frames(ann_conn)] == ["hi"]

        await lifecycle.shutdown()


class TestClose:
    """Tests for closing connections."""

    @pytest.mark.asyncio
    async def test_close_unregisters(self, lifecycle, registry, make_connection):
        """Test close sends the close frame and removes the entry."""
        connection = make_connection()
        await lifecycle.open(connection, "tok-u1")

        await lifecycle.close(connection)

        assert connection.state is ConnectionState.CLOSED
        assert connection.closed.is_set()
        assert len(registry) == 0
        connection.websocket.close.assert_awaited_once_with(code=1000, reason="")

    @pytest.mark.asyncio
    async def test_close_twice(self, lifecycle, registry, make_connection):
        """Test closing twice, also concurrently, closes the socket once."""
        connection = make_connection()
        await lifecycle.open(connection, "tok-u1")

        await asyncio.gather(lifecycle.close(connection), lifecycle.close(connection))
        await lifecycle.close(connection)

        assert len(registry) == 0
        connection.websocket.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_close_before_open(self, lifecycle, registry, make_connection):
        """Test closing a connection that never opened just closes it."""
        connection = make_connection()

        await lifecycle.close(connection)

        assert connection.state is ConnectionState.CLOSED
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_close_survives_transport_error(
        self, lifecycle, registry, make_connection
    ):
        """Test the entry is removed even if the close frame fails."""
        connection = make_connection()
        await lifecycle.open(connection, "tok-u1")
        connection.websocket.close.side_effect = RuntimeError("gone")

        await lifecycle.close(connection)

        assert connection.state is ConnectionState.CLOSED
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_close_with_flush_sends_queued(self, lifecycle, make_connection):
        """Test a flushing close sends what was already queued."""
        ann_conn, bob_conn = make_connection(), make_connection()
        await lifecycle.open(ann_conn, "tok-u1")
        await lifecycle.open(bob_conn, "tok-u2")

        lifecycle.receive(ann_conn, "bye")
        await lifecycle.close(bob_conn, flush=True)

        assert [f["text"] for f in _frames(bob_conn)] == ["bye"]

        await lifecycle.shutdown()

    @pytest.mark.asyncio
    async def test_shutdown_closes_everyone(self, lifecycle, registry, make_connection):
        """Test shutdown flushes and closes every connection with 1001."""
        connections = [make_connection(), make_connection()]
        for connection, credential in zip(connections, ("tok-u1", "tok-u2")):
            await lifecycle.open(connection, credential)
        lifecycle.receive(connections[0], "last words")

        await lifecycle.shutdown()

        assert len(registry) == 0
        for connection in connections:
            assert connection.state is ConnectionState.CLOSED
            assert [f["text"] for f in _frames(connection)] == ["last words"]
            connection.websocket.close.assert_awaited_once_with(
                code=1001, reason="server_shutdown"
            )

    @pytest.mark.asyncio
    async def test_shutdown_rejects_connection_still_authenticating(
        self, registry, broadcaster, stores, make_connection
    ):
        """Test a connection bound after shutdown started is never registered."""
        sessions, profiles = stores
        lifecycle = LifecycleManager(
            registry=registry,
            binder=IdentityBinder(SlowSessionStore(sessions, 0.05), profiles),
            broadcaster=broadcaster,
            grace_seconds=0.5,
        )
        connection = make_connection()

        opening = asyncio.create_task(lifecycle.open(connection, "tok-u1"))
        await asyncio.sleep(0)
        await lifecycle.shutdown()

        assert connection.state is ConnectionState.CLOSED
        assert len(registry) == 0
        assert await opening is None
        connection.websocket.close.assert_awaited_once_with(
            code=1001, reason="server_shutdown"
        )

    @pytest.mark.asyncio
    async def test_open_after_shutdown_is_rejected(
        self, lifecycle, registry, make_connection
    ):
        """Test connections are refused until the manager is started again."""
        await lifecycle.shutdown()
        refused = make_connection()

        assert await lifecycle.open(refused, "tok-u1") is None
        refused.websocket.close.assert_awaited_once_with(
            code=1001, reason="server_shutdown"
        )

        lifecycle.start()
        accepted = make_connection()

        assert await lifecycle.open(accepted, "tok-u1") is not None
        assert len(registry) == 1

        await lifecycle.shutdown()


class TestTruncateReason:
    """Tests for close reason truncation."""

    def test_short_reason_unchanged(self):
        assert _truncate_reason("invalid_session") == "invalid_session"

    def test_long_reason_fits_close_frame(self):
        """Test reasons are cut to 123 bytes without splitting characters."""
        assert len(_truncate_reason("x" * 200)) == 123

        truncated = _truncate_reason("é" * 100)
        assert len(truncated.encode("utf-8")) <= 123
        assert set(truncated) == {"é"}
