"""
Pytest configuration and fixtures for testing.

This module provides shared fixtures for identities, collaborator stores,
and fully wired chat managers with a fixed clock.
"""

import os
from datetime import datetime, timezone

import pytest

# Keep test runs independent of the developer's environment
os.environ.setdefault("ENV", "dev")
os.environ.setdefault("LOG_FILE_PATH", os.devnull)

from chathub.managers.broadcaster import MessageBroadcaster  # noqa: E402
from chathub.managers.connection import ChatConnection  # noqa: E402
from chathub.managers.connection_registry import ConnectionRegistry  # noqa: E402
from chathub.managers.identity_binder import IdentityBinder  # noqa: E402
from chathub.managers.lifecycle import LifecycleManager  # noqa: E402
from chathub.schemas.identity import Identity  # noqa: E402
from tests.mocks.auth_mocks import create_session_stores  # noqa: E402
from tests.mocks.websocket_mocks import create_mock_websocket  # noqa: E402

FIXED_TIME = datetime(2024, 5, 1, 14, 5, 30, tzinfo=timezone.utc)


@pytest.fixture
def fixed_clock():
    """
    Provides a clock that always returns 2024-05-01 14:05:30 UTC.

    Returns:
        Callable: Zero-argument clock
    """
    return lambda: FIXED_TIME


@pytest.fixture
def ann():
    """Identity of the first example participant."""
    return Identity(user_id="u1", display_name="Ann", avatar_url="/a.png")


@pytest.fixture
def bob():
    """Identity of the second example participant."""
    return Identity(user_id="u2", display_name="Bob", avatar_url="/b.png")


@pytest.fixture
def stores():
    """
    Provides session and profile stores knowing Ann (u1), Bob (u2) and
    Cid (u3, no avatar). Credentials are `tok-u1`, `tok-u2`, `tok-u3`.

    Returns:
        tuple: (InMemorySessionStore, InMemoryProfileStore)
    """
    return create_session_stores(
        u1=("Ann", "/a.png"), u2=("Bob", "/b.png"), u3=("Cid", None)
    )


@pytest.fixture
def registry():
    """Provides an empty ConnectionRegistry."""
    return ConnectionRegistry()


@pytest.fixture
def broadcaster(registry, fixed_clock):
    """Provides a MessageBroadcaster over `registry` with a fixed clock."""
    return MessageBroadcaster(registry, clock=fixed_clock)


@pytest.fixture
def lifecycle(registry, broadcaster, stores):
    """
    Provides a LifecycleManager wired to the in-memory stores.

    Returns:
        LifecycleManager: Manager with a short close grace period
    """
    sessions, profiles = stores
    return LifecycleManager(
        registry=registry,
        binder=IdentityBinder(sessions=sessions, profiles=profiles),
        broadcaster=broadcaster,
        grace_seconds=0.5,
    )


@pytest.fixture
def make_connection():
    """
    Factory for ChatConnection instances over mock WebSockets.

    Returns:
        Callable: `make_connection(websocket=None, queue_size=8, send_timeout=0.2)`
    """

    def factory(websocket=None, queue_size=8, send_timeout=0.2):
        return ChatConnection(
            websocket if websocket is not None else create_mock_websocket(),
            queue_size=queue_size,
            send_timeout=send_timeout,
        )

    return factory
