import itertools
import time
from dataclasses import dataclass, field

from chathub.exceptions import AlreadyRegistered
from chathub.logging import logger
from chathub.managers.connection import ChatConnection
from chathub.schemas.identity import Identity
from chathub.utils.metrics import chat_connections_active

_entry_ids = itertools.count(1)


@dataclass(frozen=True, eq=False)
class RegistryEntry:
    """Binding of a live connection to its resolved identity."""

    connection: ChatConnection
    identity: Identity
    entry_id: int = field(default_factory=lambda: next(_entry_ids))
    joined_at: float = field(default_factory=time.monotonic)


class ConnectionRegistry:
    """
    Registry of reachable chat connections.

    Tracks registered connections keyed by the connection object, in join
    order, for O(1) lookups and consistent broadcast snapshots.

    None of the methods await, so on the event loop every register,
    unregister and snapshot runs to completion before any other task can
    observe the registry.
    """

    def __init__(self) -> None:
        self._entries: dict[ChatConnection, RegistryEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, item: object) -> bool:
        if isinstance(item, RegistryEntry):
            return self._entries.get(item.connection) is item
        return item in self._entries

    def register(
        self, connection: ChatConnection, identity: Identity
    ) -> RegistryEntry:
        """
        Add a connection with its identity.

        Args:
            connection: The connection being admitted.
            identity: Its bound identity.

        Returns:
            RegistryEntry: Handle used to unregister the connection later.

        Raises:
            AlreadyRegistered: If the connection already has an entry.
        """
        if connection in self._entries:
            raise AlreadyRegistered(
                f"Connection {connection.connection_id} is already registered"
            )

        entry = RegistryEntry(connection=connection, identity=identity)
        self._entries[connection] = entry
        chat_connections_active.inc()
        logger.debug(
            f"Registered connection {connection.connection_id} for user "
            f"{identity.user_id} ({len(self._entries)} active)"
        )
        return entry

    def unregister(self, entry: RegistryEntry) -> bool:
        """
        Remove an entry. Removing an entry twice is a no-op.

        Args:
            entry: Handle returned by `register`.

        Returns:
            bool: True if the entry was removed by this call.
        """
        if self._entries.get(entry.connection) is not entry:
            return False

        del self._entries[entry.connection]
        chat_connections_active.dec()
        logger.debug(
            f"Unregistered connection {entry.connection.connection_id} for user "
            f"{entry.identity.user_id} ({len(self._entries)} active)"
        )
        return True

    def get(self, connection: ChatConnection) -> RegistryEntry | None:
        return self._entries.get(connection)

    def snapshot(self) -> tuple[RegistryEntry, ...]:
        """Point-in-time view of all entries in join order."""
        return tuple(self._entries.values())


connection_registry = ConnectionRegistry()
