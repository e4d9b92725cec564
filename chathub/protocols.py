"""
Protocol classes for the collaborators the chat core depends on.

Protocols define interfaces without requiring explicit inheritance. The
Redis-backed stores in `chathub.storage.redis` implement them, and tests
use in-memory stand-ins.

Example:
    ```python
    from chathub.managers.identity_binder import IdentityBinder

    binder = IdentityBinder(sessions=my_session_store, profiles=my_profiles)
    identity = await binder.bind(cookie_value)
    ```
"""

from typing import Protocol, runtime_checkable

from chathub.schemas.identity import ProfileRecord, SessionRecord


@runtime_checkable
class SessionStore(Protocol):
    """
    Auth collaborator: validates session credentials.

    Credential issuance (login) happens elsewhere; the chat core only
    reads.
    """

    async def resolve_session(self, credential: str) -> SessionRecord | None:
        """
        Resolve a session credential.

        Args:
            credential: Opaque session value from the cookie.

        Returns:
            SessionRecord for a valid session, None for an unknown or
            expired one.
        """
        ...


@runtime_checkable
class ProfileStore(Protocol):
    """Profile collaborator: supplies display name and avatar."""

    async def get_profile(self, user_id: str) -> ProfileRecord | None:
        """
        Get profile data for a user.

        Args:
            user_id: Stable user identifier.

        Returns:
            ProfileRecord if the user has a profile, None otherwise.
        """
        ...
