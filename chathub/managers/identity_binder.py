from redis.exceptions import RedisError

from chathub.exceptions import Unauthenticated
from chathub.logging import logger
from chathub.protocols import ProfileStore, SessionStore
from chathub.schemas.identity import Identity


class IdentityBinder:
    """
    Resolves a connection's session credential into an Identity.

    Called exactly once per connection, before it is admitted to the
    registry. There are no retries and no anonymous fallback: any failure,
    including an unreachable session store, raises `Unauthenticated`.

    Profile values take precedence over what the session carries; the
    display name falls back to the session's, then to the user id.
    """

    def __init__(self, sessions: SessionStore, profiles: ProfileStore) -> None:
        self.sessions = sessions
        self.profiles = profiles

    async def bind(self, credential: str | None) -> Identity:
        """
        Resolve `credential` into an Identity.

        Args:
            credential: Session value supplied with the connection, if any.

        Returns:
            Identity: The resolved, immutable identity.

        Raises:
            Unauthenticated: With reason 'missing_credential',
                'invalid_session', 'unknown_user' or 'auth_unavailable'.
        """
        if not credential:
            raise Unauthenticated("missing_credential", "No session credential")

        try:
            session = await self.sessions.resolve_session(credential)
            if session is None:
                raise Unauthenticated("invalid_session", "Session not found")

            profile = await self.profiles.get_profile(session.user_id)
        except (RedisError, ConnectionError, TimeoutError) as ex:
            logger.error(f"Identity lookup failed: {ex}")
            raise Unauthenticated("auth_unavailable", str(ex)) from ex

        if profile is None and session.display_name is None:
            raise Unauthenticated(
                "unknown_user", f"No profile for user {session.user_id}"
            )

        display_name = (
            (profile.display_name if profile else None)
            or session.display_name
            or session.user_id
        )
        avatar_url = (profile.avatar_url if profile else None) or session.avatar_url

        identity = Identity(
            user_id=session.user_id,
            display_name=display_name,
            avatar_url=avatar_url,
        )
        logger.debug(f"Bound identity {identity.user_id} ({identity.display_name})")
        return identity
