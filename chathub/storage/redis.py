from redis.asyncio import ConnectionPool, Redis

from chathub.logging import logger
from chathub.schemas.identity import ProfileRecord, SessionRecord
from chathub.settings import app_settings


class RedisPool:
    """
    One pooled Redis client per database index, created on first use.

    Sessions live in AUTH_REDIS_DB and profiles in MAIN_REDIS_DB, so a
    running service normally holds two clients.
    """

    __clients: dict[int, Redis] = {}

    @classmethod
    async def get_instance(cls, db: int = 1) -> Redis:
        client = cls.__clients.get(db)
        if client is None:
            client = cls.__clients[db] = cls._create_client(db)
        return client

    @staticmethod
    def _create_client(db: int) -> Redis:
        pool = ConnectionPool.from_url(
            f"redis://{app_settings.REDIS_IP}:{app_settings.REDIS_PORT}/{db}",
            decode_responses=True,
            max_connections=app_settings.REDIS_MAX_CONNECTIONS,
            socket_timeout=app_settings.REDIS_SOCKET_TIMEOUT,
            socket_connect_timeout=app_settings.REDIS_CONNECT_TIMEOUT,
            health_check_interval=app_settings.REDIS_HEALTH_CHECK_INTERVAL,
            retry_on_timeout=app_settings.REDIS_RETRY_ON_TIMEOUT,
        )
        logger.debug(
            f"Redis pool for db {db} at {app_settings.REDIS_IP}:{app_settings.REDIS_PORT}"
        )
        return Redis.from_pool(pool)

    @classmethod
    async def close_all(cls) -> None:
        """
        Close every client and its pool. Called on application shutdown.

        A failure to close one client is logged and does not stop the
        others from closing.
        """
        clients, cls.__clients = cls.__clients, {}
        for db, client in clients.items():
            try:
                await client.aclose()
            except Exception as ex:
                logger.error(f"Failed to close Redis client for db {db}: {ex}")
            else:
                logger.info(f"Closed Redis client for db {db}")


async def get_redis_connection(db: int = app_settings.MAIN_REDIS_DB) -> Redis:
    return await RedisPool.get_instance(db)


async def get_auth_redis_connection() -> Redis:
    """Client for the database holding session hashes."""
    return await RedisPool.get_instance(app_settings.AUTH_REDIS_DB)


class RedisSessionStore:
    """
    Session store backed by Redis hashes.

    A session credential `<cred>` is valid while the hash
    `session:<cred>` exists in the auth database. The login service
    writes it (with a TTL); this store only reads it.

    Redis errors propagate to the caller.
    """

    def __init__(self, key_prefix: str | None = None) -> None:
        self.key_prefix = (
            key_prefix
            if key_prefix is not None
            else app_settings.USER_SESSION_REDIS_KEY_PREFIX
        )

    async def resolve_session(self, credential: str) -> SessionRecord | None:
        r = await get_auth_redis_connection()
        data = await r.hgetall(self.key_prefix + credential)
        if not data or not data.get("user_id"):
            return None
        return SessionRecord(**data)


class RedisProfileStore:
    """Profile store backed by Redis hashes (`profile:<user_id>`)."""

    def __init__(self, key_prefix: str | None = None) -> None:
        self.key_prefix = (
            key_prefix
            if key_prefix is not None
            else app_settings.PROFILE_REDIS_KEY_PREFIX
        )

    async def get_profile(self, user_id: str) -> ProfileRecord | None:
        r = await get_redis_connection()
        data = await r.hgetall(self.key_prefix + user_id)
        if not data:
            return None
        return ProfileRecord(**data)
