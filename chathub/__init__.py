# Uvicorn application factory <https://www.uvicorn.org/#application-factories>
from fastapi import FastAPI

from chathub.logging import logger
from chathub.middlewares.correlation_id import CorrelationIDMiddleware
from chathub.routing import collect_subrouters


def startup():  # type: ignore[no-untyped-def]
    async def on_startup() -> None:
        from chathub.managers.lifecycle import lifecycle_manager
        from chathub.settings import app_settings

        lifecycle_manager.start()
        logger.info(
            f"Chat service ready ({app_settings.ENV.value}, outbound queue "
            f"{app_settings.WS_OUTBOUND_QUEUE_SIZE} envelopes)"
        )

    return on_startup


def shutdown():  # type: ignore[no-untyped-def]
    """
    Build the shutdown handler.

    Chat connections are closed first, with close code 1001 and their
    queued messages flushed, while Redis is still available; the Redis
    clients are closed last.
    """

    async def on_shutdown() -> None:
        from chathub.managers.lifecycle import lifecycle_manager
        from chathub.storage.redis import RedisPool

        logger.info("Chat service stopping")
        await lifecycle_manager.shutdown()
        await RedisPool.close_all()
        logger.info("Chat service stopped")

    return on_shutdown


def application() -> FastAPI:
    """
    Create the chat service ASGI application.

    Serves the chat WebSocket at `/ws` plus `/health` and `/metrics`, all
    found by `collect_subrouters()`. HTTP requests get a correlation ID
    from `CorrelationIDMiddleware`; chat connections use their connection
    id instead.
    """
    app = FastAPI(
        title="chathub",
        description="Real-time chat registry and broadcaster",
        version="1.0.0",
    )

    app.add_event_handler("startup", startup())
    app.add_event_handler("shutdown", shutdown())
    app.include_router(collect_subrouters())
    app.add_middleware(CorrelationIDMiddleware)

    return app
