"""Liveness endpoint for load balancers and orchestrators."""

from typing import Literal

from fastapi import APIRouter, Response, status
from pydantic import BaseModel
from redis.exceptions import RedisError

from chathub.logging import logger
from chathub.managers.connection_registry import connection_registry
from chathub.storage.redis import get_auth_redis_connection

router = APIRouter()

ComponentStatus = Literal["healthy", "unhealthy"]


class HealthResponse(BaseModel):
    status: ComponentStatus
    redis: ComponentStatus
    active_connections: int


async def _redis_status() -> ComponentStatus:
    try:
        r = await get_auth_redis_connection()
        await r.ping()
    except (RedisError, OSError) as ex:
        logger.error(f"Redis health check failed: {ex}")
        return "unhealthy"
    return "healthy"


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Chat service health",
    tags=["health"],
)
async def health_check(response: Response) -> HealthResponse:
    """
    Report whether new chat connections can be admitted.

    Every new connection is authenticated against the session store in
    Redis, so the service answers 503 while Redis is unreachable. Already
    open connections keep working in that state and are still counted.
    """
    redis_status = await _redis_status()
    if redis_status == "unhealthy":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return HealthResponse(
        status=redis_status,
        redis=redis_status,
        active_connections=len(connection_registry),
    )
