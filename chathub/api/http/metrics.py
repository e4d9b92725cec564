"""Prometheus scrape endpoint."""

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

router = APIRouter()


@router.get("/metrics", response_class=Response, include_in_schema=False)
async def metrics() -> Response:
    """Chat metrics (`chat_*`) and process metrics in the text format."""
    return Response(generate_latest(REGISTRY), media_type=CONTENT_TYPE_LATEST)
