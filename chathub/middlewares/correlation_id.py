"""
Correlation IDs for log lines.

HTTP requests take theirs from the `X-Correlation-ID` header (or get a
fresh one) in `CorrelationIDMiddleware`. That middleware never sees
WebSocket traffic, so the chat endpoint calls `set_correlation_id()` with
the connection id when a connection opens.
"""

import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

CORRELATION_ID_HEADER = "X-Correlation-ID"
CORRELATION_ID_LENGTH = 8

correlation_id: ContextVar[str] = ContextVar("correlation_id", default="")


def set_correlation_id(cid: str) -> None:
    correlation_id.set(cid[:CORRELATION_ID_LENGTH])


def get_correlation_id() -> str:
    """Correlation ID of the current request or connection, or ''."""
    return correlation_id.get()


class CorrelationIDMiddleware(BaseHTTPMiddleware):
    """
    Tag each HTTP request with a short correlation ID.

    The ID is echoed in the response header and available to the request
    as `request.state.request_id`.
    """

    async def dispatch(self, request: Request, call_next) -> Response:  # type: ignore[no-untyped-def]
        cid = request.headers.get(CORRELATION_ID_HEADER) or uuid.uuid4().hex
        set_correlation_id(cid)
        request.state.request_id = get_correlation_id()

        response = await call_next(request)
        response.headers[CORRELATION_ID_HEADER] = get_correlation_id()
        return response
