"""Request ID middleware — unique ID per request for tracing.

Every request gets an ID, either from the incoming X-Request-ID header
or auto-generated. Incoming IDs that aren't short opaque tokens are
replaced, so a client can't smuggle text into the logs.

The ID is bound to structlog's contextvars along with the method, path
and, for vote/tally/live routes, the performance the request is about.
The hub's vote and subscriber logs for that request carry all of them.
"""

import re
import uuid
from typing import Optional

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

_REQUEST_ID = re.compile(r"^[A-Za-z0-9._-]{1,64}$")
_PERFORMANCE_PATH = re.compile(
    r"/(?:performances|events)/([0-9a-fA-F-]{36})/(?:tally|live)$"
    r"|/performances/([0-9a-fA-F-]{36})$"
)


def performance_id_from_path(path: str) -> Optional[str]:
    match = _PERFORMANCE_PATH.search(path)
    if not match:
        return None
    return match.group(1) or match.group(2)


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Generate and propagate a unique request ID."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID", "")
        if not _REQUEST_ID.match(request_id):
            request_id = str(uuid.uuid4())

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )
        performance_id = performance_id_from_path(request.url.path)
        if performance_id:
            structlog.contextvars.bind_contextvars(performance_id=performance_id)

        response: Response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response
