"""Security headers middleware.

Adds standard security headers to every response:
- X-Content-Type-Options: prevents MIME-type sniffing
- X-Frame-Options: prevents clickjacking
- Referrer-Policy: limits referrer info leakage
- Strict-Transport-Security: forces HTTPS (only on HTTPS connections)

Caching depends on what the response is. JSON payloads carry per-user
data (your vote, admin views) and get no-store. Live tally streams
(text/event-stream) get no-cache plus X-Accel-Buffering: no, otherwise
nginx-style proxies hold frames back until their buffer fills and the
audience sees the tally in bursts.
"""

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

EVENT_STREAM = "text/event-stream"


def is_event_stream(response: Response) -> bool:
    return response.headers.get("content-type", "").startswith(EVENT_STREAM)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security and caching headers to all responses."""

    async def dispatch(self, request: Request, call_next) -> Response:
        response: Response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

        if is_event_stream(response):
            response.headers["Cache-Control"] = "no-cache"
            response.headers["X-Accel-Buffering"] = "no"
        else:
            response.headers["Cache-Control"] = "no-store"

        if request.url.scheme == "https":
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response
