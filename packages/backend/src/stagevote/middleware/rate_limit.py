"""Rate limiting middleware — Redis-based per-minute window.

Each IP gets a counter key like "stagevote:rl:{ip}:{bucket}:{minute}".
POST /vote gets a stricter limit to blunt scripted ballot stuffing;
the unique (user, performance) constraint still has the final word.
Live streams are exempt: one request holds the connection for minutes.

Gracefully skips rate limiting if Redis is unavailable (e.g., in tests).
"""

import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from stagevote.api.responses import error_response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Redis-based rate limiting per IP per minute."""

    def __init__(self, app, default_rpm: int = 100, vote_rpm: int = 20):
        super().__init__(app)
        self.default_rpm = default_rpm
        self.vote_rpm = vote_rpm

    async def dispatch(self, request: Request, call_next) -> Response:
        path = request.url.path
        if path.endswith("/live"):
            return await call_next(request)

        # Try to get Redis: skip rate limiting if unavailable
        try:
            from stagevote.realtime.pubsub import get_redis

            redis = get_redis()
        except RuntimeError:
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        is_vote = request.method == "POST" and path.endswith("/vote")
        rpm = self.vote_rpm if is_vote else self.default_rpm

        window = int(time.time() // 60)
        bucket = "vote" if is_vote else "api"
        key = f"stagevote:rl:{client_ip}:{bucket}:{window}"

        try:
            count = await redis.incr(key)
            if count == 1:
                await redis.expire(key, 120)  # 2-min TTL for safety
        except Exception:
            # Redis error: don't block the request
            return await call_next(request)

        if count > rpm:
            return error_response(
                429,
                "Rate limit exceeded. Try again later.",
                headers={"Retry-After": "60"},
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(rpm)
        response.headers["X-RateLimit-Remaining"] = str(max(0, rpm - count))
        return response
