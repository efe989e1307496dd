"""Health check endpoint.

Simple GET endpoint that verifies the server is running and its
dependencies (database, Redis) are reachable, plus how many live
streams this process is feeding.
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from stagevote import __version__
from stagevote.api.responses import ok
from stagevote.db.engine import get_db

router = APIRouter()


@router.get("/health")
async def health_check(request: Request, db: AsyncSession = Depends(get_db)):
    """Check server health and dependency connectivity."""
    checks = {"server": "ok", "version": __version__}

    # Check database
    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        checks["database"] = f"error: {e}"

    # Check Redis
    try:
        from stagevote.realtime.pubsub import get_redis

        await get_redis().ping()
        checks["redis"] = "ok"
    except Exception as e:
        checks["redis"] = f"error: {e}"

    status = "healthy" if all(
        v == "ok" for k, v in checks.items() if k != "version"
    ) else "degraded"

    hub = getattr(request.app.state, "hub", None)
    live = hub.subscriber_count() if hub is not None else 0

    return ok({"status": status, "liveSubscribers": live, **checks}, message=status)
