"""API route aggregation.

All routers registered here get mounted in main.py.

Auth is applied per route: reads and voting need a signed-in user,
event management needs an admin, health is open, and the live stream
authenticates itself (EventSource can't send an Authorization header).
"""

from fastapi import APIRouter, Depends

from stagevote.api.events import router as events_router
from stagevote.api.health import router as health_router
from stagevote.api.votes import router as votes_router
from stagevote.auth.dependencies import get_current_user
from stagevote.realtime.sse import router as live_router

_auth = [Depends(get_current_user)]

api_router = APIRouter(prefix="/api/v1")

# Open routes: no auth required
api_router.include_router(health_router, tags=["health"])
api_router.include_router(live_router, tags=["live"])

# Protected routes: require a valid JWT
api_router.include_router(events_router, tags=["events", "performances"], dependencies=_auth)
api_router.include_router(votes_router, tags=["votes"], dependencies=_auth)
