"""FastAPI application factory.

App factory pattern — create_app() returns a configured FastAPI instance.
Lifespan owns the process-wide pieces: the database schema, Redis, the
VoteHub (kept on app.state.hub) and the voting timer. Shutdown closes
every live stream before the database goes away.
"""

import asyncio
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from stagevote import __version__
from stagevote.api import api_router
from stagevote.api.responses import register_exception_handlers
from stagevote.config import settings

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle."""
    logger.info(
        "stagevote.starting",
        version=__version__,
        environment=settings.environment,
        port=settings.port,
    )

    from stagevote.db.engine import async_session_factory, create_schema, engine

    if settings.create_schema_on_startup:
        await create_schema(engine)

    # Redis is optional: votes and live streams work without it
    from stagevote.realtime.pubsub import close_redis, init_redis, publish_tally

    publisher = None
    try:
        await init_redis()
        publisher = publish_tally
        logger.info("stagevote.redis_connected", url=settings.redis_url)
    except Exception as e:
        logger.warning("stagevote.redis_unavailable", error=str(e))

    from stagevote.realtime.hub import VoteHub
    from stagevote.services.vote_store import VoteStore
    from stagevote.services.voting_timer import VotingTimer

    hub = VoteHub(VoteStore(async_session_factory), publisher=publisher)
    app.state.hub = hub

    timer = VotingTimer(hub, poll_interval=settings.voting_timer_interval)
    timer_task = asyncio.create_task(timer.run_loop())

    yield

    logger.info("stagevote.shutdown")

    timer.stop()
    timer_task.cancel()
    try:
        await timer_task
    except asyncio.CancelledError:
        pass

    await hub.shutdown()
    await close_redis()
    await engine.dispose()


def create_app() -> FastAPI:
    """Build and return the FastAPI application."""
    app = FastAPI(
        title="StageVote",
        description="Live audience voting for college-society events",
        version=__version__,
        lifespan=lifespan,
    )

    # ── Middleware stack ──────────────────────────────────────
    # Starlette middleware executes in reverse order of registration.
    # Request flow: CORS → RateLimit → Security → RequestId → handler

    from stagevote.middleware.rate_limit import RateLimitMiddleware
    from stagevote.middleware.request_id import RequestIdMiddleware
    from stagevote.middleware.security import SecurityHeadersMiddleware

    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        RateLimitMiddleware,
        default_rpm=settings.rate_limit_rpm,
        vote_rpm=settings.rate_limit_vote_rpm,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)
    app.include_router(api_router)

    return app


# Default app instance (used by uvicorn: stagevote.main:app)
app = create_app()
