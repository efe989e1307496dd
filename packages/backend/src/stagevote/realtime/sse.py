"""Live tally stream — Server-Sent Events per performance.

Each client opens GET /events/{performance_id}/live?token=JWT. The handler:
1. Authenticates (EventSource can't set headers, so ?token= is accepted;
   required outside development)
2. Subscribes a QueueChannel to the hub — the first frame is the current tally
3. Streams every tally the hub enqueues, with keep-alive comments while idle
4. Unsubscribes when the client goes away or voting closes

A reconnecting client simply subscribes again and is reseeded.
"""

import uuid
from typing import AsyncIterator, Optional

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Query
from fastapi.responses import StreamingResponse

from stagevote.config import settings
from stagevote.realtime.channels import QueueChannel
from stagevote.realtime.hub import Subscription, VoteHub, get_hub
from stagevote.services.errors import (
    PerformanceNotFoundError,
    PersistenceError,
    VotingClosedError,
)

logger = structlog.get_logger()
router = APIRouter()


def _authenticate(token: Optional[str], authorization: Optional[str]) -> Optional[str]:
    """Return the user id behind the stream, or None in open development mode."""
    if not token and authorization and authorization.startswith("Bearer "):
        token = authorization[7:]

    if not token:
        if settings.environment != "development":
            raise HTTPException(status_code=401, detail="Authentication required")
        return None

    from stagevote.auth.dependencies import identity_from_token
    from stagevote.auth.jwt import TokenError

    try:
        return identity_from_token(token).user_id
    except TokenError:
        raise HTTPException(status_code=401, detail="Invalid or expired token")


async def _stream(
    hub: VoteHub, subscription: Subscription, channel: QueueChannel
) -> AsyncIterator[str]:
    try:
        async for frame in channel.frames(settings.live_keepalive_seconds):
            yield frame
    finally:
        hub.unsubscribe(subscription)
        channel.close()
        logger.info(
            "live.stream_ended",
            performance_id=str(subscription.performance_id),
            subscription_id=str(subscription.id),
        )


@router.get("/events/{performance_id}/live")
async def live_tally(
    performance_id: uuid.UUID,
    token: Optional[str] = Query(None),
    authorization: Optional[str] = Header(None),
    hub: VoteHub = Depends(get_hub),
):
    """Stream tally updates for one performance as text/event-stream."""
    user_id = _authenticate(token, authorization)

    channel = QueueChannel(maxsize=settings.live_buffer_size)
    try:
        subscription = await hub.subscribe(performance_id, channel)
    except PerformanceNotFoundError:
        raise HTTPException(status_code=404, detail="Performance not found")
    except VotingClosedError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except PersistenceError:
        raise HTTPException(status_code=500, detail="Could not open live tally")

    logger.info(
        "live.stream_opened",
        performance_id=str(performance_id),
        subscription_id=str(subscription.id),
        user_id=user_id,
    )
    # Cache and proxy-buffering headers come from SecurityHeadersMiddleware
    return StreamingResponse(
        _stream(hub, subscription, channel),
        media_type="text/event-stream",
    )
