"""Event and Performance API routes.

- POST /events → create an event (admin)
- GET /events → list events
- GET /events/:id → get one event
- POST /events/:id/performances → add a performance (admin)
- GET /events/:id/performances → list an event's performances
- GET /performances/:id → get one performance
- PATCH /performances/:id → edit, or toggle votingEnabled (admin)

Toggling votingEnabled goes through the VoteHub, not the service:
closing must reach every live subscriber.
"""

import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from stagevote.api.responses import ok
from stagevote.auth.dependencies import require_admin
from stagevote.db.engine import get_db
from stagevote.realtime.hub import VoteHub, get_hub
from stagevote.schemas.base import ApiResponse
from stagevote.schemas.event import (
    EventCreate,
    EventRead,
    PerformanceCreate,
    PerformanceRead,
    PerformanceUpdate,
)
from stagevote.services.errors import PerformanceNotFoundError, PersistenceError
from stagevote.services.event_service import EventNotFoundError, EventService

router = APIRouter()


def _svc(db: AsyncSession = Depends(get_db)) -> EventService:
    return EventService(db)


# ─── Events ─────────────────────────────────────────────

@router.post(
    "/events",
    response_model=ApiResponse[EventRead],
    status_code=201,
    dependencies=[Depends(require_admin)],
)
async def create_event(body: EventCreate, svc: EventService = Depends(_svc)):
    event = await svc.create_event(
        name=body.name,
        description=body.description,
        venue=body.venue,
        starts_at=body.starts_at,
    )
    return ok(EventRead.model_validate(event), "Event created", 201)


@router.get("/events", response_model=ApiResponse[list[EventRead]])
async def list_events(svc: EventService = Depends(_svc)):
    events = await svc.list_events()
    return ok([EventRead.model_validate(e) for e in events])


@router.get("/events/{event_id}", response_model=ApiResponse[EventRead])
async def get_event(event_id: uuid.UUID, svc: EventService = Depends(_svc)):
    event = await svc.get_event(event_id)
    if not event:
        raise HTTPException(status_code=404, detail="Event not found")
    return ok(EventRead.model_validate(event))


# ─── Performances ───────────────────────────────────────

@router.post(
    "/events/{event_id}/performances",
    response_model=ApiResponse[PerformanceRead],
    status_code=201,
    dependencies=[Depends(require_admin)],
)
async def create_performance(
    event_id: uuid.UUID,
    body: PerformanceCreate,
    svc: EventService = Depends(_svc),
):
    """Add a performance. Voting starts closed; open it with PATCH."""
    try:
        performance = await svc.create_performance(
            event_id,
            title=body.title,
            performer=body.performer,
            options=body.options,
            voting_duration_seconds=body.voting_duration_seconds,
        )
    except EventNotFoundError:
        raise HTTPException(status_code=404, detail="Event not found")
    return ok(PerformanceRead.model_validate(performance), "Performance created", 201)


@router.get(
    "/events/{event_id}/performances",
    response_model=ApiResponse[list[PerformanceRead]],
)
async def list_performances(event_id: uuid.UUID, svc: EventService = Depends(_svc)):
    if not await svc.get_event(event_id):
        raise HTTPException(status_code=404, detail="Event not found")
    performances = await svc.list_performances(event_id)
    return ok([PerformanceRead.model_validate(p) for p in performances])


@router.get("/performances/{performance_id}", response_model=ApiResponse[PerformanceRead])
async def get_performance(performance_id: uuid.UUID, svc: EventService = Depends(_svc)):
    performance = await svc.get_performance(performance_id)
    if not performance:
        raise HTTPException(status_code=404, detail="Performance not found")
    return ok(PerformanceRead.model_validate(performance))


@router.patch(
    "/performances/{performance_id}",
    response_model=ApiResponse[PerformanceRead],
    dependencies=[Depends(require_admin)],
)
async def update_performance(
    performance_id: uuid.UUID,
    body: PerformanceUpdate,
    svc: EventService = Depends(_svc),
    hub: VoteHub = Depends(get_hub),
):
    """Edit a performance. votingEnabled=false ends the live vote."""
    changes = body.model_dump(exclude_unset=True, exclude_none=True, exclude={"voting_enabled"})
    performance = await svc.update_performance(performance_id, **changes)
    if not performance:
        raise HTTPException(status_code=404, detail="Performance not found")

    message = "Performance updated"
    if body.voting_enabled is not None:
        try:
            if body.voting_enabled:
                await hub.open_voting(performance_id)
                message = "Voting opened"
            else:
                await hub.close_voting(performance_id)
                message = "Voting closed"
        except PerformanceNotFoundError:
            raise HTTPException(status_code=404, detail="Performance not found")
        except PersistenceError:
            raise HTTPException(
                status_code=500, detail="Could not update voting. Please try again."
            )
        await svc.db.refresh(performance)

    return ok(PerformanceRead.model_validate(performance), message)
