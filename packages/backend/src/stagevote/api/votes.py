"""Voting API routes.

- POST /vote → cast the current user's vote, returns the new tally
- GET /performances/:id/tally → current tally without streaming

Error mapping: a duplicate vote and a closed vote are both 400 but carry
different messages, so the app can say "you already voted" apart from
"voting has ended". Persistence failures are 500 with no detail.
"""

import uuid

from fastapi import APIRouter, Depends, HTTPException

from stagevote.api.responses import ok
from stagevote.auth.dependencies import CurrentIdentity, get_current_user
from stagevote.realtime.hub import VoteHub, get_hub
from stagevote.schemas.base import ApiResponse
from stagevote.schemas.vote import TallyRead, VoteCreate
from stagevote.services.errors import (
    DuplicateVoteError,
    InvalidVoteOptionError,
    PerformanceNotFoundError,
    PersistenceError,
    VotingClosedError,
)

router = APIRouter()


@router.post("/vote", response_model=ApiResponse[TallyRead], status_code=201)
async def cast_vote(
    body: VoteCreate,
    identity: CurrentIdentity = Depends(get_current_user),
    hub: VoteHub = Depends(get_hub),
):
    """Record one vote for the authenticated user."""
    try:
        tally = await hub.record_vote(identity.user_id, body.performance_id, body.value)
    except PerformanceNotFoundError:
        raise HTTPException(status_code=404, detail="Performance not found")
    except (VotingClosedError, DuplicateVoteError, InvalidVoteOptionError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except PersistenceError:
        raise HTTPException(
            status_code=500, detail="Could not record your vote. Please try again."
        )
    return ok(TallyRead.from_snapshot(tally), "Vote recorded", 201)


@router.get("/performances/{performance_id}/tally", response_model=ApiResponse[TallyRead])
async def get_tally(performance_id: uuid.UUID, hub: VoteHub = Depends(get_hub)):
    try:
        tally = await hub.current_tally(performance_id)
    except PerformanceNotFoundError:
        raise HTTPException(status_code=404, detail="Performance not found")
    except PersistenceError:
        raise HTTPException(status_code=500, detail="Could not load tally")
    return ok(TallyRead.from_snapshot(tally))
