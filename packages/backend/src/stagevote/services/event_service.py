"""Event service — business logic for events and performances.

Service layer separates business logic from HTTP routing. Routes call
services, services call the database. Opening and closing votes is not
done here: it goes through the VoteHub so live subscribers are told.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from stagevote.config import settings
from stagevote.db.models import Event, Performance


class EventNotFoundError(Exception):
    """Raised when an event id does not exist."""


class EventService:
    """Business logic for event and performance management."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ─── Events ─────────────────────────────────────────

    async def create_event(
        self,
        *,
        name: str,
        description: str = "",
        venue: Optional[str] = None,
        starts_at: Optional[datetime] = None,
    ) -> Event:
        event = Event(name=name, description=description, venue=venue, starts_at=starts_at)
        self.db.add(event)
        await self.db.commit()
        await self.db.refresh(event)
        return event

    async def list_events(self, limit: int = 50) -> list[Event]:
        result = await self.db.execute(
            select(Event).order_by(Event.starts_at.desc(), Event.created_at.desc()).limit(limit)
        )
        return list(result.scalars().all())

    async def get_event(self, event_id: uuid.UUID) -> Optional[Event]:
        return await self.db.get(Event, event_id)

    # ─── Performances ───────────────────────────────────

    async def create_performance(
        self,
        event_id: uuid.UUID,
        *,
        title: str,
        performer: Optional[str] = None,
        options: Optional[list[str]] = None,
        voting_duration_seconds: Optional[int] = None,
    ) -> Performance:
        """Add a performance to an event. Voting starts closed."""
        if not await self.db.get(Event, event_id):
            raise EventNotFoundError(f"Event {event_id} not found")

        performance = Performance(
            event_id=event_id,
            title=title,
            performer=performer,
            options=list(options or settings.default_vote_options),
            voting_enabled=False,
            voting_duration_seconds=voting_duration_seconds,
        )
        self.db.add(performance)
        await self.db.commit()
        await self.db.refresh(performance)
        return performance

    async def list_performances(self, event_id: uuid.UUID) -> list[Performance]:
        result = await self.db.execute(
            select(Performance)
            .where(Performance.event_id == event_id)
            .order_by(Performance.created_at)
        )
        return list(result.scalars().all())

    async def get_performance(self, performance_id: uuid.UUID) -> Optional[Performance]:
        return await self.db.get(Performance, performance_id)

    async def update_performance(
        self, performance_id: uuid.UUID, **fields
    ) -> Optional[Performance]:
        """Apply plain field edits (title, performer, duration)."""
        performance = await self.db.get(Performance, performance_id)
        if not performance:
            return None
        for key, value in fields.items():
            setattr(performance, key, value)
        await self.db.commit()
        return performance
