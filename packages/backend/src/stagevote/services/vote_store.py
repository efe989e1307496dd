"""Vote store — the broadcast hub's view of the relational database.

The hub is process-wide and outlives any single request, so the store
opens its own short-lived session per call from a session factory instead
of borrowing the request's session. Every SQLAlchemy failure is wrapped
in PersistenceError so callers see one error type for "the store broke".

The uniqueness of (user_id, performance_id) is enforced by the database.
A pre-check gives a clean DuplicateVoteError in the common case; the
IntegrityError path covers two racing inserts from different processes.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Union

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from stagevote.db.models import Performance, Vote
from stagevote.services.errors import (
    DuplicateVoteError,
    InvalidVoteOptionError,
    PerformanceNotFoundError,
    PersistenceError,
)

logger = structlog.get_logger()

VoteValue = Union[bool, str]


@dataclass(frozen=True)
class PerformanceInfo:
    """Detached snapshot of the performance fields the hub needs."""

    id: uuid.UUID
    options: tuple[str, ...]
    voting_enabled: bool
    voting_closes_at: Optional[datetime] = None

    def accepting_votes(self, now: Optional[datetime] = None) -> bool:
        if not self.voting_enabled:
            return False
        if self.voting_closes_at is None:
            return True
        return (now or datetime.now(timezone.utc)) < self.voting_closes_at

    def resolve_option(self, value: VoteValue) -> str:
        """Map a submitted vote value onto one of the performance's options.

        Booleans are accepted for the classic yes/no performance:
        True → first option, False → second option.
        """
        if isinstance(value, bool):
            if len(self.options) != 2:
                raise InvalidVoteOptionError(
                    "This performance needs one of: " + ", ".join(self.options)
                )
            return self.options[0] if value else self.options[1]
        if value not in self.options:
            raise InvalidVoteOptionError(
                f"'{value}' is not a voting option. Choose one of: "
                + ", ".join(self.options)
            )
        return value

    @classmethod
    def from_model(cls, performance: Performance) -> "PerformanceInfo":
        return cls(
            id=performance.id,
            options=tuple(performance.options),
            voting_enabled=performance.voting_enabled,
            voting_closes_at=performance.voting_closes_at,
        )


class VoteStore:
    """SQLAlchemy-backed persistence for the broadcast hub."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get_performance(self, performance_id: uuid.UUID) -> PerformanceInfo:
        try:
            async with self.session_factory() as db:
                performance = await db.get(Performance, performance_id)
        except SQLAlchemyError as e:
            logger.error("vote_store.read_failed", performance_id=str(performance_id), error=str(e))
            raise PersistenceError("Could not load performance") from e

        if performance is None:
            raise PerformanceNotFoundError(f"Performance {performance_id} not found")
        return PerformanceInfo.from_model(performance)

    async def insert_vote(
        self, user_id: str, performance_id: uuid.UUID, option: str
    ) -> None:
        """Persist one vote. Raises DuplicateVoteError or PersistenceError."""
        try:
            async with self.session_factory() as db:
                existing = await db.execute(
                    select(Vote.id).where(
                        Vote.user_id == user_id,
                        Vote.performance_id == performance_id,
                    )
                )
                if existing.first() is not None:
                    raise DuplicateVoteError(
                        "You have already voted for this performance"
                    )

                db.add(Vote(user_id=user_id, performance_id=performance_id, option=option))
                try:
                    await db.commit()
                except IntegrityError as e:
                    await db.rollback()
                    if await self._has_voted(db, user_id, performance_id):
                        raise DuplicateVoteError(
                            "You have already voted for this performance"
                        ) from e
                    raise
        except SQLAlchemyError as e:
            logger.error(
                "vote_store.insert_failed",
                performance_id=str(performance_id),
                user_id=user_id,
                error=str(e),
            )
            raise PersistenceError("Could not record vote") from e

    async def count_votes(self, performance_id: uuid.UUID) -> dict[str, int]:
        """Aggregate committed votes per option (used to seed the cache)."""
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    select(Vote.option, func.count(Vote.id))
                    .where(Vote.performance_id == performance_id)
                    .group_by(Vote.option)
                )
                return {option: count for option, count in result.all()}
        except SQLAlchemyError as e:
            logger.error("vote_store.count_failed", performance_id=str(performance_id), error=str(e))
            raise PersistenceError("Could not load tally") from e

    async def set_voting_enabled(
        self,
        performance_id: uuid.UUID,
        enabled: bool,
        *,
        at: Optional[datetime] = None,
    ) -> PerformanceInfo:
        """Open or close voting. Opening stamps voting_opened_at."""
        try:
            async with self.session_factory() as db:
                performance = await db.get(Performance, performance_id)
                if performance is None:
                    raise PerformanceNotFoundError(
                        f"Performance {performance_id} not found"
                    )
                performance.voting_enabled = enabled
                if enabled:
                    performance.voting_opened_at = at or datetime.now(timezone.utc)
                await db.commit()
                return PerformanceInfo.from_model(performance)
        except SQLAlchemyError as e:
            logger.error("vote_store.toggle_failed", performance_id=str(performance_id), error=str(e))
            raise PersistenceError("Could not update performance") from e

    async def list_expired(self, now: Optional[datetime] = None) -> list[uuid.UUID]:
        """Performances still marked open whose voting window has passed."""
        now = now or datetime.now(timezone.utc)
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    select(Performance)
                    .where(Performance.voting_enabled.is_(True))
                    .where(Performance.voting_duration_seconds.isnot(None))
                    .where(Performance.voting_opened_at.isnot(None))
                )
                candidates = list(result.scalars().all())
        except SQLAlchemyError as e:
            raise PersistenceError("Could not scan voting windows") from e

        return [
            p.id for p in candidates
            if p.voting_closes_at is not None and p.voting_closes_at <= now
        ]

    @staticmethod
    async def _has_voted(
        db: AsyncSession, user_id: str, performance_id: uuid.UUID
    ) -> bool:
        result = await db.execute(
            select(Vote.id).where(
                Vote.user_id == user_id,
                Vote.performance_id == performance_id,
            )
        )
        return result.first() is not None
