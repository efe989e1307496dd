"""Vote broadcast hub — records votes and fans tallies out to live streams.

One VoteHub per process, created in the app lifespan and kept on
app.state. For every performance it holds:

- an asyncio.Lock serializing everything that touches that performance
  (voting check, vote insert, tally mutation, enqueue to subscribers)
- the cached tally, seeded from the store on first use
- the current subscribers (SSE streams)

Inside the lock a broadcast is only a buffered send() per channel. The
network write happens in each stream's own task, so a slow client never
holds up voting. A channel that refuses a message is dropped and closed.

Different performances have different locks and never wait on each other.
"""

import asyncio
import uuid
from collections import Counter
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

import structlog
from fastapi import Request

from stagevote.realtime.channels import OutputChannel, TallySnapshot
from stagevote.services.errors import PerformanceNotFoundError, VotingClosedError
from stagevote.services.vote_store import VoteStore, VoteValue

logger = structlog.get_logger()

TallyPublisher = Callable[[uuid.UUID, dict[str, Any]], Awaitable[None]]


@dataclass(frozen=True)
class Subscription:
    """Handle returned by subscribe(); pass it back to unsubscribe()."""

    id: uuid.UUID
    performance_id: uuid.UUID
    channel: OutputChannel = field(compare=False, repr=False)


@dataclass
class _PerformanceState:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    counts: Optional[Counter] = None
    sequence: int = 0
    subscribers: dict[uuid.UUID, Subscription] = field(default_factory=dict)

    def snapshot(self, performance_id: uuid.UUID, *, closed: bool = False) -> TallySnapshot:
        return TallySnapshot(
            performance_id=performance_id,
            counts=dict(self.counts or {}),
            sequence=self.sequence,
            closed=closed,
        )


class VoteHub:
    """Process-wide registry of live tallies and their subscribers."""

    def __init__(self, store: VoteStore, *, publisher: Optional[TallyPublisher] = None):
        self.store = store
        self._publisher = publisher
        self._performances: dict[uuid.UUID, _PerformanceState] = {}

    # ─── Subscriptions ────────────────────────────────────

    async def subscribe(
        self, performance_id: uuid.UUID, channel: OutputChannel
    ) -> Subscription:
        """Register a live channel and seed it with the current tally.

        Raises PerformanceNotFoundError or VotingClosedError.
        """
        async with self._locked(performance_id) as state:
            performance = await self.store.get_performance(performance_id)
            if not performance.accepting_votes():
                raise VotingClosedError("Voting is not open for this performance")
            await self._ensure_loaded(performance_id, state, performance.options)

            subscription = Subscription(
                id=uuid.uuid4(), performance_id=performance_id, channel=channel
            )
            channel.send(state.snapshot(performance_id))
            state.subscribers[subscription.id] = subscription

        logger.info(
            "hub.subscribed",
            performance_id=str(performance_id),
            subscribers=len(state.subscribers),
        )
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        """Forget a subscription. Safe to call more than once."""
        state = self._performances.get(subscription.performance_id)
        if state is None:
            return
        if state.subscribers.pop(subscription.id, None) is not None:
            logger.info(
                "hub.unsubscribed",
                performance_id=str(subscription.performance_id),
                subscribers=len(state.subscribers),
            )

    def subscriber_count(self, performance_id: Optional[uuid.UUID] = None) -> int:
        if performance_id is not None:
            state = self._performances.get(performance_id)
            return len(state.subscribers) if state else 0
        return sum(len(s.subscribers) for s in self._performances.values())

    # ─── Voting ───────────────────────────────────────────

    async def record_vote(
        self, user_id: str, performance_id: uuid.UUID, value: VoteValue
    ) -> TallySnapshot:
        """Persist a vote, bump the cached tally, broadcast it.

        Raises PerformanceNotFoundError, VotingClosedError,
        InvalidVoteOptionError, DuplicateVoteError or PersistenceError.
        Nothing is broadcast and the tally is untouched on any failure.
        """
        async with self._locked(performance_id) as state:
            performance = await self.store.get_performance(performance_id)
            if not performance.accepting_votes():
                raise VotingClosedError("Voting has ended for this performance")
            option = performance.resolve_option(value)
            await self._ensure_loaded(performance_id, state, performance.options)

            try:
                await self.store.insert_vote(user_id, performance_id, option)
            except asyncio.CancelledError:
                # The row may have committed; reseed from the store next time.
                state.counts = None
                raise

            state.counts[option] += 1
            state.sequence += 1
            tally = state.snapshot(performance_id)
            delivered = self._broadcast(performance_id, state, tally)

        logger.info(
            "hub.vote_recorded",
            performance_id=str(performance_id),
            option=option,
            sequence=tally.sequence,
            delivered=delivered,
        )
        await self._publish(tally)
        return tally

    async def current_tally(self, performance_id: uuid.UUID) -> TallySnapshot:
        async with self._locked(performance_id) as state:
            performance = await self.store.get_performance(performance_id)
            await self._ensure_loaded(performance_id, state, performance.options)
            return state.snapshot(performance_id, closed=not performance.accepting_votes())

    async def open_voting(self, performance_id: uuid.UUID) -> TallySnapshot:
        """Start (or restart) accepting votes and subscribers."""
        async with self._locked(performance_id) as state:
            performance = await self.store.set_voting_enabled(performance_id, True)
            await self._ensure_loaded(performance_id, state, performance.options)
            tally = state.snapshot(performance_id)

        logger.info("hub.voting_opened", performance_id=str(performance_id))
        return tally

    async def close_voting(
        self, performance_id: uuid.UUID, *, reason: str = "closed"
    ) -> TallySnapshot:
        """Stop voting, send every subscriber the final tally, end their streams."""
        async with self._locked(performance_id) as state:
            performance = await self.store.set_voting_enabled(performance_id, False)
            await self._ensure_loaded(performance_id, state, performance.options)
            final = state.snapshot(performance_id, closed=True)
            subscribers = list(state.subscribers.values())
            state.subscribers.clear()
            for subscription in subscribers:
                self._deliver_final(subscription, final)

        logger.info(
            "hub.voting_closed",
            performance_id=str(performance_id),
            reason=reason,
            subscribers=len(subscribers),
            total=final.total,
        )
        return final

    # ─── Lifecycle ────────────────────────────────────────

    async def shutdown(self) -> None:
        """Close every live channel. Called once at server shutdown."""
        closed = 0
        for state in self._performances.values():
            for subscription in state.subscribers.values():
                subscription.channel.close()
                closed += 1
            state.subscribers.clear()
        self._performances.clear()
        logger.info("hub.shutdown", channels_closed=closed)

    # ─── Internals ────────────────────────────────────────

    @asynccontextmanager
    async def _locked(self, performance_id: uuid.UUID) -> AsyncIterator[_PerformanceState]:
        """Hold the performance lock. Unknown performances leave no state behind."""
        while True:
            state = self._performances.get(performance_id)
            if state is None:
                state = self._performances[performance_id] = _PerformanceState()
            async with state.lock:
                if self._performances.get(performance_id) is not state:
                    # Discarded while we waited for the lock
                    continue
                try:
                    yield state
                except PerformanceNotFoundError:
                    idle = not state.subscribers and state.counts is None
                    if idle and self._performances.get(performance_id) is state:
                        del self._performances[performance_id]
                    raise
                return

    async def _ensure_loaded(
        self,
        performance_id: uuid.UUID,
        state: _PerformanceState,
        options: tuple[str, ...],
    ) -> None:
        """Seed the cached tally from the store on first use. Lock must be held."""
        if state.counts is None:
            counts = Counter({option: 0 for option in options})
            counts.update(await self.store.count_votes(performance_id))
            state.counts = counts
            state.sequence = sum(counts.values())

    def _broadcast(
        self,
        performance_id: uuid.UUID,
        state: _PerformanceState,
        tally: TallySnapshot,
    ) -> int:
        """Enqueue a tally on every channel; drop the ones that refuse. Lock must be held."""
        delivered = 0
        for subscription in list(state.subscribers.values()):
            try:
                subscription.channel.send(tally)
                delivered += 1
            except Exception as e:
                state.subscribers.pop(subscription.id, None)
                subscription.channel.close()
                logger.info(
                    "hub.subscriber_dropped",
                    performance_id=str(performance_id),
                    subscription_id=str(subscription.id),
                    error=str(e),
                )
        return delivered

    @staticmethod
    def _deliver_final(subscription: Subscription, final: TallySnapshot) -> None:
        try:
            subscription.channel.send(final)
        except Exception as e:
            logger.info(
                "hub.final_tally_undelivered",
                subscription_id=str(subscription.id),
                error=str(e),
            )
        finally:
            subscription.channel.close()

    async def _publish(self, tally: TallySnapshot) -> None:
        if self._publisher is None:
            return
        try:
            await self._publisher(tally.performance_id, tally.to_dict())
        except Exception as e:
            logger.warning(
                "hub.publish_failed",
                performance_id=str(tally.performance_id),
                error=str(e),
            )


def get_hub(request: Request) -> VoteHub:
    """FastAPI dependency — the hub created by the app lifespan."""
    return request.app.state.hub
