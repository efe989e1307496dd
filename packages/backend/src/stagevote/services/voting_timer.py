"""Voting timer — closes performances whose voting window has run out.

A performance opened with voting_duration_seconds stops accepting votes
the moment the window ends (the hub checks the deadline on every vote).
This worker makes it official: it flips voting_enabled off through the
hub, so subscribers get the final tally and their streams end.

Runs as a background task in the FastAPI lifespan.
"""

import asyncio

import structlog

from stagevote.realtime.hub import VoteHub

logger = structlog.get_logger()


class VotingTimer:
    """Poll for expired voting windows and close them.

    Usage:
        timer = VotingTimer(hub)
        asyncio.create_task(timer.run_loop())
    """

    def __init__(self, hub: VoteHub, poll_interval: float = 5.0):
        self.hub = hub
        self.poll_interval = poll_interval
        self._running = False

    async def run_loop(self) -> None:
        """Main loop — sweep, sleep, repeat until stopped."""
        self._running = True
        logger.info("voting_timer.started", poll_interval=self.poll_interval)

        while self._running:
            try:
                await self.sweep()
            except Exception:
                logger.exception("voting_timer.error")
            await asyncio.sleep(self.poll_interval)

    async def sweep(self) -> int:
        """Close every expired performance. Returns how many were closed."""
        expired = await self.hub.store.list_expired()
        for performance_id in expired:
            await self.hub.close_voting(performance_id, reason="expired")
        return len(expired)

    def stop(self) -> None:
        """Signal the timer to stop."""
        self._running = False
        logger.info("voting_timer.stopping")
