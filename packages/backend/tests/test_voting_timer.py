"""Voting timer — expired windows are closed through the hub."""

import asyncio
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from stagevote.services.errors import VotingClosedError
from stagevote.services.voting_timer import VotingTimer


@pytest.mark.asyncio
async def test_sweep_closes_expired_and_notifies(memory_hub, memory_store, make_channel):
    expired = memory_store.add_performance(
        closes_at=datetime.now(timezone.utc) + timedelta(milliseconds=50)
    )
    running = memory_store.add_performance()
    viewer = make_channel()
    await memory_hub.subscribe(expired, viewer)

    await asyncio.sleep(0.1)
    timer = VotingTimer(memory_hub)
    assert await timer.sweep() == 1

    assert viewer.closed is True
    assert viewer.messages[-1].closed is True
    assert memory_store.performances[expired].voting_enabled is False
    assert memory_store.performances[running].voting_enabled is True

    assert await timer.sweep() == 0


@pytest.mark.asyncio
async def test_vote_after_deadline_rejected_before_sweep(memory_hub, memory_store):
    pid = memory_store.add_performance(
        closes_at=datetime.now(timezone.utc) - timedelta(seconds=1)
    )
    with pytest.raises(VotingClosedError):
        await memory_hub.record_vote("u1", pid, "yes")


@pytest.mark.asyncio
async def test_run_loop_survives_errors_and_stops(memory_hub):
    calls = []

    class ExplodingTimer(VotingTimer):
        async def sweep(self):
            calls.append(1)
            raise RuntimeError("db down")

    timer = ExplodingTimer(memory_hub, poll_interval=0.01)
    task = asyncio.create_task(timer.run_loop())
    await asyncio.sleep(0.05)
    timer.stop()
    await asyncio.wait_for(task, timeout=1)

    assert len(calls) >= 2


@pytest.mark.asyncio
async def test_sweep_against_database(client, hub, open_performance):
    """End to end: a timed performance opened long ago gets closed."""
    perf = await open_performance(client, duration=30)
    pid = uuid.UUID(perf["id"])
    await hub.store.set_voting_enabled(
        pid, True, at=datetime.now(timezone.utc) - timedelta(minutes=1)
    )

    assert await VotingTimer(hub).sweep() == 1

    r = await client.get(f"/api/v1/performances/{perf['id']}")
    assert r.json()["data"]["votingEnabled"] is False
