"""Test fixtures — a throwaway SQLite database per test, plus fakes for the hub.

Testing pattern for async SQLAlchemy + FastAPI:

1. Each test gets its own database file (tmp_path) and engine, with the
   schema created from the ORM metadata. NullPool gives every session its
   own connection, the way the real pool does.
2. The app's get_db is overridden to use that engine, and a VoteHub wired
   to the same database is put on app.state (the lifespan doesn't run
   under ASGITransport).
3. Hub property tests use MemoryVoteStore + RecordingChannel instead,
   so they can inject persistence failures, dead channels and slow writes.
"""

import asyncio
import dataclasses
import uuid
from collections import Counter
from datetime import datetime, timezone
from typing import Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from stagevote.auth.jwt import create_access_token
from stagevote.db.engine import create_schema, get_db
from stagevote.main import app
from stagevote.realtime.hub import VoteHub
from stagevote.services.errors import (
    ChannelWriteFailure,
    DuplicateVoteError,
    PerformanceNotFoundError,
    PersistenceError,
)
from stagevote.services.vote_store import PerformanceInfo, VoteStore

ADMIN_ID = "committee-admin"


# ─── Database ────────────────────────────────────────────


@pytest_asyncio.fixture()
async def engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'stagevote.db'}",
        poolclass=NullPool,
    )
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture()
async def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture()
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture()
async def hub(session_factory):
    hub = VoteHub(VoteStore(session_factory))
    yield hub
    await hub.shutdown()


# ─── HTTP clients ────────────────────────────────────────


def _install(session_factory, hub):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.state.hub = hub


def _uninstall():
    app.dependency_overrides.clear()
    if hasattr(app.state, "hub"):
        del app.state.hub


@pytest_asyncio.fixture()
async def client(session_factory, hub):
    """HTTP client acting as a committee admin.

    Sends a real admin token on every request, so it can share the app
    with `unauthenticated_client` in the same test without leaking auth.
    """
    _install(session_factory, hub)

    token = create_access_token(ADMIN_ID, role="admin")
    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
        headers={"Authorization": f"Bearer {token}"},
    ) as ac:
        yield ac

    _uninstall()


@pytest_asyncio.fixture()
async def unauthenticated_client(session_factory, hub):
    """HTTP client with no default token; pass auth_headers per request.

    Shares the database and hub with `client`, so a test can set up
    with the admin client and vote as different users here.
    """
    _install(session_factory, hub)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    _uninstall()


@pytest.fixture()
def auth_headers():
    """Build Authorization headers for a user id (and optional role)."""
    def _headers(user_id: str, role: str = "member") -> dict:
        return {"Authorization": f"Bearer {create_access_token(user_id, role=role)}"}
    return _headers


async def create_open_performance(client, options=None, duration=None) -> dict:
    """Create event → performance → open voting; return the performance."""
    r = await client.post("/api/v1/events", json={"name": "Spring Showcase"})
    assert r.status_code == 201
    event = r.json()["data"]

    body: dict = {"title": "Acoustic Set", "performer": "The Quads"}
    if options is not None:
        body["options"] = options
    if duration is not None:
        body["votingDurationSeconds"] = duration
    r = await client.post(f"/api/v1/events/{event['id']}/performances", json=body)
    assert r.status_code == 201
    performance = r.json()["data"]

    r = await client.patch(
        f"/api/v1/performances/{performance['id']}", json={"votingEnabled": True}
    )
    assert r.status_code == 200
    return r.json()["data"]


@pytest.fixture()
def open_performance():
    return create_open_performance


# ─── Hub fakes ───────────────────────────────────────────


class MemoryVoteStore:
    """In-memory stand-in for VoteStore with failure injection."""

    def __init__(self):
        self.performances: dict[uuid.UUID, PerformanceInfo] = {}
        self.votes: dict[tuple[str, uuid.UUID], str] = {}
        self.fail_next_insert = False
        self.insert_delay = 0.0
        self.count_calls = 0

    def add_performance(
        self,
        options=("yes", "no"),
        enabled: bool = True,
        closes_at: Optional[datetime] = None,
    ) -> uuid.UUID:
        pid = uuid.uuid4()
        self.performances[pid] = PerformanceInfo(
            id=pid, options=tuple(options), voting_enabled=enabled, voting_closes_at=closes_at
        )
        return pid

    def committed(self, performance_id: uuid.UUID) -> dict[str, int]:
        return dict(Counter(o for (_, pid), o in self.votes.items() if pid == performance_id))

    async def get_performance(self, performance_id):
        await asyncio.sleep(0)
        try:
            return self.performances[performance_id]
        except KeyError:
            raise PerformanceNotFoundError(f"Performance {performance_id} not found")

    async def insert_vote(self, user_id, performance_id, option):
        await asyncio.sleep(self.insert_delay)
        if self.fail_next_insert:
            self.fail_next_insert = False
            raise PersistenceError("Could not record vote")
        if (user_id, performance_id) in self.votes:
            raise DuplicateVoteError("You have already voted for this performance")
        self.votes[(user_id, performance_id)] = option

    async def count_votes(self, performance_id):
        self.count_calls += 1
        return self.committed(performance_id)

    async def set_voting_enabled(self, performance_id, enabled, *, at=None):
        info = await self.get_performance(performance_id)
        info = dataclasses.replace(info, voting_enabled=enabled)
        self.performances[performance_id] = info
        return info

    async def list_expired(self, now=None):
        now = now or datetime.now(timezone.utc)
        return [
            pid for pid, info in self.performances.items()
            if info.voting_enabled and info.voting_closes_at and info.voting_closes_at <= now
        ]


class RecordingChannel:
    """Output channel that remembers what it was sent."""

    def __init__(self, fail: bool = False):
        self.messages = []
        self.closed = False
        self.fail = fail

    def send(self, tally):
        if self.fail or self.closed:
            raise ChannelWriteFailure("connection reset")
        self.messages.append(tally)

    def close(self):
        self.closed = True


@pytest.fixture()
def memory_store():
    return MemoryVoteStore()


@pytest_asyncio.fixture()
async def memory_hub(memory_store):
    hub = VoteHub(memory_store)
    yield hub
    await hub.shutdown()


@pytest.fixture()
def make_channel():
    return RecordingChannel
