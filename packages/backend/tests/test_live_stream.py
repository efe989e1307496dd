"""Live tally stream tests — GET /events/:performanceId/live (SSE).

ASGITransport hands back the body once the stream ends, so each test
opens the stream in a task, drives votes/close through the hub, and
then parses the collected frames.
"""

import asyncio
import json
import uuid

import pytest


def _frames(text: str) -> list[tuple[str, dict]]:
    out = []
    for block in text.split("\n\n"):
        event, data = None, None
        for line in block.split("\n"):
            if line.startswith("event: "):
                event = line[len("event: "):]
            elif line.startswith("data: "):
                data = json.loads(line[len("data: "):])
        if event:
            out.append((event, data))
    return out


async def _wait_for_subscribers(hub, performance_id, n):
    for _ in range(200):
        if hub.subscriber_count(performance_id) >= n:
            return
        await asyncio.sleep(0.01)
    raise AssertionError(f"expected {n} subscribers")


@pytest.mark.asyncio
async def test_stream_seeds_updates_and_closes(client, hub, open_performance):
    perf = await open_performance(client)
    pid = uuid.UUID(perf["id"])
    await hub.record_vote("early-bird", pid, "no")

    stream = asyncio.create_task(client.get(f"/api/v1/events/{perf['id']}/live"))
    await _wait_for_subscribers(hub, pid, 1)

    await hub.record_vote("u1", pid, True)
    await hub.record_vote("u2", pid, True)
    r = await client.patch(f"/api/v1/performances/{perf['id']}", json={"votingEnabled": False})
    assert r.status_code == 200

    resp = await asyncio.wait_for(stream, timeout=5)
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/event-stream")
    assert resp.headers["Cache-Control"] == "no-cache"
    assert resp.headers["X-Accel-Buffering"] == "no"

    frames = _frames(resp.text)
    assert [e for e, _ in frames] == ["tally", "tally", "tally", "closed"]
    assert frames[0][1]["counts"] == {"yes": 0, "no": 1}
    assert frames[1][1]["counts"] == {"yes": 1, "no": 1}
    assert frames[2][1]["counts"] == {"yes": 2, "no": 1}
    assert frames[3][1]["closed"] is True
    assert [d["sequence"] for _, d in frames] == [1, 2, 3, 3]

    assert hub.subscriber_count(pid) == 0


@pytest.mark.asyncio
async def test_two_viewers_see_the_same_updates(client, hub, open_performance):
    perf = await open_performance(client)
    pid = uuid.UUID(perf["id"])
    url = f"/api/v1/events/{perf['id']}/live"

    a = asyncio.create_task(client.get(url))
    b = asyncio.create_task(client.get(url))
    await _wait_for_subscribers(hub, pid, 2)

    await hub.record_vote("u1", pid, "yes")
    await hub.close_voting(pid)

    ra, rb = await asyncio.wait_for(asyncio.gather(a, b), timeout=5)
    assert _frames(ra.text) == _frames(rb.text)
    assert len(_frames(ra.text)) == 3


@pytest.mark.asyncio
async def test_reconnect_is_reseeded(client, hub, open_performance):
    perf = await open_performance(client)
    pid = uuid.UUID(perf["id"])
    url = f"/api/v1/events/{perf['id']}/live"

    first = asyncio.create_task(client.get(url))
    await _wait_for_subscribers(hub, pid, 1)
    await hub.record_vote("u1", pid, "yes")
    await hub.close_voting(pid)
    await asyncio.wait_for(first, timeout=5)

    await hub.open_voting(pid)
    second = asyncio.create_task(client.get(url))
    await _wait_for_subscribers(hub, pid, 1)
    await hub.close_voting(pid)
    resp = await asyncio.wait_for(second, timeout=5)

    frames = _frames(resp.text)
    assert frames[0][0] == "tally"
    assert frames[0][1]["counts"] == {"yes": 1, "no": 0}


@pytest.mark.asyncio
async def test_stream_on_closed_performance(client):
    r = await client.post("/api/v1/events", json={"name": "Late Show"})
    event = r.json()["data"]
    r = await client.post(f"/api/v1/events/{event['id']}/performances", json={"title": "Finale"})
    perf = r.json()["data"]

    r = await client.get(f"/api/v1/events/{perf['id']}/live")
    assert r.status_code == 400
    assert r.json()["success"] is False


@pytest.mark.asyncio
async def test_stream_unknown_performance(client):
    r = await client.get(f"/api/v1/events/{uuid.uuid4()}/live")
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_stream_rejects_bad_token(client, open_performance):
    perf = await open_performance(client)
    r = await client.get(f"/api/v1/events/{perf['id']}/live", params={"token": "garbage"})
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_stream_accepts_query_token(client, hub, open_performance):
    from stagevote.auth.jwt import create_access_token

    perf = await open_performance(client)
    pid = uuid.UUID(perf["id"])
    token = create_access_token("viewer-1")

    stream = asyncio.create_task(
        client.get(f"/api/v1/events/{perf['id']}/live", params={"token": token})
    )
    await _wait_for_subscribers(hub, pid, 1)
    await hub.close_voting(pid)

    resp = await asyncio.wait_for(stream, timeout=5)
    assert resp.status_code == 200
    assert [e for e, _ in _frames(resp.text)] == ["tally", "closed"]


@pytest.mark.asyncio
async def test_client_disconnect_unsubscribes(client, hub, open_performance):
    """Drive the app over raw ASGI: hang up once the seed frame arrives."""
    from stagevote.auth.jwt import create_access_token
    from stagevote.main import app

    perf = await open_performance(client)
    pid = uuid.UUID(perf["id"])
    path = f"/api/v1/events/{perf['id']}/live"

    first_body = asyncio.Event()
    requested = False
    sent = []

    async def receive():
        nonlocal requested
        if not requested:
            requested = True
            return {"type": "http.request", "body": b"", "more_body": False}
        await first_body.wait()
        return {"type": "http.disconnect"}

    async def send(message):
        sent.append(message)
        if message["type"] == "http.response.body" and message.get("body"):
            first_body.set()

    scope = {
        "type": "http",
        "asgi": {"version": "3.0", "spec_version": "2.3"},
        "http_version": "1.1",
        "method": "GET",
        "scheme": "http",
        "path": path,
        "raw_path": path.encode(),
        "root_path": "",
        "query_string": f"token={create_access_token('viewer-1')}".encode(),
        "headers": [(b"host", b"test")],
        "client": ("127.0.0.1", 50000),
        "server": ("test", 80),
    }

    await asyncio.wait_for(app(scope, receive, send), timeout=5)

    for _ in range(200):
        if hub.subscriber_count(pid) == 0:
            break
        await asyncio.sleep(0.01)
    assert hub.subscriber_count(pid) == 0

    assert sent[0]["type"] == "http.response.start"
    assert sent[0]["status"] == 200
    body = b"".join(m.get("body", b"") for m in sent if m["type"] == "http.response.body")
    assert body.startswith(b"event: tally")

    # Voting carries on for everyone else
    tally = await hub.record_vote("u1", pid, "yes")
    assert tally.counts == {"yes": 1, "no": 0}
