"""StageVote CLI — run the server, manage voting, watch tallies live.

Usage:
    stagevote serve                               # Run the API with uvicorn
    stagevote token --user-id alice --admin       # Mint a dev token (shared secret)
    stagevote events                              # List events
    stagevote open <performance-id>               # Start accepting votes
    stagevote close <performance-id>              # End voting, notify live viewers
    stagevote vote <performance-id> yes           # Cast a vote
    stagevote tally <performance-id>              # Current tally
    stagevote watch <performance-id>              # Follow the live stream
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import os
import sys
from typing import AsyncIterator, Optional

import click
import httpx

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

DEFAULT_API_URL = "http://localhost:8000"


def _api_url() -> str:
    return os.environ.get("STAGEVOTE_API_URL", DEFAULT_API_URL).rstrip("/")


def _client(token: Optional[str] = None) -> httpx.AsyncClient:
    """Build an async HTTP client pointed at the StageVote backend."""
    token = token or os.environ.get("STAGEVOTE_TOKEN")
    headers = {"Authorization": f"Bearer {token}"} if token else {}
    return httpx.AsyncClient(base_url=_api_url(), headers=headers, timeout=30.0)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    """Run an async coroutine from a synchronous Click handler.

    Offloads to a thread when a loop is already running (e.g. CliRunner
    invoked from an async test).
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


def _data(r: httpx.Response):
    """Unwrap the response envelope, or print its message and exit."""
    try:
        body = r.json()
    except ValueError:
        body = {}
    if r.is_error or not body.get("success", False):
        message = body.get("message") or f"HTTP {r.status_code}"
        click.secho(f"Error: {message}", fg="red", err=True)
        sys.exit(1)
    return body["data"]


def _parse_vote_value(value: str) -> bool | str:
    lowered = value.lower()
    if lowered in ("true", "false"):
        return lowered == "true"
    return value


def _print_tally(tally: dict) -> None:
    counts = tally.get("counts", {})
    total = tally.get("total", 0)
    parts = []
    for option, count in counts.items():
        pct = (count / total * 100) if total else 0.0
        parts.append(f"{option}={count} ({pct:.0f}%)")
    state = click.style("closed", fg="red") if tally.get("closed") else click.style("open", fg="green")
    click.echo(f"#{tally.get('sequence', 0):<5d} {state}  total={total}  " + "  ".join(parts))


async def _sse_events(lines: AsyncIterator[str]) -> AsyncIterator[tuple[str, str]]:
    """Group raw SSE lines into (event, data) pairs. Comments are skipped."""
    event, data = "message", []
    async for line in lines:
        if not line:
            if data:
                yield event, "\n".join(data)
            event, data = "message", []
        elif line.startswith(":"):
            continue
        elif line.startswith("event:"):
            event = line[6:].strip()
        elif line.startswith("data:"):
            data.append(line[5:].strip())


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version="0.1.0", prog_name="stagevote")
def main():
    """StageVote — live audience voting for society events."""


@main.command()
@click.option("--host", default=None, help="Bind address (default from settings)")
@click.option("--port", default=None, type=int, help="Port (default from settings)")
@click.option("--reload", is_flag=True, help="Auto-reload on code changes")
def serve(host: Optional[str], port: Optional[int], reload: bool):
    """Run the API server."""
    import uvicorn

    from stagevote.config import settings

    uvicorn.run(
        "stagevote.main:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
    )


@main.command()
@click.option("--user-id", "-u", required=True, help="Subject to put in the token")
@click.option("--admin", is_flag=True, help="Grant the admin role")
@click.option("--minutes", default=None, type=int, help="Lifetime in minutes")
def token(user_id: str, admin: bool, minutes: Optional[int]):
    """Mint an access token signed with STAGEVOTE_JWT_SECRET (development only)."""
    from stagevote.auth.jwt import create_access_token

    click.echo(create_access_token(user_id, role="admin" if admin else "member",
                                   expires_minutes=minutes))


@main.command()
def events():
    """List events."""
    _run(_events_impl())


async def _events_impl():
    async with _client() as c:
        events = _data(await c.get("/api/v1/events"))

    if not events:
        click.echo("No events found.")
        return
    click.secho(f"Events ({len(events)}):", bold=True)
    for e in events:
        when = e.get("startsAt") or "—"
        click.echo(f"  {e['id']}  {e['name'][:40]:40s}  {when}")


@main.command(name="open")
@click.argument("performance_id")
def open_voting(performance_id: str):
    """Open voting on a performance."""
    _run(_toggle_impl(performance_id, True))


@main.command(name="close")
@click.argument("performance_id")
def close_voting(performance_id: str):
    """Close voting on a performance and end every live stream."""
    _run(_toggle_impl(performance_id, False))


async def _toggle_impl(performance_id: str, enabled: bool):
    async with _client() as c:
        performance = _data(await c.patch(
            f"/api/v1/performances/{performance_id}",
            json={"votingEnabled": enabled},
        ))
    state = click.style("open", fg="green") if performance["votingEnabled"] else click.style("closed", fg="red")
    click.echo(f"{performance['title']}: voting {state}")


@main.command()
@click.argument("performance_id")
@click.argument("value")
def vote(performance_id: str, value: str):
    """Cast a vote (yes/no/true/false or any option name)."""
    _run(_vote_impl(performance_id, value))


async def _vote_impl(performance_id: str, value: str):
    async with _client() as c:
        tally = _data(await c.post(
            "/api/v1/vote",
            json={"performanceId": performance_id, "value": _parse_vote_value(value)},
        ))
    click.secho("Vote recorded.", fg="green")
    _print_tally(tally)


@main.command()
@click.argument("performance_id")
@click.option("--json", "as_json", is_flag=True, help="Print raw JSON")
def tally(performance_id: str, as_json: bool):
    """Show the current tally."""
    _run(_tally_impl(performance_id, as_json))


async def _tally_impl(performance_id: str, as_json: bool):
    async with _client() as c:
        data = _data(await c.get(f"/api/v1/performances/{performance_id}/tally"))
    if as_json:
        click.echo(json.dumps(data, indent=2))
    else:
        _print_tally(data)


@main.command()
@click.argument("performance_id")
def watch(performance_id: str):
    """Follow a performance's live tally until voting closes."""
    _run(_watch_impl(performance_id))


async def _watch_impl(performance_id: str):
    async with _client() as c:
        url = f"/api/v1/events/{performance_id}/live"
        async with c.stream("GET", url, timeout=None) as r:
            if r.is_error:
                await r.aread()
                _data(r)
            async for event, data in _sse_events(r.aiter_lines()):
                _print_tally(json.loads(data))
                if event == "closed":
                    click.secho("Voting closed.", bold=True)
                    return
    click.secho("Stream ended.", fg="yellow")
