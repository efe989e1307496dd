"""Output channels — where the hub pushes tally updates.

The hub only knows the OutputChannel protocol: send(tally) and close().
send() never blocks; it buffers and raises ChannelWriteFailure when the
subscriber is gone or too far behind. The network write happens later,
in the streaming response task that drains the buffer.

QueueChannel is the SSE implementation: an asyncio.Queue drained by
frames(), which also emits keep-alive comments while idle so proxies
and dead TCP peers are noticed.
"""

import asyncio
import json
import uuid
from dataclasses import dataclass, field
from typing import AsyncIterator, Optional, Protocol

from stagevote.services.errors import ChannelWriteFailure


@dataclass(frozen=True)
class TallySnapshot:
    """One tally message — what every subscriber receives.

    sequence increases by one per committed vote on the performance,
    so a client can tell the order of updates. closed marks the terminal
    message sent when voting ends.
    """

    performance_id: uuid.UUID
    counts: dict[str, int] = field(default_factory=dict)
    sequence: int = 0
    closed: bool = False

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    def to_dict(self) -> dict:
        return {
            "performanceId": str(self.performance_id),
            "counts": dict(self.counts),
            "total": self.total,
            "sequence": self.sequence,
            "closed": self.closed,
        }


class OutputChannel(Protocol):
    def send(self, tally: TallySnapshot) -> None: ...

    def close(self) -> None: ...


_CLOSE = object()


def encode_sse(tally: TallySnapshot) -> str:
    """Render one tally as an SSE frame."""
    event = "closed" if tally.closed else "tally"
    data = json.dumps(tally.to_dict(), separators=(",", ":"))
    return f"event: {event}\nid: {tally.sequence}\ndata: {data}\n\n"


KEEPALIVE_FRAME = ": keep-alive\n\n"


class QueueChannel:
    """Buffered per-subscriber channel drained by a streaming response."""

    def __init__(self, maxsize: int = 32):
        self.maxsize = maxsize
        # Unbounded queue; the limit is enforced in send() so close() always fits.
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def send(self, tally: TallySnapshot) -> None:
        if self._closed:
            raise ChannelWriteFailure("channel is closed")
        if self._queue.qsize() >= self.maxsize:
            raise ChannelWriteFailure(
                f"subscriber is {self.maxsize} messages behind"
            )
        self._queue.put_nowait(tally)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSE)

    async def frames(
        self, keepalive_seconds: Optional[float] = None
    ) -> AsyncIterator[str]:
        """Yield SSE frames until the channel is closed."""
        while True:
            try:
                item = await asyncio.wait_for(self._queue.get(), timeout=keepalive_seconds)
            except asyncio.TimeoutError:
                yield KEEPALIVE_FRAME
                continue
            if item is _CLOSE:
                return
            yield encode_sse(item)
