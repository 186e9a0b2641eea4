"""
Client side of the room event stream: an SSE wire parser and a connection
manager that reconnects with exponential backoff.

``transport.open(url, on_open, on_message, on_error)`` opens an event source
and returns an object with ``close()``. ``on_message(event, data)`` gets the
event name and raw data string; ``on_error(permanent)`` tells whether the
source closed for good (no reconnect) or dropped.

``scheduler.call_later(delay, fn)`` returns a handle with ``cancel()``.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Callable, Iterable, Iterator, Optional

logger = logging.getLogger(__name__)

CONNECTING = "connecting"
OPEN = "open"
RECONNECTING = "reconnecting"
CLOSED = "closed"


@dataclass(frozen=True)
class SSEEvent:
    event: str
    data: str
    id: Optional[str] = None

    def json(self):
        return json.loads(self.data) if self.data else None


def parse_sse(lines: Iterable[str], include_comments: bool = False) -> Iterator[SSEEvent]:
    """
    Parses text/event-stream lines (without trailing newlines). A blank line
    dispatches the pending event; ``:`` lines are comments. Unknown fields
    are ignored.
    """
    event, data, last_id = None, [], None
    for raw in lines:
        line = raw.rstrip("\r\n")
        if line == "":
            if data or event:
                yield SSEEvent(event or "message", "\n".join(data), last_id)
            event, data = None, []
            continue
        if line.startswith(":"):
            if include_comments:
                yield SSEEvent("comment", line[1:].strip())
            continue

        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "event":
            event = value
        elif name == "data":
            data.append(value)
        elif name == "id":
            last_id = value

    if data or event:
        yield SSEEvent(event or "message", "\n".join(data), last_id)


def iter_lines(chunks: Iterable) -> Iterator[str]:
    """Splits streamed bytes/str chunks into lines."""
    buf = ""
    for chunk in chunks:
        buf += chunk.decode("utf-8") if isinstance(chunk, (bytes, bytearray)) else chunk
        while "\n" in buf:
            line, buf = buf.split("\n", 1)
            yield line
    if buf:
        yield buf


class RoomConnection:
    def __init__(self, url: str, transport, scheduler, on_event: Optional[Callable] = None,
                 on_status: Optional[Callable[[str], None]] = None,
                 base_delay: float = 1.0, max_delay: float = 30.0):
        self.url = url
        self.transport = transport
        self.scheduler = scheduler
        self.on_event = on_event
        self.on_status = on_status
        self.base_delay = base_delay
        self.max_delay = max_delay

        self.status = CLOSED
        self.attempts = 0
        self._source = None
        self._pending = None
        self._closed_by_user = False

    def backoff(self, attempt: int) -> float:
        return min(self.base_delay * (2 ** attempt), self.max_delay)

    def _set_status(self, status: str):
        self.status = status
        if self.on_status:
            self.on_status(status)

    def _cancel_pending(self):
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None

    def _close_source(self):
        if self._source is not None:
            self._source.close()
            self._source = None

    def connect(self):
        self._closed_by_user = False
        self._cancel_pending()
        self._close_source()
        self._set_status(CONNECTING)
        self._source = self.transport.open(self.url, self._handle_open, self._handle_message, self._handle_error)
        return self

    def _reconnect(self):
        self._pending = None
        if self._closed_by_user:
            return
        self.connect()

    def _handle_open(self):
        self.attempts = 0
        self._set_status(OPEN)

    def _handle_message(self, event: str, data: str):
        if self.on_event:
            self.on_event(SSEEvent(event, data))

    def _handle_error(self, permanent: bool = False):
        self._close_source()
        if self._closed_by_user or permanent:
            self._set_status(CLOSED)
            return
        delay = self.backoff(self.attempts)
        self.attempts += 1
        logger.info("room stream dropped, reconnecting in %ss (attempt %s)", delay, self.attempts)
        self._set_status(RECONNECTING)
        self._cancel_pending()
        self._pending = self.scheduler.call_later(delay, self._reconnect)

    def close(self):
        self._closed_by_user = True
        self._cancel_pending()
        self._close_source()
        self._set_status(CLOSED)
