"""
Server-sent event stream for a virtual-room session.

The stream polls the database every refresh interval and pushes a frame
only when something a watcher cares about changed:

    event: init      full snapshot, always first
    event: update    session/participant state changed
    event: message   the requesting participant's messages changed
    : heartbeat      comment line keeping proxies from closing the socket
"""
from __future__ import annotations

import itertools
import logging
import threading
import time
from collections import defaultdict

from django.conf import settings

from common.enums import SessionStatus
from .state import fingerprint, session_state, to_json

logger = logging.getLogger(__name__)


def format_event(event: str, data) -> str:
    return f"event: {event}\ndata: {to_json(data)}\n\n"


def format_comment(text: str) -> str:
    return f": {text}\n\n"


class StreamHandle:
    _ids = itertools.count(1)

    def __init__(self, session_id):
        self.id = next(self._ids)
        self.session_id = str(session_id)
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def close(self):
        self._closed.set()


class StreamRegistry:
    """
    Open streams per session, this process only. Registering past the cap
    closes the oldest stream of that session.
    """

    def __init__(self, max_per_session=None):
        self._max = max_per_session
        self._lock = threading.Lock()
        self._streams = defaultdict(list)

    @property
    def max_per_session(self) -> int:
        return self._max or settings.VIRTUAL_ROOM_MAX_STREAMS_PER_SESSION

    def register(self, session_id) -> StreamHandle:
        handle = StreamHandle(session_id)
        with self._lock:
            streams = self._streams[handle.session_id]
            streams.append(handle)
            while len(streams) > self.max_per_session:
                oldest = streams.pop(0)
                oldest.close()
                logger.info("stream evicted session=%s stream=%s", handle.session_id, oldest.id)
        logger.info("stream connected session=%s stream=%s", handle.session_id, handle.id)
        return handle

    def unregister(self, handle: StreamHandle):
        with self._lock:
            streams = self._streams.get(handle.session_id, [])
            if handle in streams:
                streams.remove(handle)
            if not streams:
                self._streams.pop(handle.session_id, None)
        handle.close()
        logger.info("stream disconnected session=%s stream=%s", handle.session_id, handle.id)

    def count(self, session_id) -> int:
        with self._lock:
            return len(self._streams.get(str(session_id), []))


registry = StreamRegistry()


def event_stream(session_id, participant_id=None, handle=None, *, reg=None,
                 clock=time.monotonic, sleep=time.sleep, state_fn=session_state,
                 refresh=None, keepalive=None, max_seconds=None):
    reg = reg or registry
    handle = handle or reg.register(session_id)
    refresh = refresh if refresh is not None else settings.VIRTUAL_ROOM_STREAM_REFRESH_SECONDS
    keepalive = keepalive if keepalive is not None else settings.VIRTUAL_ROOM_STREAM_KEEPALIVE_SECONDS
    max_seconds = max_seconds if max_seconds is not None else settings.VIRTUAL_ROOM_STREAM_MAX_SECONDS

    try:
        state = state_fn(session_id, participant_id)
        if state is None:
            return
        yield format_event("init", state)
        if state["session"]["status"] == SessionStatus.COMPLETED:
            return

        last_state = fingerprint(state)
        last_messages = fingerprint(state, "messages")
        started = last_ping = clock()

        while not handle.closed:
            sleep(refresh)
            now = clock()
            if handle.closed or now - started >= max_seconds:
                break

            state = state_fn(session_id, participant_id)
            if state is None:
                break

            fp = fingerprint(state)
            if fp != last_state:
                last_state = fp
                yield format_event("update", state)

            if participant_id is not None:
                mfp = fingerprint(state, "messages")
                if mfp != last_messages:
                    last_messages = mfp
                    yield format_event("message", {"messages": state["messages"]})

            # the status flip itself was pushed as an update above
            if state["session"]["status"] == SessionStatus.COMPLETED:
                break

            if now - last_ping >= keepalive:
                last_ping = now
                yield format_comment("heartbeat")
    finally:
        reg.unregister(handle)
