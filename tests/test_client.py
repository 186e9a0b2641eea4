from virtual_room.client import CLOSED, OPEN, RECONNECTING, RoomConnection, iter_lines, parse_sse


class FakeSource:
    def __init__(self, callbacks):
        self.callbacks = callbacks
        self.closed = False

    def close(self):
        self.closed = True


class FakeTransport:
    def __init__(self):
        self.sources = []

    def open(self, url, on_open, on_message, on_error):
        src = FakeSource({"open": on_open, "message": on_message, "error": on_error})
        self.sources.append(src)
        return src

    @property
    def last(self):
        return self.sources[-1].callbacks


class FakeScheduler:
    def __init__(self):
        self.calls = []

    def call_later(self, delay, fn):
        handle = _Handle(delay, fn)
        self.calls.append(handle)
        return handle


class _Handle:
    def __init__(self, delay, fn):
        self.delay = delay
        self.fn = fn
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


def _conn(**kw):
    transport, scheduler = FakeTransport(), FakeScheduler()
    conn = RoomConnection("/virtual-room/s/stream", transport, scheduler, **kw)
    return conn, transport, scheduler


def test_backoff_doubles_and_caps_at_thirty_seconds():
    conn, transport, scheduler = _conn()
    conn.connect()
    for _ in range(7):
        transport.last["error"](False)
        scheduler.calls[-1].fn()

    assert [h.delay for h in scheduler.calls] == [1, 2, 4, 8, 16, 30, 30]


def test_successful_open_resets_backoff():
    conn, transport, scheduler = _conn()
    conn.connect()
    transport.last["error"](False)
    scheduler.calls[-1].fn()
    transport.last["open"]()
    assert conn.status == OPEN

    transport.last["error"](False)
    assert scheduler.calls[-1].delay == 1


def test_permanent_close_does_not_reconnect():
    conn, transport, scheduler = _conn()
    conn.connect()
    transport.last["error"](True)
    assert conn.status == CLOSED
    assert scheduler.calls == []


def test_close_cancels_pending_reconnect():
    statuses = []
    conn, transport, scheduler = _conn(on_status=statuses.append)
    conn.connect()
    transport.last["error"](False)
    assert conn.status == RECONNECTING

    conn.close()
    assert scheduler.calls[0].cancelled is True
    scheduler.calls[0].fn()
    assert len(transport.sources) == 1
    assert statuses[-1] == CLOSED


def test_messages_are_forwarded_as_events():
    events = []
    conn, transport, _ = _conn(on_event=events.append)
    conn.connect()
    transport.last["message"]("update", '{"a": 1}')
    assert events[0].event == "update"
    assert events[0].json() == {"a": 1}


def test_parse_sse_frames_and_comments():
    raw = [b"event: init\ndata: {\"x\": 1}\n\n", b": heartbeat\n\n", b"data: line1\ndata: line2\n\n"]
    lines = list(iter_lines(raw))

    events = list(parse_sse(lines))
    assert [(e.event, e.data) for e in events] == [("init", '{"x": 1}'), ("message", "line1\nline2")]

    with_comments = list(parse_sse(lines, include_comments=True))
    assert with_comments[1].event == "comment"
    assert with_comments[1].data == "heartbeat"
