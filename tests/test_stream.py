import json

from virtual_room.stream import StreamRegistry, event_stream, format_comment, format_event


class TickingClock:
    def __init__(self, step=1.0):
        self.now = 0.0
        self.step = step

    def __call__(self):
        self.now += self.step
        return self.now


def _state(status="WAITING", connected=False, remaining=600, messages=None):
    return {
        "session": {"id": "s1", "status": status},
        "participants": [{"id": "p1", "is_connected": connected, "last_heartbeat": f"t{remaining}"}],
        "time_remaining": remaining,
        "messages": messages,
    }


def _feed(*states):
    it = iter(states)
    return lambda session_id, participant_id=None: next(it)


def _run(states, participant_id=None, reg=None, **kw):
    kw.setdefault("refresh", 1)
    kw.setdefault("keepalive", 1000)
    kw.setdefault("max_seconds", 1000)
    reg = reg or StreamRegistry(max_per_session=5)
    frames = list(event_stream(
        "s1", participant_id, reg=reg, clock=TickingClock(), sleep=lambda s: None,
        state_fn=_feed(*states), **kw
    ))
    return frames, reg


def _events(frames):
    return [f.split("\n", 1)[0].replace("event: ", "") for f in frames if f.startswith("event:")]


def test_init_first_then_updates_only_on_real_change():
    frames, reg = _run([
        _state(remaining=600),
        _state(remaining=599),                  # clock only
        _state(connected=True, remaining=598),  # participant connected
        _state(status="COMPLETED", connected=True, remaining=0),
    ])

    assert _events(frames) == ["init", "update", "update"]
    last = json.loads(frames[-1].split("data: ", 1)[1])
    assert last["session"]["status"] == "COMPLETED"
    assert reg.count("s1") == 0


def test_completion_is_pushed_then_stream_closes():
    frames, _ = _run([
        _state(status="STARTED"),
        _state(status="STARTED"),
        _state(status="COMPLETED"),
    ])
    assert _events(frames) == ["init", "update"]


def test_already_completed_session_sends_only_init():
    frames, _ = _run([_state(status="COMPLETED")])
    assert _events(frames) == ["init"]


def test_missing_session_yields_nothing():
    frames, _ = _run([None])
    assert frames == []


def test_message_frames_only_for_the_requesting_participant():
    msg = [{"id": 1, "message": "hi"}]
    states = [_state(), _state(messages=msg), _state(status="COMPLETED", messages=msg)]

    with_participant, _ = _run(states, participant_id="p1")
    assert _events(with_participant) == ["init", "message", "update"]

    without, _ = _run(states)
    assert _events(without) == ["init", "update"]


def test_keepalive_comment_when_quiet():
    frames, _ = _run([_state()] * 5 + [_state(status="COMPLETED")], keepalive=2)
    assert format_comment("heartbeat") in frames


def test_stream_stops_after_max_duration():
    frames, reg = _run([_state()] * 50, max_seconds=5)
    assert _events(frames) == ["init"]
    assert reg.count("s1") == 0


def test_registry_evicts_oldest_stream_over_cap():
    reg = StreamRegistry(max_per_session=2)
    first = reg.register("s1")
    second = reg.register("s1")
    third = reg.register("s1")

    assert first.closed is True
    assert not second.closed and not third.closed
    assert reg.count("s1") == 2
    assert reg.count("other") == 0


def test_evicted_stream_ends_after_init():
    reg = StreamRegistry(max_per_session=1)
    handle = reg.register("s1")
    reg.register("s1")

    frames = list(event_stream("s1", handle=handle, reg=reg, clock=TickingClock(), sleep=lambda s: None,
                               state_fn=_feed(_state(), _state(connected=True)), refresh=1, keepalive=100,
                               max_seconds=100))
    assert _events(frames) == ["init"]


def test_format_event_is_sse_frame():
    assert format_event("init", {"a": 1}) == 'event: init\ndata: {"a":1}\n\n'
