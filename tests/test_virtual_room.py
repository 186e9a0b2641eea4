import json
from datetime import timedelta

import pytest
from django.utils import timezone
from rest_framework.exceptions import PermissionDenied, ValidationError
from rest_framework_simplejwt.tokens import AccessToken

from common.enums import AccessType, MessageSender, SessionStatus
from simulations.models import SimulationAssignment
from simulations.services import attempts as attempt_service
from virtual_room import services
from virtual_room.models import SessionMessage, SessionParticipant, SimulationSession
from virtual_room.state import RECENT_CHEATING_EVENTS, RECENT_MESSAGES, fingerprint, session_state
from virtual_room.tasks import sweep_stale_participants

pytestmark = pytest.mark.django_db


@pytest.fixture
def assignment(make_simulation, group):
    sim = make_simulation(access_type=AccessType.ROOM, is_official=True)
    return SimulationAssignment.objects.create(simulation=sim, group=group)


@pytest.fixture
def session(assignment, admin_user):
    s, _ = services.get_or_create_session(assignment.id, by=admin_user)
    return s


def _join(assignment, student):
    return SessionParticipant.objects.get(pk=services.join_session(assignment.id, student)["participant_id"])


def test_session_is_reused_while_open(assignment, admin_user, session):
    again, created = services.get_or_create_session(assignment.id, by=admin_user)
    assert created is False
    assert again.pk == session.pk


def test_session_requires_room_access(make_simulation, student, admin_user):
    sim = make_simulation()
    a = SimulationAssignment.objects.create(simulation=sim, student=student)
    with pytest.raises(ValidationError):
        services.get_or_create_session(a.id, by=admin_user)


def test_join_assigns_anonymous_ids_and_resets_ready(assignment, session, student, other_student):
    p1 = _join(assignment, student)
    p2 = _join(assignment, other_student)
    assert (p1.anonymous_id, p2.anonymous_id) == ("001", "002")

    services.set_ready(p1)
    p1 = _join(assignment, student)
    assert p1.ready_at is None
    assert p1.is_connected is True


def test_uninvited_student_cannot_join(assignment, session, make_student):
    with pytest.raises(PermissionDenied):
        services.join_session(assignment.id, make_student("stranger"))


def test_start_waits_for_everyone_unless_forced(assignment, session, student, admin_user):
    _join(assignment, student)
    with pytest.raises(ValidationError):
        services.start_session(session.id, admin_user)

    out = services.start_session(session.id, admin_user, force_start=True)
    assert out["participants_started"] == 1
    session.refresh_from_db()
    assert session.status == SessionStatus.STARTED
    with pytest.raises(ValidationError):
        services.start_session(session.id, admin_user, force_start=True)


def test_kicked_student_cannot_rejoin(assignment, session, student):
    p = _join(assignment, student)
    services.kick_participant(p.id)

    with pytest.raises(PermissionDenied):
        services.join_session(assignment.id, student)
    p.refresh_from_db()
    beat = services.heartbeat(p)
    assert beat["is_kicked"] is True
    assert beat["kicked_reason"] == services.DEFAULT_KICK_REASON


def test_heartbeat_records_progress(assignment, session, student):
    p = _join(assignment, student)
    out = services.heartbeat(p, current_question_index=3, answered_count=2)
    p.refresh_from_db()
    assert (p.current_question_index, p.answered_count) == (3, 2)
    assert out["connected_count"] == 1
    assert out["total_participants"] == 2


def test_stale_heartbeat_does_not_count_as_connected(assignment, session, student):
    p = _join(assignment, student)
    SessionParticipant.objects.filter(pk=p.pk).update(last_heartbeat=timezone.now() - timedelta(minutes=5))
    state = session_state(session.id)
    assert state["participants"][0]["is_connected"] is False
    assert state["connected_count"] == 0


def test_messages_sender_side_and_read_marking(assignment, session, student, admin_user):
    p = _join(assignment, student)
    staff_msg = services.send_message(admin_user, p, "  Five minutes left  ")
    services.send_message(student, p, "ok")

    assert staff_msg["sender_type"] == MessageSender.ADMIN
    assert staff_msg["message"] == "Five minutes left"
    assert [m["sender_type"] for m in services.messages_for(p)] == [MessageSender.ADMIN, MessageSender.STUDENT]

    assert services.mark_messages_read(student, p)["updated"] == 1
    assert services.heartbeat(p)["unread_messages"] == []

    with pytest.raises(ValidationError):
        services.send_message(student, p, "   ")
    with pytest.raises(ValidationError):
        services.send_message(student, p, "x" * 1001)


def test_state_fingerprint_ignores_clock_fields(assignment, session, student):
    p = _join(assignment, student)
    before = fingerprint(session_state(session.id))
    services.heartbeat(p)
    assert fingerprint(session_state(session.id)) == before

    services.set_ready(p)
    assert fingerprint(session_state(session.id)) != before


def test_state_includes_messages_only_for_requested_participant(assignment, session, student, admin_user):
    p = _join(assignment, student)
    services.send_message(admin_user, p, "hello")
    assert session_state(session.id)["messages"] is None
    assert [m["message"] for m in session_state(session.id, p.id)["messages"]] == ["hello"]


def test_end_session_purges_messages(assignment, session, student, admin_user):
    p = _join(assignment, student)
    services.send_message(admin_user, p, "hi")
    out = services.end_session(session.id)
    assert out["messages_deleted"] == 1
    p.refresh_from_db()
    assert p.is_connected is False


def test_last_disconnect_of_completed_session_purges_messages(assignment, session, student, other_student,
                                                             admin_user):
    p1 = _join(assignment, student)
    p2 = _join(assignment, other_student)
    services.send_message(admin_user, p1, "a")
    services.send_message(admin_user, p2, "b")
    SimulationSession.objects.filter(pk=session.pk).update(status=SessionStatus.COMPLETED)

    assert services.disconnect_participant(p1.id)["messages_deleted"] == 0
    assert SessionMessage.objects.count() == 2
    assert services.disconnect_participant(p2.id)["messages_deleted"] == 2
    assert SessionMessage.objects.count() == 0


def test_rankings_anonymise_other_students(assignment, session, student, other_student, questions):
    sim = assignment.simulation
    for s, picks in ((student, 1), (other_student, 3)):
        p = _join(assignment, s)
        attempt, _ = attempt_service.start_attempt(sim, s)
        services.link_attempt(p, attempt.id)
        answers = [{"question_id": q.id, "selected_option_id": q.options.get(is_correct=True).id}
                   for q in questions[:picks]]
        attempt_service.submit_attempt(attempt, s, answers=answers)

    out = services.rankings(session.id, student)
    assert out["completed_participants"] == 2
    assert [r["student_name"] for r in out["rankings"]] == ["Student 002", "Anna Rossi"]
    assert out["rankings"][1]["is_current_user"] is True


def test_cheating_events_are_counted(assignment, session, student):
    p = _join(assignment, student)
    services.log_cheating_event(p, "TAB_SWITCH")
    services.log_cheating_event(p, "COPY", metadata={"len": 12})
    row = session_state(session.id)["participants"][0]
    assert row["cheating_events_count"] == 2
    assert row["recent_cheating_events"][0]["event_type"] == "COPY"


def test_state_caps_recent_rows_but_counts_every_unread(assignment, session, student, other_student):
    p = _join(assignment, student)
    _join(assignment, other_student)
    for i in range(RECENT_MESSAGES + 5):
        services.send_message(student, p, f"msg {i}")
    for _ in range(RECENT_CHEATING_EVENTS + 2):
        services.log_cheating_event(p, "TAB_SWITCH")

    state = session_state(session.id, p.id)
    row = next(r for r in state["participants"] if r["id"] == str(p.id))
    assert row["unread_messages_count"] == RECENT_MESSAGES + 5
    assert row["cheating_events_count"] == RECENT_CHEATING_EVENTS + 2
    assert len(row["recent_cheating_events"]) == RECENT_CHEATING_EVENTS
    assert len(state["messages"]) == RECENT_MESSAGES
    assert state["messages"][-1]["message"] == f"msg {RECENT_MESSAGES + 4}"


def test_student_status_without_session(make_simulation, student):
    sim = make_simulation(access_type=AccessType.ROOM)
    a = SimulationAssignment.objects.create(simulation=sim, student=student)
    assert services.student_session_status(a.id, student) == {"has_session": False}


def test_sweep_disconnects_silent_participants(assignment, session, student, other_student):
    stale = _join(assignment, student)
    fresh = _join(assignment, other_student)
    SessionParticipant.objects.filter(pk=stale.pk).update(last_heartbeat=timezone.now() - timedelta(minutes=5))

    assert sweep_stale_participants() == 1
    stale.refresh_from_db()
    fresh.refresh_from_db()
    assert stale.is_connected is False
    assert fresh.is_connected is True


# --- HTTP surface ---

def test_participant_endpoints_are_owner_only(api, assignment, session, student, other_student):
    p = _join(assignment, student)
    resp = api(other_student).post(f"/api/virtual-room/participants/{p.id}/heartbeat/", {}, format="json")
    assert resp.status_code == 403
    ok = api(student).post(f"/api/virtual-room/participants/{p.id}/heartbeat/", {"answered_count": 1},
                           format="json")
    assert ok.status_code == 200


def test_students_cannot_start_sessions(api, session, student):
    resp = api(student).post(f"/api/virtual-room/sessions/{session.id}/start/", {}, format="json")
    assert resp.status_code == 403


def test_beacon_always_answers_200(client, assignment, session, student):
    url = "/virtual-room/disconnect"
    bad_json = client.post(url, data="{oops", content_type="text/plain")
    missing = client.post(url, data="{}", content_type="text/plain")
    malformed = client.post(url, data=json.dumps({"participantId": "nope"}), content_type="text/plain")
    unknown = client.post(url, data=json.dumps({"participantId": "6f1c1f1e-0000-4000-8000-000000000000"}),
                          content_type="text/plain")
    for resp in (bad_json, missing, malformed, unknown):
        assert resp.status_code == 200
        assert resp.json()["success"] is False

    p = _join(assignment, student)
    ok = client.post(url, data=json.dumps({"participantId": str(p.id)}), content_type="text/plain")
    assert ok.status_code == 200
    assert ok.json() == {"success": True, "messages_deleted": 0}


def test_stream_rejects_missing_or_bad_token(client, session):
    assert client.get(f"/virtual-room/{session.id}/stream").status_code == 401
    assert client.get(f"/virtual-room/{session.id}/stream?token=garbage").status_code == 401


def test_stream_rejects_token_of_deactivated_user(client, session, admin_user):
    token = str(AccessToken.for_user(admin_user))
    admin_user.is_active = False
    admin_user.save(update_fields=["is_active"])
    assert client.get(f"/virtual-room/{session.id}/stream?token={token}").status_code == 401


def test_stream_unknown_session_is_404(client, admin_user):
    token = str(AccessToken.for_user(admin_user))
    resp = client.get(f"/virtual-room/6f1c1f1e-0000-4000-8000-000000000000/stream?token={token}")
    assert resp.status_code == 404


def test_stream_forbids_students_outside_the_session(client, session, student):
    token = str(AccessToken.for_user(student))
    assert client.get(f"/virtual-room/{session.id}/stream?token={token}").status_code == 403


def test_stream_response_headers(client, session, admin_user):
    token = str(AccessToken.for_user(admin_user))
    resp = client.get(f"/virtual-room/{session.id}/stream?token={token}")
    assert resp.status_code == 200
    assert resp.streaming is True
    assert resp["Content-Type"].startswith("text/event-stream")
    assert resp["Cache-Control"] == "no-cache, no-transform"
    assert resp["X-Accel-Buffering"] == "no"
