"""
Read model for a virtual-room session, shared by the staff RPCs and the
event stream.
"""
from __future__ import annotations

import json
from datetime import timedelta

from django.conf import settings
from django.core.serializers.json import DjangoJSONEncoder
from django.db.models import Count, Prefetch, Q
from django.utils import timezone

from common.enums import MessageSender, SessionStatus
from .models import CheatingEvent, SessionMessage, SessionParticipant, SimulationSession

RECENT_CHEATING_EVENTS = 10
RECENT_MESSAGES = 20

# fields that change on every poll without meaning anything to watchers
VOLATILE_KEYS = ("time_remaining", "last_heartbeat", "generated_at")


def heartbeat_timeout() -> timedelta:
    return timedelta(seconds=settings.VIRTUAL_ROOM_HEARTBEAT_TIMEOUT_SECONDS)


def is_really_connected(participant, now=None) -> bool:
    """Connected flag alone is not trusted; the heartbeat must be fresh too."""
    if not participant.is_connected or participant.last_heartbeat is None:
        return False
    now = now or timezone.now()
    return now - participant.last_heartbeat < heartbeat_timeout()


def connected_participants(session, now=None) -> list:
    now = now or timezone.now()
    return [p for p in session.participants.filter(is_connected=True) if is_really_connected(p, now)]


def invited_students(session) -> list:
    return sorted(session.assignment.target_students(), key=lambda s: (s.name.lower(), s.pk))


def time_remaining(session, now=None):
    if session.status != SessionStatus.STARTED or not session.actual_start_at:
        return None
    now = now or timezone.now()
    total = session.simulation.duration_seconds
    return max(0, int(total - (now - session.actual_start_at).total_seconds()))


def message_dict(m) -> dict:
    return {
        "id": m.id,
        "participant_id": str(m.participant_id),
        "sender_type": m.sender_type,
        "message": m.message,
        "is_read": m.is_read,
        "read_at": m.read_at,
        "created_at": m.created_at,
    }


def _recent_messages(participant) -> list:
    # newest first from the prefetch; the wire order is oldest first
    return list(reversed(participant.recent_messages))


def session_state(session_id, participant_id=None, now=None):
    """
    Full snapshot of a session, or None when it does not exist. When
    ``participant_id`` is given, that participant's recent messages are
    included under ``messages``.
    """
    now = now or timezone.now()
    session = (
        SimulationSession.objects
        .select_related("simulation", "assignment", "assignment__student", "assignment__group")
        .filter(pk=session_id)
        .first()
    )
    if session is None:
        return None

    participants = (
        SessionParticipant.objects
        .filter(session=session)
        .select_related("student", "attempt")
        .annotate(
            cheating_count=Count("cheating_events", distinct=True),
            unread_count=Count(
                "messages", distinct=True,
                filter=Q(messages__sender_type=MessageSender.STUDENT, messages__is_read=False),
            ),
        )
        .prefetch_related(
            # sliced prefetches are limited per participant in SQL
            Prefetch(
                "cheating_events",
                queryset=CheatingEvent.objects.order_by("-created_at", "-id")[:RECENT_CHEATING_EVENTS],
                to_attr="recent_events",
            ),
            Prefetch(
                "messages",
                queryset=SessionMessage.objects.order_by("-created_at", "-id")[:RECENT_MESSAGES],
                to_attr="recent_messages",
            ),
        )
        .order_by("joined_at")
    )

    rows = []
    messages = None
    for p in participants:
        recent = _recent_messages(p)
        attempt = p.attempt
        rows.append({
            "id": str(p.id),
            "student_id": p.student_id,
            "student_name": p.student.name,
            "anonymous_id": p.anonymous_id,
            "is_connected": is_really_connected(p, now),
            "is_ready": p.ready_at is not None,
            "ready_at": p.ready_at,
            "last_heartbeat": p.last_heartbeat,
            "joined_at": p.joined_at,
            "started_at": p.started_at,
            "completed_at": p.completed_at,
            "current_question_index": p.current_question_index,
            "answered_count": p.answered_count,
            "cheating_events_count": p.cheating_count,
            "recent_cheating_events": [
                {"id": e.id, "event_type": e.event_type, "created_at": e.created_at}
                for e in p.recent_events
            ],
            "unread_messages_count": p.unread_count,
            "is_kicked": p.is_kicked,
            "kicked_reason": p.kicked_reason,
            "kicked_at": p.kicked_at,
            "result": {
                "attempt_id": str(attempt.id),
                "total_score": attempt.total_score,
                "correct_count": attempt.correct_count,
                "wrong_count": attempt.wrong_count,
                "blank_count": attempt.blank_count,
            } if attempt is not None and attempt.is_submitted else None,
        })
        if participant_id is not None and str(p.id) == str(participant_id):
            messages = [message_dict(m) for m in recent]

    invited = [
        {"id": s.pk, "name": s.name, "email": s.email}
        for s in invited_students(session)
    ]
    sim = session.simulation

    return {
        "session": {
            "id": str(session.id),
            "status": session.status,
            "scheduled_start_at": session.scheduled_start_at,
            "actual_start_at": session.actual_start_at,
            "ended_at": session.ended_at,
            "waiting_message": session.waiting_message,
        },
        "simulation": {
            "id": str(sim.id),
            "title": sim.title,
            "duration_minutes": sim.duration_minutes,
            "total_questions": sim.total_questions,
        },
        "participants": rows,
        "invited_students": invited,
        "connected_count": sum(1 for r in rows if r["is_connected"]),
        "total_invited": len(invited),
        "time_remaining": time_remaining(session, now),
        "messages": messages,
    }


def to_json(data) -> str:
    return json.dumps(data, cls=DjangoJSONEncoder, separators=(",", ":"))


def _strip_volatile(obj):
    if isinstance(obj, dict):
        return {k: _strip_volatile(v) for k, v in obj.items() if k not in VOLATILE_KEYS}
    if isinstance(obj, list):
        return [_strip_volatile(v) for v in obj]
    return obj


def fingerprint(state: dict, part: str = "state") -> str:
    """
    Comparable form of a snapshot. ``part="state"`` covers session and
    participants, ``part="messages"`` only the message list.
    """
    if part == "messages":
        return to_json(state.get("messages"))
    body = {k: v for k, v in state.items() if k != "messages"}
    return to_json(_strip_volatile(body))
