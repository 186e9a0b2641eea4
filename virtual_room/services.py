"""
Virtual room operations. Views are thin wrappers around these; the beacon
and the stale-participant sweep reuse ``disconnect_participant``.
"""
from __future__ import annotations

import logging

from django.db import IntegrityError, transaction
from django.shortcuts import get_object_or_404
from django.utils import timezone
from rest_framework.exceptions import PermissionDenied, ValidationError

from accounts.permissions import is_staff_user
from common.enums import AccessType, AssignmentStatus, MessageSender, SessionStatus
from simulations.models import Attempt, SimulationAssignment
from .models import CheatingEvent, SessionMessage, SessionParticipant, SimulationSession
from .state import connected_participants, invited_students, message_dict, time_remaining

logger = logging.getLogger(__name__)

DEFAULT_KICK_REASON = "Removed by staff"
OPEN_STATUSES = (SessionStatus.WAITING, SessionStatus.STARTED)


def participant_for(user, participant_id) -> SessionParticipant:
    """Staff may act on any participant; a student only on their own seat."""
    p = get_object_or_404(SessionParticipant.objects.select_related("session"), pk=participant_id)
    if not is_staff_user(user) and p.student_id != user.pk:
        raise PermissionDenied("Not your participant.")
    return p


# --- staff ---

def get_or_create_session(assignment_id, by=None):
    """Returns ``(session, created)``; a WAITING/STARTED session is reused."""
    assignment = get_object_or_404(SimulationAssignment.objects.select_related("simulation"), pk=assignment_id)
    sim = assignment.simulation
    if sim.access_type != AccessType.ROOM:
        raise ValidationError("This simulation does not use a virtual room.")
    if assignment.is_expired():
        raise ValidationError("The assignment has expired.")
    if assignment.status != AssignmentStatus.ACTIVE:
        raise ValidationError("The assignment is not active.")

    existing = SimulationSession.objects.filter(assignment=assignment, status__in=OPEN_STATUSES).first()
    if existing:
        return existing, False

    try:
        with transaction.atomic():
            session = SimulationSession.objects.create(
                simulation=sim,
                assignment=assignment,
                scheduled_start_at=assignment.start_date,
            )
    except IntegrityError:
        return SimulationSession.objects.get(assignment=assignment, status__in=OPEN_STATUSES), False

    logger.info("session created session=%s assignment=%s", session.id, assignment.id)
    return session, True


def start_session(session_id, by, force_start: bool = False) -> dict:
    with transaction.atomic():
        session = get_object_or_404(
            SimulationSession.objects.select_for_update().select_related("simulation", "assignment"),
            pk=session_id,
        )
        if session.status != SessionStatus.WAITING:
            raise ValidationError("The session has already been started or completed.")

        now = timezone.now()
        connected = [p for p in connected_participants(session, now) if not p.is_kicked]
        invited = len(invited_students(session))
        if not force_start and len(connected) < invited:
            raise ValidationError(
                f"Only {len(connected)}/{invited} students are connected. Use force_start to start anyway."
            )

        session.status = SessionStatus.STARTED
        session.actual_start_at = now
        session.started_by = by
        session.save(update_fields=["status", "actual_start_at", "started_by", "updated_at"])
        SessionParticipant.objects.filter(pk__in=[p.pk for p in connected]).update(started_at=now)

    logger.info("session started session=%s participants=%s forced=%s", session.id, len(connected), force_start)
    return {"success": True, "started_at": now, "participants_started": len(connected)}


def purge_messages(session) -> int:
    deleted, _ = SessionMessage.objects.filter(participant__session=session).delete()
    if deleted:
        logger.info("messages purged session=%s count=%s", session.id, deleted)
    return deleted


def end_session(session_id) -> dict:
    with transaction.atomic():
        session = get_object_or_404(SimulationSession.objects.select_for_update(), pk=session_id)
        if session.status == SessionStatus.COMPLETED:
            return {"success": True, "ended_at": session.ended_at, "messages_deleted": 0}
        now = timezone.now()
        session.status = SessionStatus.COMPLETED
        session.ended_at = now
        session.save(update_fields=["status", "ended_at", "updated_at"])
        session.participants.filter(is_connected=True).update(is_connected=False, disconnected_at=now)
        deleted = purge_messages(session)

    logger.info("session ended session=%s", session.id)
    return {"success": True, "ended_at": now, "messages_deleted": deleted}


def kick_participant(participant_id, reason: str = "") -> dict:
    p = get_object_or_404(SessionParticipant, pk=participant_id)
    p.is_kicked = True
    p.kicked_reason = reason or DEFAULT_KICK_REASON
    p.kicked_at = timezone.now()
    p.is_connected = False
    p.disconnected_at = p.kicked_at
    p.save(update_fields=["is_kicked", "kicked_reason", "kicked_at", "is_connected", "disconnected_at"])
    logger.info("participant kicked participant=%s", p.id)
    return {"success": True}


# --- student ---

def _next_anonymous_id(session) -> str:
    return f"{session.participants.count() + 1:03d}"


def join_session(assignment_id, student) -> dict:
    assignment = get_object_or_404(SimulationAssignment.objects.select_related("simulation"), pk=assignment_id)
    if student.pk not in {s.pk for s in assignment.target_students()}:
        raise PermissionDenied("You are not invited to this session.")

    session = (
        SimulationSession.objects
        .filter(assignment=assignment, status__in=OPEN_STATUSES)
        .order_by("-created_at")
        .first()
    )
    if session is None:
        raise ValidationError("No open session for this assignment.")

    now = timezone.now()
    with transaction.atomic():
        p, created = SessionParticipant.objects.select_for_update().get_or_create(
            session=session, student=student,
            defaults={"anonymous_id": _next_anonymous_id(session)},
        )
        if p.is_kicked:
            raise PermissionDenied(p.kicked_reason or DEFAULT_KICK_REASON)
        p.is_connected = True
        p.last_heartbeat = now
        p.disconnected_at = None
        # a reconnecting student has to confirm again
        p.ready_at = None
        p.save(update_fields=["is_connected", "last_heartbeat", "disconnected_at", "ready_at"])

    return {
        "participant_id": str(p.id),
        "session_id": str(session.id),
        "status": session.status,
        "actual_start_at": session.actual_start_at,
        "waiting_message": session.waiting_message,
        "created": created,
    }


def heartbeat(participant: SessionParticipant, current_question_index=None, answered_count=None) -> dict:
    if participant.is_kicked:
        return {
            "is_kicked": True,
            "kicked_reason": participant.kicked_reason or DEFAULT_KICK_REASON,
            "session_status": SessionStatus.COMPLETED,
            "actual_start_at": None,
            "ended_at": None,
            "unread_messages": [],
            "is_ready": False,
        }

    participant.last_heartbeat = timezone.now()
    participant.is_connected = True
    fields = ["last_heartbeat", "is_connected"]
    if current_question_index is not None:
        participant.current_question_index = current_question_index
        fields.append("current_question_index")
    if answered_count is not None:
        participant.answered_count = answered_count
        fields.append("answered_count")
    participant.save(update_fields=fields)

    session = participant.session
    unread = participant.messages.filter(is_read=False, sender_type=MessageSender.ADMIN).order_by("-created_at")
    return {
        "is_kicked": False,
        "session_status": session.status,
        "actual_start_at": session.actual_start_at,
        "ended_at": session.ended_at,
        "unread_messages": [message_dict(m) for m in unread],
        "is_ready": participant.ready_at is not None,
        "connected_count": len(connected_participants(session)),
        "total_participants": len(invited_students(session)) or 1,
    }


def set_ready(participant: SessionParticipant) -> dict:
    participant.ready_at = timezone.now()
    participant.save(update_fields=["ready_at"])
    return {"success": True}


def student_session_status(assignment_id, student) -> dict:
    session = (
        SimulationSession.objects
        .select_related("simulation")
        .filter(assignment_id=assignment_id)
        .order_by("-created_at")
        .first()
    )
    if session is None:
        return {"has_session": False}

    p = session.participants.filter(student=student).first()
    if p is not None and p.is_kicked:
        return {
            "has_session": True,
            "is_kicked": True,
            "kicked_reason": p.kicked_reason or DEFAULT_KICK_REASON,
            "session_id": str(session.id),
            "status": SessionStatus.COMPLETED,
        }

    unread = []
    if p is not None:
        unread = [
            message_dict(m)
            for m in p.messages.filter(is_read=False, sender_type=MessageSender.ADMIN).order_by("-created_at")
        ]
    return {
        "has_session": True,
        "is_kicked": False,
        "session_id": str(session.id),
        "simulation_id": str(session.simulation_id),
        "status": session.status,
        "actual_start_at": session.actual_start_at,
        "ended_at": session.ended_at,
        "waiting_message": session.waiting_message,
        "participant_id": str(p.id) if p else None,
        "is_connected": p.is_connected if p else False,
        "unread_messages": unread,
        "time_remaining": time_remaining(session),
        "simulation": {"title": session.simulation.title, "duration_minutes": session.simulation.duration_minutes},
    }


def log_cheating_event(participant: SessionParticipant, event_type, description="", metadata=None) -> dict:
    ev = CheatingEvent.objects.create(
        participant=participant,
        event_type=event_type,
        description=description or "",
        metadata=metadata or {},
    )
    logger.info("cheating event participant=%s type=%s", participant.id, event_type)
    return {"success": True, "event_id": ev.id}


# --- messages ---

def send_message(user, participant: SessionParticipant, text: str) -> dict:
    text = (text or "").strip()
    if not 1 <= len(text) <= 1000:
        raise ValidationError("Message must be between 1 and 1000 characters.")
    sender_type = MessageSender.ADMIN if is_staff_user(user) else MessageSender.STUDENT
    m = SessionMessage.objects.create(participant=participant, sender_type=sender_type, sender=user, message=text)
    return message_dict(m)


def messages_for(participant: SessionParticipant) -> list:
    return [message_dict(m) for m in participant.messages.order_by("created_at", "id")]


def mark_messages_read(user, participant: SessionParticipant) -> dict:
    """Each side marks the other side's messages."""
    other = MessageSender.STUDENT if is_staff_user(user) else MessageSender.ADMIN
    n = participant.messages.filter(sender_type=other, is_read=False).update(is_read=True, read_at=timezone.now())
    return {"success": True, "updated": n}


# --- results / lifecycle ---

def rankings(session_id, user) -> dict:
    session = get_object_or_404(SimulationSession.objects.select_related("simulation"), pk=session_id)
    staff = is_staff_user(user)
    participants = list(
        session.participants
        .select_related("student", "attempt")
        .filter(completed_at__isnull=False, attempt__isnull=False)
        .order_by("-attempt__total_score", "completed_at")
    )
    rows = []
    for i, p in enumerate(participants):
        mine = p.student_id == user.pk
        rows.append({
            "position": i + 1,
            "student_name": p.student.name if (staff or mine) else f"Student {p.anonymous_id}",
            "is_current_user": mine,
            "total_score": p.attempt.total_score,
            "correct_count": p.attempt.correct_count,
            "wrong_count": p.attempt.wrong_count,
            "blank_count": p.attempt.blank_count,
            "completed_at": p.completed_at,
        })
    return {
        "session_id": str(session.id),
        "simulation_title": session.simulation.title,
        "total_participants": session.participants.count(),
        "completed_participants": len(rows),
        "rankings": rows,
        "is_session_completed": session.status == SessionStatus.COMPLETED,
    }


def disconnect_participant(participant_id) -> dict:
    """
    Marks the seat disconnected. When the session is COMPLETED and nobody
    else is still connected, the session's messages are deleted.
    """
    with transaction.atomic():
        p = SessionParticipant.objects.select_for_update().select_related("session").get(pk=participant_id)
        p.is_connected = False
        p.disconnected_at = timezone.now()
        p.save(update_fields=["is_connected", "disconnected_at"])

        session = p.session
        others = session.participants.filter(is_connected=True).exclude(pk=p.pk).exists()
        deleted = 0
        if session.status == SessionStatus.COMPLETED and not others:
            deleted = purge_messages(session)

    return {"success": True, "messages_deleted": deleted}


def link_attempt(participant: SessionParticipant, attempt_id) -> dict:
    attempt = get_object_or_404(Attempt, pk=attempt_id)
    if attempt.student_id != participant.student_id or attempt.simulation_id != participant.session.simulation_id:
        raise ValidationError("Attempt does not belong to this participant.")
    participant.attempt = attempt
    participant.save(update_fields=["attempt"])
    return {"success": True}


def mark_completed(participant: SessionParticipant) -> dict:
    participant.completed_at = timezone.now()
    participant.save(update_fields=["completed_at"])
    return {"success": True}
