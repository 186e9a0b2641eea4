import uuid

from django.conf import settings
from django.core.validators import MinLengthValidator
from django.db import models
from django.db.models import Q

from common.enums import CheatingEventType, MessageSender, SessionStatus


class SimulationSession(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    simulation = models.ForeignKey("simulations.Simulation", on_delete=models.CASCADE, related_name="sessions")
    assignment = models.ForeignKey("simulations.SimulationAssignment", on_delete=models.CASCADE,
                                   related_name="sessions")
    status = models.CharField(max_length=12, choices=SessionStatus.choices, default=SessionStatus.WAITING)

    scheduled_start_at = models.DateTimeField(null=True, blank=True)
    actual_start_at    = models.DateTimeField(null=True, blank=True)
    ended_at           = models.DateTimeField(null=True, blank=True)
    waiting_message    = models.TextField(blank=True)
    started_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True,
                                   related_name="sessions_started")

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [models.Index(fields=["assignment", "status"])]
        constraints = [
            # one live session per assignment
            models.UniqueConstraint(
                fields=["assignment"],
                condition=~Q(status=SessionStatus.COMPLETED),
                name="uq_session_one_open_per_assignment",
            ),
        ]

    def __str__(self):
        return f"{self.simulation} • {self.status}"


class SessionParticipant(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    session = models.ForeignKey(SimulationSession, on_delete=models.CASCADE, related_name="participants")
    student = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="room_seats")
    attempt = models.ForeignKey("simulations.Attempt", on_delete=models.SET_NULL, null=True, blank=True,
                                related_name="room_participants")

    is_connected    = models.BooleanField(default=False)
    last_heartbeat  = models.DateTimeField(null=True, blank=True)
    joined_at       = models.DateTimeField(auto_now_add=True)
    ready_at        = models.DateTimeField(null=True, blank=True)
    started_at      = models.DateTimeField(null=True, blank=True)
    completed_at    = models.DateTimeField(null=True, blank=True)
    disconnected_at = models.DateTimeField(null=True, blank=True)

    current_question_index = models.PositiveIntegerField(default=0)
    answered_count         = models.PositiveIntegerField(default=0)

    is_kicked     = models.BooleanField(default=False)
    kicked_reason = models.CharField(max_length=255, blank=True)
    kicked_at     = models.DateTimeField(null=True, blank=True)

    anonymous_id = models.CharField(max_length=16, blank=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["session", "student"], name="uq_participant_session_student"),
        ]
        indexes = [models.Index(fields=["session", "is_connected"])]

    def __str__(self):
        return f"{self.student} @ {self.session_id}"


class CheatingEvent(models.Model):
    participant = models.ForeignKey(SessionParticipant, on_delete=models.CASCADE, related_name="cheating_events")
    event_type = models.CharField(max_length=20, choices=CheatingEventType.choices)
    description = models.CharField(max_length=500, blank=True)
    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ("-created_at",)
        indexes = [models.Index(fields=["participant", "created_at"])]


class SessionMessage(models.Model):
    participant = models.ForeignKey(SessionParticipant, on_delete=models.CASCADE, related_name="messages")
    sender_type = models.CharField(max_length=8, choices=MessageSender.choices)
    sender = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True,
                               related_name="room_messages_sent")
    message = models.TextField(max_length=1000, validators=[MinLengthValidator(1)])
    is_read = models.BooleanField(default=False)
    read_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ("created_at", "id")
        indexes = [models.Index(fields=["participant", "created_at"])]
