from __future__ import annotations

import uuid

from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.db.models import Q
from django.utils import timezone

from common.enums import (
    AccessType, AssignmentStatus, AttemptStatus, QuestionType, SimulationStatus, SubmitReason,
)


class TimeStampedModel(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


class Subject(TimeStampedModel):
    name  = models.CharField(max_length=120, unique=True)
    code  = models.CharField(max_length=16, unique=True)
    color = models.CharField(max_length=16, blank=True)
    order = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ("order", "name")

    def __str__(self):
        return self.name


class Question(TimeStampedModel):
    text = models.TextField()
    explanation = models.TextField(blank=True)
    question_type = models.CharField(
        max_length=16, choices=QuestionType.choices, default=QuestionType.SINGLE_CHOICE
    )
    subject = models.ForeignKey(Subject, on_delete=models.PROTECT, related_name="questions")

    points          = models.FloatField(default=1.0)
    negative_points = models.FloatField(default=0.0, validators=[MaxValueValidator(0)])

    is_active = models.BooleanField(default=True)

    class Meta:
        indexes = [
            models.Index(fields=["subject"]),
            models.Index(fields=["is_active"]),
        ]

    def __str__(self):
        return f"Q{self.pk}: {self.text[:60]}"


class AnswerOption(TimeStampedModel):
    question = models.ForeignKey(Question, on_delete=models.CASCADE, related_name="options")
    text = models.TextField()
    label = models.CharField(max_length=4, blank=True)
    is_correct = models.BooleanField(default=False)
    order = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ("question", "order", "created_at")
        indexes  = [models.Index(fields=["question", "order"])]

    @property
    def display_label(self) -> str:
        return self.label or chr(ord("A") + (self.order or 0))


class Simulation(TimeStampedModel):
    title = models.CharField(max_length=200)
    description = models.TextField(blank=True)
    status = models.CharField(max_length=16, choices=SimulationStatus.choices, default=SimulationStatus.DRAFT)

    duration_minutes = models.PositiveIntegerField(
        default=0, validators=[MaxValueValidator(8 * 60)], help_text="0 = untimed"
    )

    correct_points = models.FloatField(default=1.0)
    wrong_points   = models.FloatField(default=-0.4, validators=[MaxValueValidator(0)])
    blank_points   = models.FloatField(default=0.0)
    use_question_points = models.BooleanField(default=False)
    passing_score = models.FloatField(null=True, blank=True)
    max_score     = models.FloatField(null=True, blank=True)

    is_repeatable = models.BooleanField(default=False)
    max_attempts  = models.PositiveIntegerField(null=True, blank=True, validators=[MinValueValidator(1)])

    allow_review         = models.BooleanField(default=True)
    show_results         = models.BooleanField(default=True)
    show_correct_answers = models.BooleanField(default=True)

    is_official    = models.BooleanField(default=False)
    is_paper_based = models.BooleanField(default=False)
    is_public      = models.BooleanField(default=False)
    access_type    = models.CharField(max_length=8, choices=AccessType.choices, default=AccessType.OPEN)

    randomize_order   = models.BooleanField(default=False)
    randomize_answers = models.BooleanField(default=False)

    start_date = models.DateTimeField(null=True, blank=True)
    end_date   = models.DateTimeField(null=True, blank=True)

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True,
        related_name="simulations_created",
    )

    class Meta:
        indexes = [
            models.Index(fields=["status"]),
            models.Index(fields=["start_date", "end_date"]),
        ]

    def clean(self):
        if self.start_date and self.end_date and self.start_date >= self.end_date:
            raise ValidationError("start_date must be earlier than end_date")

    @property
    def duration_seconds(self) -> int:
        return int(self.duration_minutes or 0) * 60

    @property
    def total_questions(self) -> int:
        return self.questions.count()

    @property
    def is_locked(self) -> bool:
        return self.attempts.exists()

    def is_in_window(self, now=None) -> bool:
        now = now or timezone.now()
        if self.start_date and self.start_date > now:
            return False
        if self.end_date and self.end_date < now:
            return False
        return True

    def __str__(self):
        return self.title


class SimulationQuestion(TimeStampedModel):
    simulation = models.ForeignKey(Simulation, on_delete=models.CASCADE, related_name="questions")
    question   = models.ForeignKey(Question, on_delete=models.PROTECT, related_name="in_simulations")
    order = models.PositiveIntegerField(default=1)

    custom_points          = models.FloatField(null=True, blank=True)
    custom_negative_points = models.FloatField(null=True, blank=True)

    class Meta:
        unique_together = ("simulation", "question")
        ordering = ("simulation", "order", "created_at")
        indexes  = [models.Index(fields=["simulation", "order"])]

    def effective_points(self) -> float:
        if self.custom_points is not None:
            return self.custom_points
        sim = self.simulation
        return self.question.points if sim.use_question_points else sim.correct_points

    def effective_negative(self) -> float:
        if self.custom_negative_points is not None:
            return self.custom_negative_points
        sim = self.simulation
        return self.question.negative_points if sim.use_question_points else sim.wrong_points


class SimulationAssignment(TimeStampedModel):
    simulation = models.ForeignKey(Simulation, on_delete=models.CASCADE, related_name="assignments")
    student = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, null=True, blank=True,
                                related_name="simulation_assignments")
    group = models.ForeignKey("accounts.StudentGroup", on_delete=models.CASCADE, null=True, blank=True,
                              related_name="simulation_assignments")

    start_date = models.DateTimeField(null=True, blank=True)
    end_date   = models.DateTimeField(null=True, blank=True)
    status = models.CharField(max_length=8, choices=AssignmentStatus.choices, default=AssignmentStatus.ACTIVE)
    notes = models.TextField(blank=True)

    assigned_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True,
                                    related_name="simulation_assignments_made")

    class Meta:
        indexes = [models.Index(fields=["simulation", "status"])]
        constraints = [
            models.CheckConstraint(
                name="ck_assignment_exactly_one_target",
                condition=((Q(student__isnull=False) & Q(group__isnull=True)) |
                           (Q(student__isnull=True)  & Q(group__isnull=False))),
            ),
        ]

    @property
    def effective_end_date(self):
        return self.end_date or self.simulation.end_date

    def is_expired(self, now=None) -> bool:
        end = self.effective_end_date
        return bool(end and end < (now or timezone.now()))

    def target_students(self):
        if self.student_id:
            return [self.student]
        return [m.student for m in self.group.members.select_related("student").all()]


class Attempt(TimeStampedModel):
    """
    One student's run through one simulation. Result columns are written once,
    at submission; the Answer rows are the authoritative ledger.
    """
    simulation = models.ForeignKey(Simulation, on_delete=models.CASCADE, related_name="attempts")
    student = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="simulation_attempts")

    status = models.CharField(max_length=16, choices=AttemptStatus.choices, default=AttemptStatus.IN_PROGRESS)
    started_at   = models.DateTimeField(default=timezone.now)
    submitted_at = models.DateTimeField(null=True, blank=True)
    elapsed_seconds = models.PositiveIntegerField(default=0)
    submit_reason = models.CharField(max_length=8, choices=SubmitReason.choices, blank=True)

    is_paper_based = models.BooleanField(default=False)
    was_present    = models.BooleanField(default=True)
    entered_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True,
                                   related_name="paper_results_entered")

    total_questions  = models.PositiveIntegerField(default=0)
    total_score      = models.FloatField(null=True, blank=True)
    percentage_score = models.FloatField(null=True, blank=True)
    correct_count    = models.PositiveIntegerField(default=0)
    wrong_count      = models.PositiveIntegerField(default=0)
    blank_count      = models.PositiveIntegerField(default=0)
    passed           = models.BooleanField(null=True, blank=True)
    subject_breakdown = models.JSONField(default=list, blank=True)

    class Meta:
        indexes = [
            models.Index(fields=["simulation", "student", "status"]),
            models.Index(fields=["simulation", "total_score"]),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["simulation", "student"],
                condition=Q(status=AttemptStatus.IN_PROGRESS),
                name="uq_attempt_one_in_progress",
            ),
            models.UniqueConstraint(
                fields=["simulation", "student"],
                condition=Q(is_paper_based=True),
                name="uq_attempt_one_paper_result",
            ),
        ]

    @property
    def is_submitted(self) -> bool:
        return self.status == AttemptStatus.SUBMITTED

    def clean(self):
        if self.submitted_at and self.submitted_at < self.started_at:
            raise ValidationError("submitted_at cannot be earlier than started_at")

    def mark_submitted(self, reason: str):
        self.submitted_at = timezone.now()
        self.status = AttemptStatus.SUBMITTED
        self.submit_reason = reason


class AttemptAnswer(TimeStampedModel):
    attempt  = models.ForeignKey(Attempt, on_delete=models.CASCADE, related_name="answers")
    question = models.ForeignKey(Question, on_delete=models.PROTECT, related_name="attempt_answers")
    order = models.PositiveIntegerField(default=0)

    selected_option = models.ForeignKey(
        AnswerOption, on_delete=models.SET_NULL, null=True, blank=True, related_name="selected_in"
    )
    answer_text = models.TextField(blank=True)
    time_spent_seconds = models.PositiveIntegerField(default=0)
    flagged = models.BooleanField(default=False)

    # written by scoring only
    is_correct    = models.BooleanField(null=True, blank=True)
    earned_points = models.FloatField(null=True, blank=True)

    class Meta:
        ordering = ("attempt", "order")
        indexes = [models.Index(fields=["attempt", "question"])]
        constraints = [
            models.UniqueConstraint(fields=["attempt", "question"], name="uq_attempt_answer_question"),
        ]
