"""
Staff-side entry of results for simulations sat on paper.
"""
from __future__ import annotations

import logging

from django.contrib.auth import get_user_model
from django.db import IntegrityError, transaction
from django.shortcuts import get_object_or_404
from django.utils import timezone
from rest_framework.exceptions import ValidationError

from common.enums import AttemptStatus, SubmitReason
from common.exceptions import Conflict
from simulations.models import Attempt, AttemptAnswer, Simulation, SimulationAssignment
from simulations.services.attempts import (
    apply_result, ordered_links, result_payload, score_attempt, write_answers,
)

logger = logging.getLogger(__name__)

User = get_user_model()


def _require_paper_based(simulation: Simulation):
    if not simulation.is_paper_based:
        raise ValidationError("This operation is only available for paper-based simulations.")


def assigned_students(simulation: Simulation) -> list:
    """Direct and group-assigned students, deduplicated, sorted by name."""
    seen = {}
    rows = (
        SimulationAssignment.objects
        .filter(simulation=simulation)
        .select_related("student", "group")
        .prefetch_related("group__members__student")
    )
    for a in rows:
        for s in a.target_students():
            seen.setdefault(s.pk, s)
    return sorted(seen.values(), key=lambda s: (s.name.lower(), s.pk))


def paper_based_students(simulation: Simulation) -> dict:
    _require_paper_based(simulation)

    students = assigned_students(simulation)
    with_result = set(
        Attempt.objects
        .filter(simulation=simulation, is_paper_based=True)
        .values_list("student_id", flat=True)
    )

    questions = []
    for link in ordered_links(simulation):
        q = link.question
        questions.append({
            "id": str(q.id),
            "order": link.order,
            "text": q.text,
            "subject": q.subject.name,
            "options": [
                {"id": str(o.id), "label": o.display_label}
                for o in q.options.all()
            ],
        })

    return {
        "simulation_id": str(simulation.id),
        "title": simulation.title,
        "students": [
            {
                "id": s.pk,
                "name": s.name,
                "email": s.email,
                "has_result": s.pk in with_result,
            }
            for s in students
        ],
        "questions": questions,
        "completed_count": sum(1 for s in students if s.pk in with_result),
        "total_students": len(students),
    }


def create_paper_result(simulation: Simulation, student_id, answers=None, was_present: bool = True,
                        entered_by=None) -> dict:
    """
    One paper result per (simulation, student), never overwritten. Absent
    students get an all-blank result scored 0; present students are scored
    like an online attempt with no time spent.
    """
    _require_paper_based(simulation)
    student = get_object_or_404(User, pk=student_id)

    if Attempt.objects.filter(simulation=simulation, student=student, is_paper_based=True).exists():
        logger.info("duplicate paper result rejected simulation=%s student=%s", simulation.id, student.pk)
        raise Conflict("A result for this student already exists.")

    links = ordered_links(simulation)
    now = timezone.now()
    try:
        with transaction.atomic():
            attempt = Attempt.objects.create(
                simulation=simulation,
                student=student,
                status=AttemptStatus.SUBMITTED,
                started_at=now,
                submitted_at=now,
                submit_reason=SubmitReason.PAPER,
                is_paper_based=True,
                was_present=was_present,
                entered_by=entered_by,
                total_questions=len(links),
            )
            AttemptAnswer.objects.bulk_create([
                AttemptAnswer(attempt=attempt, question=link.question, order=i)
                for i, link in enumerate(links)
            ])

            if was_present:
                write_answers(attempt, [
                    {"question_id": a.get("question_id"), "selected_option_id": a.get("selected_option_id")}
                    for a in (answers or [])
                ])
                apply_result(attempt, score_attempt(attempt))
            else:
                attempt.correct_count = attempt.wrong_count = 0
                attempt.blank_count = len(links)
                attempt.total_score = 0.0
                attempt.percentage_score = 0.0
                attempt.passed = None if simulation.passing_score is None else 0 >= simulation.passing_score
                attempt.subject_breakdown = []
            attempt.save()
    except IntegrityError:
        logger.info("paper result raced simulation=%s student=%s", simulation.id, student.pk)
        raise Conflict("A result for this student already exists.")

    logger.info(
        "paper result created simulation=%s student=%s present=%s score=%s",
        simulation.id, student.pk, was_present, attempt.total_score,
    )
    return result_payload(attempt)
