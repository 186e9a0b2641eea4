"""
Server half of the attempt lifecycle: access checks, start/resume, autosave,
submission and result read models.

Every function raises DRF exceptions directly so views can stay thin and
non-HTTP callers (tasks, scripts) get the same typed failures.
"""
from __future__ import annotations

import logging
import random

from django.apps import apps
from django.db import IntegrityError, transaction
from django.db.models import F, Q, Window
from django.db.models.functions import Rank
from django.utils import timezone
from rest_framework.exceptions import NotFound, PermissionDenied, ValidationError

from accounts.permissions import is_staff_user
from common.enums import AssignmentStatus, AttemptStatus, SimulationStatus, SubmitReason
from simulations.models import (
    AnswerOption, Attempt, AttemptAnswer, Simulation, SimulationAssignment, SimulationQuestion,
)
from simulations import scoring

logger = logging.getLogger(__name__)


# --- access ---

def assignments_for(simulation: Simulation, student):
    return (
        SimulationAssignment.objects
        .filter(simulation=simulation)
        .filter(Q(student=student) | Q(group__members__student=student))
        .distinct()
    )


def _active_assignment(simulation, student):
    return (
        assignments_for(simulation, student)
        .filter(status=AssignmentStatus.ACTIVE)
        .order_by("-created_at")
        .first()
    )


def _check_access(simulation, student):
    assignment = _active_assignment(simulation, student)
    if not simulation.is_public and assignment is None:
        raise PermissionDenied("You do not have access to this simulation.")
    return assignment


def _check_window(simulation, assignment=None, now=None):
    now = now or timezone.now()
    start = (assignment.start_date if assignment and assignment.start_date else None) or simulation.start_date
    end = (assignment.effective_end_date if assignment else None) or simulation.end_date
    if start and start > now:
        raise ValidationError("The simulation has not started yet.")
    if end and end < now:
        raise ValidationError("The simulation has expired.")


def _completed_count(simulation, student) -> int:
    return Attempt.objects.filter(
        simulation=simulation, student=student, status=AttemptStatus.SUBMITTED
    ).count()


def _check_attempt_limits(simulation, student):
    done = _completed_count(simulation, student)
    if not simulation.is_repeatable and done > 0:
        raise ValidationError("You have already completed this simulation.")
    if simulation.max_attempts and done >= simulation.max_attempts:
        raise ValidationError(f"Maximum number of attempts reached ({simulation.max_attempts}).")


def _in_progress_attempt(simulation, student):
    return Attempt.objects.filter(
        simulation=simulation, student=student, status=AttemptStatus.IN_PROGRESS
    ).first()


# --- question payloads ---

def ordered_links(simulation):
    return list(
        SimulationQuestion.objects
        .filter(simulation=simulation)
        .select_related("simulation", "question", "question__subject")
        .prefetch_related("question__options")
        .order_by("order", "created_at")
    )


def _subject_dict(subject):
    return {"id": str(subject.id), "name": subject.name, "code": subject.code, "color": subject.color}


def _question_payload(link, rng=None, with_answers=False):
    q = link.question
    options = list(q.options.all())
    if rng is not None:
        rng.shuffle(options)
    out = {
        "id": str(q.id),
        "order": link.order,
        "text": q.text,
        "question_type": q.question_type,
        "subject": _subject_dict(q.subject),
        "points": link.effective_points(),
        "options": [],
    }
    for o in options:
        row = {"id": str(o.id), "label": o.display_label, "text": o.text}
        if with_answers:
            row["is_correct"] = o.is_correct
        out["options"].append(row)
    return out


def questions_for_attempt(simulation, seed) -> list:
    """
    Student-facing question list. Never carries ``is_correct``. Shuffling is
    seeded so a resumed attempt sees the same order.
    """
    links = ordered_links(simulation)
    rng = random.Random(str(seed))
    if simulation.randomize_order:
        rng.shuffle(links)
    return [
        _question_payload(link, rng if simulation.randomize_answers else None)
        for link in links
    ]


def get_simulation_for_student(simulation: Simulation, student) -> dict:
    now = timezone.now()
    if simulation.status != SimulationStatus.PUBLISHED:
        raise NotFound("Simulation not available.")
    assignment = _check_access(simulation, student)
    _check_window(simulation, assignment, now)

    in_progress = _in_progress_attempt(simulation, student)
    if in_progress is None:
        _check_attempt_limits(simulation, student)

    seed = in_progress.id if in_progress else f"{simulation.id}:{student.pk}"
    due = assignment.effective_end_date if assignment else simulation.end_date

    return {
        "id": str(simulation.id),
        "title": simulation.title,
        "description": simulation.description,
        "duration_minutes": simulation.duration_minutes,
        "is_official": simulation.is_official,
        "access_type": simulation.access_type,
        "allow_review": simulation.allow_review,
        "passing_score": simulation.passing_score,
        "rubric": {
            "correct_points": simulation.correct_points,
            "wrong_points": simulation.wrong_points,
            "blank_points": simulation.blank_points,
        },
        "questions": questions_for_attempt(simulation, seed),
        "completed_attempts": _completed_count(simulation, student),
        "in_progress_attempt_id": str(in_progress.id) if in_progress else None,
        "assignment_id": str(assignment.id) if assignment else None,
        "due_date": due,
    }


# --- start / resume ---

def attempt_state(attempt: Attempt) -> dict:
    """Saved ledger + clock, enough for a client to resume."""
    sim = attempt.simulation
    remaining = None
    if sim.duration_seconds:
        remaining = max(0, sim.duration_seconds - attempt.elapsed_seconds)
    return {
        "attempt_id": str(attempt.id),
        "simulation_id": str(sim.id),
        "status": attempt.status,
        "started_at": attempt.started_at,
        "elapsed_seconds": attempt.elapsed_seconds,
        "duration_seconds": sim.duration_seconds,
        "remaining_seconds": remaining,
        "answers": [
            {
                "question_id": str(a.question_id),
                "selected_option_id": str(a.selected_option_id) if a.selected_option_id else None,
                "answer_text": a.answer_text,
                "time_spent_seconds": a.time_spent_seconds,
                "flagged": a.flagged,
            }
            for a in attempt.answers.order_by("order")
        ],
    }


def start_attempt(simulation: Simulation, student):
    """
    Returns ``(attempt, resumed)``. At most one IN_PROGRESS attempt exists per
    (simulation, student); the partial unique index settles concurrent starts.
    """
    if simulation.status != SimulationStatus.PUBLISHED:
        raise NotFound("Simulation not available.")
    assignment = _check_access(simulation, student)
    _check_window(simulation, assignment)

    existing = _in_progress_attempt(simulation, student)
    if existing:
        logger.info("attempt resumed attempt=%s student=%s", existing.id, student.pk)
        return existing, True

    _check_attempt_limits(simulation, student)

    links = ordered_links(simulation)
    try:
        with transaction.atomic():
            attempt = Attempt.objects.create(
                simulation=simulation,
                student=student,
                total_questions=len(links),
            )
            AttemptAnswer.objects.bulk_create([
                AttemptAnswer(attempt=attempt, question=link.question, order=i)
                for i, link in enumerate(links)
            ])
    except IntegrityError:
        attempt = _in_progress_attempt(simulation, student)
        if attempt is None:
            raise
        logger.info("attempt start raced, returning existing attempt=%s", attempt.id)
        return attempt, True

    logger.info("attempt created attempt=%s simulation=%s student=%s", attempt.id, simulation.id, student.pk)
    return attempt, False


# --- answer writes ---

def write_answers(attempt: Attempt, answers) -> None:
    if not answers:
        return
    rows = {str(a.question_id): a for a in attempt.answers.all()}
    option_ids = {
        str(oid): str(qid)
        for oid, qid in AnswerOption.objects
        .filter(question_id__in=[r.question_id for r in rows.values()])
        .values_list("id", "question_id")
    }

    dirty = []
    for item in answers:
        qid = str(item.get("question_id"))
        row = rows.get(qid)
        if row is None:
            raise ValidationError(f"Question {qid} is not part of this attempt.")

        if "selected_option_id" in item:
            opt = item.get("selected_option_id")
            if opt is not None and option_ids.get(str(opt)) != qid:
                raise ValidationError(f"Option {opt} does not belong to question {qid}.")
            row.selected_option_id = opt
        if "answer_text" in item:
            row.answer_text = item.get("answer_text") or ""
        if item.get("time_spent_seconds") is not None:
            row.time_spent_seconds = max(0, int(item["time_spent_seconds"]))
        if "flagged" in item:
            row.flagged = bool(item.get("flagged"))
        dirty.append(row)

    if dirty:
        AttemptAnswer.objects.bulk_update(
            dirty, ["selected_option", "answer_text", "time_spent_seconds", "flagged", "updated_at"]
        )


def _lock_owned(attempt: Attempt, student) -> Attempt:
    locked = Attempt.objects.select_for_update().select_related("simulation").get(pk=attempt.pk)
    if locked.student_id != student.pk:
        raise PermissionDenied("Not your attempt.")
    return locked


def save_progress(attempt: Attempt, student, answers=None, elapsed_seconds=None) -> dict:
    """
    Autosave. Never overwrites a submitted attempt: such writes are reported
    back as ``saved=False`` and dropped.
    """
    with transaction.atomic():
        attempt = _lock_owned(attempt, student)
        if attempt.is_submitted:
            logger.info("stale autosave ignored attempt=%s", attempt.id)
            return {"attempt_id": str(attempt.id), "saved": False, "status": attempt.status}

        write_answers(attempt, answers)
        if elapsed_seconds is not None:
            attempt.elapsed_seconds = max(attempt.elapsed_seconds, int(elapsed_seconds))
        attempt.save(update_fields=["elapsed_seconds", "updated_at"])

    return {
        "attempt_id": str(attempt.id),
        "saved": True,
        "status": attempt.status,
        "elapsed_seconds": attempt.elapsed_seconds,
        "saved_at": timezone.now(),
    }


# --- scoring glue ---

def rubric_for(simulation: Simulation, links=None) -> scoring.Rubric:
    links = links if links is not None else ordered_links(simulation)
    max_score = simulation.max_score
    if max_score is None:
        max_score = sum(link.effective_points() for link in links)
    return scoring.Rubric(
        correct_points=simulation.correct_points,
        wrong_points=simulation.wrong_points,
        blank_points=simulation.blank_points,
        passing_score=simulation.passing_score,
        max_score=max_score or None,
    )


def scored_questions(links) -> list:
    out = []
    for link in links:
        q = link.question
        correct = next((o.id for o in q.options.all() if o.is_correct), None)
        sim = link.simulation
        points = link.custom_points
        negative = link.custom_negative_points
        if sim.use_question_points:
            points = q.points if points is None else points
            negative = q.negative_points if negative is None else negative
        out.append(scoring.ScoredQuestion(
            question_id=q.id,
            subject=q.subject.name,
            correct_option_id=correct,
            points=points,
            negative_points=negative,
        ))
    return out


def apply_result(attempt: Attempt, result: scoring.ScoreResult) -> None:
    """Copies a ScoreResult onto the attempt and its answer rows (no attempt save)."""
    attempt.total_questions = result.total_questions
    attempt.total_score = result.total_score
    attempt.percentage_score = result.percentage_score
    attempt.correct_count = result.correct_count
    attempt.wrong_count = result.wrong_count
    attempt.blank_count = result.blank_count
    attempt.passed = result.passed if attempt.simulation.passing_score is not None else None
    attempt.subject_breakdown = result.subject_breakdown

    by_q = {str(e.question_id): e for e in result.evaluated}
    rows = list(attempt.answers.all())
    for row in rows:
        ev = by_q.get(str(row.question_id))
        if ev is None:
            continue
        row.is_correct = ev.is_correct
        row.earned_points = ev.earned_points
    AttemptAnswer.objects.bulk_update(rows, ["is_correct", "earned_points", "updated_at"])


def score_attempt(attempt: Attempt) -> scoring.ScoreResult:
    links = ordered_links(attempt.simulation)
    answers = [
        scoring.Answer(
            question_id=a.question_id,
            selected_option_id=a.selected_option_id,
            answer_text=a.answer_text,
            time_spent_seconds=a.time_spent_seconds,
        )
        for a in attempt.answers.all()
    ]
    return scoring.score(answers, scored_questions(links), rubric_for(attempt.simulation, links))


def _mark_room_participant_completed(attempt: Attempt) -> None:
    SessionParticipant = apps.get_model("virtual_room", "SessionParticipant")
    SessionParticipant.objects.filter(attempt=attempt, completed_at__isnull=True).update(
        completed_at=timezone.now()
    )


# --- submit ---

def submit_attempt(attempt: Attempt, student, answers=None, elapsed_seconds=None,
                   reason: str = SubmitReason.MANUAL) -> dict:
    """
    Idempotent by attempt id: a second submit returns the stored result with
    ``already_submitted=True`` and writes nothing. Client-side scores are
    never read; the result is recomputed from the stored ledger.
    """
    with transaction.atomic():
        attempt = _lock_owned(attempt, student)
        if attempt.is_submitted:
            logger.info("duplicate submit ignored attempt=%s", attempt.id)
            return {**visible_result(attempt, student), "already_submitted": True}

        write_answers(attempt, answers)
        if elapsed_seconds is not None:
            attempt.elapsed_seconds = max(attempt.elapsed_seconds, int(elapsed_seconds))
        duration = attempt.simulation.duration_seconds
        if duration and attempt.elapsed_seconds > duration:
            attempt.elapsed_seconds = duration

        result = score_attempt(attempt)
        apply_result(attempt, result)
        attempt.mark_submitted(reason)
        attempt.save()
        _mark_room_participant_completed(attempt)

    logger.info(
        "attempt submitted attempt=%s reason=%s score=%s correct=%s wrong=%s blank=%s",
        attempt.id, reason, attempt.total_score, attempt.correct_count, attempt.wrong_count, attempt.blank_count,
    )
    return {**visible_result(attempt, student), "already_submitted": False}


def submit_simulation(simulation: Simulation, student, answers=None, elapsed_seconds=None,
                      reason: str = SubmitReason.MANUAL) -> dict:
    """
    Submit keyed by simulation instead of attempt id. Falls back to the most
    recent submitted attempt (idempotent) or starts one for direct submits.
    """
    attempt = _in_progress_attempt(simulation, student)
    if attempt is None:
        last = (
            Attempt.objects
            .filter(simulation=simulation, student=student, status=AttemptStatus.SUBMITTED)
            .order_by("-submitted_at")
            .first()
        )
        if last is not None and not simulation.is_repeatable:
            return {**visible_result(last, student), "already_submitted": True}
        attempt, _ = start_attempt(simulation, student)
    return submit_attempt(attempt, student, answers, elapsed_seconds, reason)


# --- read models ---

def result_payload(attempt: Attempt) -> dict:
    breakdown = attempt.subject_breakdown or []
    return {
        "attempt_id": str(attempt.id),
        "simulation_id": str(attempt.simulation_id),
        "simulation_title": attempt.simulation.title,
        "status": attempt.status,
        "submit_reason": attempt.submit_reason,
        "started_at": attempt.started_at,
        "submitted_at": attempt.submitted_at,
        "elapsed_seconds": attempt.elapsed_seconds,
        "is_paper_based": attempt.is_paper_based,
        "was_present": attempt.was_present,
        "total_questions": attempt.total_questions,
        "total_score": attempt.total_score,
        "percentage_score": attempt.percentage_score,
        "correct_count": attempt.correct_count,
        "wrong_count": attempt.wrong_count,
        "blank_count": attempt.blank_count,
        "passed": attempt.passed,
        "subject_breakdown": breakdown,
        "best_subject": breakdown[0] if breakdown else None,
        "worst_subject": breakdown[-1] if breakdown else None,
    }


SCORE_FIELDS = (
    "total_score", "percentage_score", "correct_count", "wrong_count", "blank_count", "passed",
    "subject_breakdown", "best_subject", "worst_subject",
)
RESULTS_HIDDEN_MESSAGE = "Simulation completed. Results will be available once they are published."


def results_hidden(simulation: Simulation, user) -> bool:
    return not simulation.show_results and not is_staff_user(user)


def visible_result(attempt: Attempt, user) -> dict:
    """``result_payload`` with the score blanked out when the simulation keeps results private."""
    data = result_payload(attempt)
    hidden = results_hidden(attempt.simulation, user)
    data["results_hidden"] = hidden
    if hidden:
        data.update(dict.fromkeys(SCORE_FIELDS))
        data["message"] = RESULTS_HIDDEN_MESSAGE
    return data


def result_details(attempt: Attempt, user) -> dict:
    staff = is_staff_user(user)
    if attempt.student_id != user.pk and not staff:
        raise PermissionDenied("You do not have access to this result.")
    if not attempt.is_submitted:
        raise ValidationError("Attempt not submitted yet.")

    sim = attempt.simulation
    can_review = (sim.allow_review or staff) and not results_hidden(sim, user)
    show_correct = sim.show_correct_answers or staff

    data = {**visible_result(attempt, user), "can_review": can_review, "show_correct_answers": show_correct}
    if not can_review:
        data["answers"] = None
        return data

    rows = (
        attempt.answers
        .select_related("question", "question__subject")
        .prefetch_related("question__options")
        .order_by("order")
    )
    answers = []
    for a in rows:
        q = a.question
        item = {
            "question_id": str(q.id),
            "text": q.text,
            "subject": _subject_dict(q.subject),
            "options": [
                {"id": str(o.id), "label": o.display_label, "text": o.text,
                 **({"is_correct": o.is_correct} if show_correct else {})}
                for o in q.options.all()
            ],
            "selected_option_id": str(a.selected_option_id) if a.selected_option_id else None,
            "answer_text": a.answer_text,
            "time_spent_seconds": a.time_spent_seconds,
            "flagged": a.flagged,
            "earned_points": a.earned_points,
        }
        if show_correct:
            item["is_correct"] = a.is_correct
            item["explanation"] = q.explanation
        answers.append(item)
    data["answers"] = answers
    return data


def my_results(student, simulation=None):
    qs = (
        Attempt.objects
        .filter(student=student, status=AttemptStatus.SUBMITTED)
        .select_related("simulation")
        .order_by("-submitted_at")
    )
    if simulation is not None:
        qs = qs.filter(simulation=simulation)
    return qs


def leaderboard(simulation: Simulation, user, limit: int = 50) -> dict:
    """
    Submitted attempts by score desc, then time asc. Equal scores share a
    rank (1, 1, 3). Other students' names are hidden from students.
    """
    reveal_all = is_staff_user(user) or simulation.created_by_id == user.pk
    if not reveal_all and results_hidden(simulation, user):
        raise PermissionDenied("Results are not published for this simulation.")

    qs = (
        Attempt.objects
        .filter(simulation=simulation, status=AttemptStatus.SUBMITTED)
        .select_related("student")
        .annotate(position=Window(expression=Rank(), order_by=F("total_score").desc()))
        .order_by("-total_score", "elapsed_seconds", "submitted_at")
    )

    rows, mine = [], None
    for idx, a in enumerate(qs):
        own = a.student_id == user.pk
        row = {
            "rank": int(a.position),
            "student_id": a.student_id if (reveal_all or own) else None,
            "name": a.student.name if (reveal_all or own) else f"Participant {idx + 1}",
            "total_score": a.total_score,
            "correct_count": a.correct_count,
            "elapsed_seconds": a.elapsed_seconds,
            "is_me": own,
        }
        if own and mine is None:
            mine = row
        if idx < limit:
            rows.append(row)

    return {"simulation_id": str(simulation.id), "results": rows, "me": mine}
