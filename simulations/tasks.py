# simulations/tasks.py
from __future__ import annotations

import logging

from celery import shared_task
from django.db.models import Q
from django.utils import timezone

from accounts.models import Notification
from common.enums import AssignmentStatus, AttemptStatus, NotificationKind, SimulationStatus
from .models import Attempt, SimulationAssignment

logger = logging.getLogger(__name__)


def _every_target_completed(assignment) -> bool:
    students = assignment.target_students()
    if not students:
        return False
    done = set(
        Attempt.objects
        .filter(simulation=assignment.simulation, status=AttemptStatus.SUBMITTED,
                student__in=[s.pk for s in students])
        .values_list("student_id", flat=True)
    )
    return all(s.pk in done for s in students)


@shared_task(ignore_result=True)
def close_expired_assignments(dry_run: bool = False) -> dict:
    """
    Periodic task (hourly):
      1) ACTIVE assignments whose end date has passed are CLOSED.
      2) ACTIVE assignments of non-repeatable published simulations are CLOSED
         once every targeted student has a submitted attempt.
    """
    now = timezone.now()
    active = SimulationAssignment.objects.filter(status=AssignmentStatus.ACTIVE)

    expired = list(
        active.filter(
            Q(end_date__lt=now) | Q(end_date__isnull=True, simulation__end_date__lt=now)
        ).values_list("id", flat=True)
    )

    completed = []
    candidates = (
        active.exclude(id__in=expired)
        .filter(simulation__is_repeatable=False, simulation__status=SimulationStatus.PUBLISHED)
        .select_related("simulation", "student", "group")
    )
    for a in candidates:
        if _every_target_completed(a):
            completed.append(a.id)

    if not dry_run and (expired or completed):
        SimulationAssignment.objects.filter(id__in=expired + completed).update(
            status=AssignmentStatus.CLOSED, updated_at=now
        )

    logger.info(
        "close_expired_assignments dry_run=%s expired=%s completed=%s", dry_run, len(expired), len(completed)
    )
    return {
        "dry_run": dry_run,
        "closed_expired": len(expired),
        "closed_completed": len(completed),
        "assignment_ids": [str(i) for i in expired + completed],
    }


@shared_task(ignore_result=True)
def notify_simulation_assigned(assignment_id: str) -> int:
    """
    One in-app notification per targeted student. Fire-and-forget: a missing
    assignment is logged and skipped.
    """
    assignment = (
        SimulationAssignment.objects
        .select_related("simulation", "student", "group")
        .filter(id=assignment_id)
        .first()
    )
    if not assignment:
        logger.warning("notify_simulation_assigned: assignment %s not found", assignment_id)
        return 0

    sim = assignment.simulation
    due = assignment.effective_end_date
    rows = [
        Notification(
            recipient=s,
            kind=NotificationKind.SIMULATION_ASSIGNED,
            title=f"New simulation: {sim.title}",
            body=f"Due {due:%d/%m/%Y %H:%M}" if due else "",
            payload={"simulation_id": str(sim.id), "assignment_id": str(assignment.id)},
        )
        for s in assignment.target_students()
    ]
    Notification.objects.bulk_create(rows)
    logger.info("notified %s student(s) of assignment %s", len(rows), assignment.id)
    return len(rows)
