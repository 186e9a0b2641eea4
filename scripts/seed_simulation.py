# scripts/seed_simulation.py
# Usage: python manage.py runscript seed_simulation
from datetime import timedelta

from django.db import transaction
from django.utils import timezone

from accounts.models import GroupMember, StudentGroup, User
from common.enums import AccessType, Role, SimulationStatus
from simulations.models import (
    AnswerOption, Question, Simulation, SimulationAssignment, SimulationQuestion, Subject,
)

PASSWORD = "test1234"

SUBJECTS = [
    ("Biology", "BIO", "#2e7d32"),
    ("Chemistry", "CHEM", "#1565c0"),
    ("Logic", "LOG", "#6a1b9a"),
]


def _user(username, role, **extra):
    u, created = User.objects.get_or_create(
        username=username,
        defaults={"email": f"{username}@example.com", "role": role, **extra},
    )
    if created:
        u.set_password(PASSWORD)
        u.save()
    return u, created


def _questions(subject, n=5):
    out = []
    for i in range(1, n + 1):
        q = Question.objects.create(subject=subject, text=f"{subject.code} question {i}")
        for j, letter in enumerate("ABCDE"):
            AnswerOption.objects.create(
                question=q, label=letter, order=j,
                text=f"Option {letter}", is_correct=(j == i % 5),
            )
        out.append(q)
    return out


def _simulation(title, questions, admin, **kw):
    sim = Simulation.objects.create(title=title, status=SimulationStatus.PUBLISHED, created_by=admin, **kw)
    SimulationQuestion.objects.bulk_create([
        SimulationQuestion(simulation=sim, question=q, order=i)
        for i, q in enumerate(questions, start=1)
    ])
    return sim


@transaction.atomic
def run(*args):
    admin, _ = _user("admin", Role.ADMIN, is_staff=True, is_superuser=True)
    _user("collab", Role.COLLABORATOR)

    students, new_students = [], 0
    for i in range(1, 11):
        s, created = _user(f"student{i:02d}", Role.STUDENT, first_name="Student", last_name=f"{i:02d}")
        students.append(s)
        new_students += int(created)

    group, _ = StudentGroup.objects.get_or_create(name="Class 5A")
    for s in students:
        GroupMember.objects.get_or_create(group=group, student=s)

    questions = []
    for order, (name, code, color) in enumerate(SUBJECTS):
        subject, _ = Subject.objects.get_or_create(code=code, defaults={"name": name, "color": color, "order": order})
        questions += _questions(subject)

    now = timezone.now()
    online = _simulation(
        "Admission test mock #1", questions, admin,
        duration_minutes=30, passing_score=6, end_date=now + timedelta(days=7),
    )
    SimulationAssignment.objects.create(simulation=online, group=group, assigned_by=admin)

    room = _simulation(
        "Official simulation (virtual room)", questions, admin,
        duration_minutes=45, is_official=True, access_type=AccessType.ROOM,
    )
    SimulationAssignment.objects.create(simulation=room, group=group, assigned_by=admin)

    paper = _simulation("Paper mock", questions[:10], admin, is_paper_based=True)
    SimulationAssignment.objects.create(simulation=paper, group=group, assigned_by=admin)

    print(f"Users: admin + collab + {len(students)} students ({new_students} new)")
    print(f"Questions: {len(questions)} in {len(SUBJECTS)} subjects")
    print(f"Simulations: {online.id} (online), {room.id} (room), {paper.id} (paper)")
    print(f"Password for created users: {PASSWORD}")
