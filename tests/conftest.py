import pytest
from rest_framework.test import APIClient

from accounts.models import GroupMember, StudentGroup, User
from common.enums import Role, SimulationStatus
from core import celery_app
from simulations.models import (
    AnswerOption, Question, Simulation, SimulationAssignment, SimulationQuestion, Subject,
)


@pytest.fixture(autouse=True)
def _eager_celery():
    celery_app.conf.update(
        CELERY_TASK_ALWAYS_EAGER=True, CELERY_TASK_EAGER_PROPAGATES=True, CELERY_BROKER_URL="memory://"
    )


@pytest.fixture
def admin_user(db):
    return User.objects.create_user(
        username="admin", email="admin@example.com", password="pw", role=Role.ADMIN, is_staff=True
    )


@pytest.fixture
def collaborator(db):
    return User.objects.create_user(
        username="collab", email="collab@example.com", password="pw", role=Role.COLLABORATOR
    )


@pytest.fixture
def make_student(db):
    def _make(username, **extra):
        return User.objects.create_user(
            username=username, email=f"{username}@example.com", password="pw", role=Role.STUDENT, **extra
        )
    return _make


@pytest.fixture
def student(make_student):
    return make_student("anna", first_name="Anna", last_name="Rossi")


@pytest.fixture
def other_student(make_student):
    return make_student("luca", first_name="Luca", last_name="Bianchi")


@pytest.fixture
def subjects(db):
    bio = Subject.objects.create(name="Biology", code="BIO", order=0)
    chem = Subject.objects.create(name="Chemistry", code="CHEM", order=1)
    return bio, chem


@pytest.fixture
def questions(subjects):
    """Four questions (BIO, BIO, CHEM, CHEM); option A is always correct."""
    bio, chem = subjects
    out = []
    for i, subject in enumerate([bio, bio, chem, chem], start=1):
        q = Question.objects.create(subject=subject, text=f"Question {i}")
        for j, letter in enumerate("ABCD"):
            AnswerOption.objects.create(question=q, label=letter, order=j, text=f"{letter}{i}", is_correct=(j == 0))
        out.append(q)
    return out


def correct_option(question):
    return question.options.get(is_correct=True)


def wrong_option(question):
    return question.options.filter(is_correct=False).first()


@pytest.fixture
def make_simulation(questions, admin_user):
    def _make(**kw):
        kw.setdefault("title", "Mock test")
        kw.setdefault("status", SimulationStatus.PUBLISHED)
        kw.setdefault("correct_points", 5)
        kw.setdefault("wrong_points", -1)
        kw.setdefault("duration_minutes", 30)
        sim = Simulation.objects.create(created_by=admin_user, **kw)
        for i, q in enumerate(questions, start=1):
            SimulationQuestion.objects.create(simulation=sim, question=q, order=i)
        return sim
    return _make


@pytest.fixture
def simulation(make_simulation, student):
    sim = make_simulation()
    SimulationAssignment.objects.create(simulation=sim, student=student)
    return sim


@pytest.fixture
def group(student, other_student):
    g = StudentGroup.objects.create(name="5A")
    GroupMember.objects.create(group=g, student=student)
    GroupMember.objects.create(group=g, student=other_student)
    return g


@pytest.fixture
def api():
    def _client(user=None):
        client = APIClient()
        if user is not None:
            client.force_authenticate(user=user)
        return client
    return _client
