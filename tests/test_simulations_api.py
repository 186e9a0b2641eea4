import pytest

from accounts.models import Notification
from common.enums import SimulationStatus
from simulations.models import Attempt, Simulation, SimulationAssignment
from tests.conftest import correct_option

pytestmark = pytest.mark.django_db


# --- student play ---

def test_start_endpoint_creates_then_resumes(api, simulation, student):
    client = api(student)
    url = f"/api/simulations/{simulation.id}/start/"

    first = client.post(url)
    assert first.status_code == 201
    assert first.data["resumed"] is False
    assert len(first.data["questions"]) == 4
    assert first.data["autosave"] == {"interval_seconds": 30, "failure_alert": 3}

    second = client.post(url)
    assert second.status_code == 200
    assert second.data["attempt_id"] == first.data["attempt_id"]


def test_staff_cannot_use_student_endpoints(api, simulation, admin_user):
    resp = api(admin_user).post(f"/api/simulations/{simulation.id}/start/")
    assert resp.status_code == 403


def test_progress_then_submit_over_http(api, simulation, student, questions):
    client = api(student)
    attempt_id = client.post(f"/api/simulations/{simulation.id}/start/").data["attempt_id"]

    answers = [{"question_id": str(q.id), "selected_option_id": str(correct_option(q).id)} for q in questions[:3]]
    saved = client.post(f"/api/attempts/{attempt_id}/progress/", {"answers": answers, "elapsed_seconds": 50},
                        format="json")
    assert saved.status_code == 200
    assert saved.data["saved"] is True

    done = client.post(f"/api/attempts/{attempt_id}/submit/", {"reason": "TIMEOUT"}, format="json")
    assert done.status_code == 200
    assert done.data["total_score"] == 15
    assert done.data["submit_reason"] == "TIMEOUT"

    again = client.post(f"/api/attempts/{attempt_id}/submit/", {}, format="json")
    assert again.data["already_submitted"] is True

    result = client.get(f"/api/attempts/{attempt_id}/result/")
    assert result.status_code == 200
    assert result.data["best_subject"]["subject"] == "Biology"


def test_submit_by_simulation_without_start(api, make_simulation, student):
    sim = make_simulation(is_public=True)
    resp = api(student).post(f"/api/simulations/{sim.id}/submit/", {}, format="json")
    assert resp.status_code == 200
    assert resp.data["blank_count"] == 4
    assert Attempt.objects.filter(simulation=sim, student=student).count() == 1


def test_other_students_result_is_forbidden(api, simulation, student, other_student):
    attempt_id = api(student).post(f"/api/simulations/{simulation.id}/start/").data["attempt_id"]
    resp = api(other_student).get(f"/api/attempts/{attempt_id}/result/")
    assert resp.status_code in (403, 404)


def test_my_results_is_paginated(api, simulation, student):
    client = api(student)
    client.post(f"/api/simulations/{simulation.id}/submit/", {}, format="json")
    resp = client.get("/api/results/mine/")
    assert resp.status_code == 200
    assert resp.data["count"] == 1
    assert resp.data["results"][0]["simulation_title"] == simulation.title


def test_my_results_blank_scores_of_private_simulations(api, make_simulation, student):
    sim = make_simulation(show_results=False, is_public=True)
    client = api(student)
    submitted = client.post(f"/api/simulations/{sim.id}/submit/", {}, format="json")
    assert submitted.data["results_hidden"] is True

    row = client.get("/api/results/mine/").data["results"][0]
    assert row["total_score"] is None
    assert row["passed"] is None
    assert row["simulation_title"] == sim.title


# --- staff management ---

def test_rubric_is_locked_once_attempts_exist(api, simulation, student, admin_user):
    api(student).post(f"/api/simulations/{simulation.id}/start/")
    client = api(admin_user)

    resp = client.patch(f"/api/simulations/{simulation.id}/", {"wrong_points": -0.5}, format="json")
    assert resp.status_code == 409

    ok = client.patch(f"/api/simulations/{simulation.id}/", {"title": "Renamed"}, format="json")
    assert ok.status_code == 200
    assert client.delete(f"/api/simulations/{simulation.id}/").status_code == 409


def test_publish_requires_questions(api, admin_user):
    sim = Simulation.objects.create(title="Empty", created_by=admin_user)
    resp = api(admin_user).post(f"/api/simulations/{sim.id}/publish/")
    assert resp.status_code == 400
    sim.refresh_from_db()
    assert sim.status == SimulationStatus.DRAFT


def test_assignment_needs_exactly_one_target(api, make_simulation, admin_user, student, group):
    sim = make_simulation()
    url = f"/api/simulations/{sim.id}/assignments/"
    resp = api(admin_user).post(url, {"student": student.pk, "group": str(group.id)}, format="json")
    assert resp.status_code == 400


def test_assignment_notifies_students(api, make_simulation, admin_user, group, django_capture_on_commit_callbacks):
    sim = make_simulation()
    with django_capture_on_commit_callbacks(execute=True):
        resp = api(admin_user).post(f"/api/simulations/{sim.id}/assignments/", {"group": str(group.id)},
                                    format="json")
    assert resp.status_code == 201
    assert Notification.objects.count() == 2


# --- paper results ---

@pytest.fixture
def paper_sim(make_simulation, student, other_student):
    sim = make_simulation(is_paper_based=True, passing_score=5)
    SimulationAssignment.objects.create(simulation=sim, student=student)
    SimulationAssignment.objects.create(simulation=sim, student=other_student)
    return sim


def test_paper_students_lists_assigned_students(api, paper_sim, admin_user):
    resp = api(admin_user).get(f"/api/simulations/{paper_sim.id}/paper-students/")
    assert resp.status_code == 200
    assert [s["name"] for s in resp.data["students"]] == ["Anna Rossi", "Luca Bianchi"]
    assert resp.data["total_students"] == 2
    assert resp.data["completed_count"] == 0
    assert len(resp.data["questions"][0]["options"]) == 4


def test_paper_result_is_scored_and_never_overwritten(api, paper_sim, admin_user, student, questions):
    client = api(admin_user)
    url = f"/api/simulations/{paper_sim.id}/paper-results/"
    body = {
        "student_id": student.pk,
        "answers": [{"question_id": str(questions[0].id), "selected_option_id": str(correct_option(questions[0]).id)}],
    }

    first = client.post(url, body, format="json")
    assert first.status_code == 201
    assert first.data["total_score"] == 5
    assert first.data["passed"] is True
    assert first.data["blank_count"] == 3

    dup = client.post(url, body, format="json")
    assert dup.status_code == 409


def test_absent_student_gets_blank_zero_result(api, paper_sim, admin_user, other_student):
    resp = api(admin_user).post(
        f"/api/simulations/{paper_sim.id}/paper-results/",
        {"student_id": other_student.pk, "was_present": False},
        format="json",
    )
    assert resp.status_code == 201
    assert resp.data["total_score"] == 0
    assert resp.data["blank_count"] == 4
    assert resp.data["was_present"] is False
    assert resp.data["passed"] is False


def test_unknown_student_is_404(api, paper_sim, admin_user):
    resp = api(admin_user).post(f"/api/simulations/{paper_sim.id}/paper-results/", {"student_id": 99999},
                                format="json")
    assert resp.status_code == 404


def test_paper_endpoints_reject_online_simulations(api, simulation, admin_user):
    resp = api(admin_user).get(f"/api/simulations/{simulation.id}/paper-students/")
    assert resp.status_code == 400
