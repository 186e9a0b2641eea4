# simulations/views.py
import logging

from django.conf import settings
from django.db import transaction
from django.shortcuts import get_object_or_404
from django_filters.rest_framework import DjangoFilterBackend
from rest_framework import generics, permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import ValidationError
from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response
from rest_framework.views import APIView

from accounts.permissions import IsStaff, IsStudent
from common.enums import SimulationStatus
from common.exceptions import Conflict
from .models import Attempt, Simulation
from .serializers import (
    AttemptResultSerializer, PaperResultInSerializer, SaveProgressInSerializer,
    SimulationAssignmentSerializer, SimulationSerializer, SubmitInSerializer,
)
from .services import attempts as attempt_service
from .services import paper as paper_service
from .tasks import notify_simulation_assigned

logger = logging.getLogger(__name__)

# edits to these are refused once any attempt references the simulation
LOCKED_FIELDS = {
    "correct_points", "wrong_points", "blank_points", "use_question_points",
    "passing_score", "max_score", "questions",
}


class SmallPage(PageNumberPagination):
    page_size = 20
    page_size_query_param = "page_size"
    max_page_size = 200


# --- Staff ---

class SimulationViewSet(viewsets.ModelViewSet):
    queryset = Simulation.objects.all().order_by("-created_at")
    serializer_class = SimulationSerializer
    permission_classes = [permissions.IsAuthenticated, IsStaff]
    pagination_class = SmallPage
    filter_backends = [DjangoFilterBackend]
    filterset_fields = ["status", "is_official", "is_paper_based", "access_type"]

    def perform_create(self, serializer):
        serializer.save(created_by=self.request.user)

    def perform_update(self, serializer):
        sim = serializer.instance
        touched = LOCKED_FIELDS & set(self.request.data.keys())
        if touched and sim.is_locked:
            raise Conflict(f"Simulation has attempts; cannot change {', '.join(sorted(touched))}.")
        serializer.save()

    def perform_destroy(self, instance):
        if instance.is_locked:
            raise Conflict("Simulation has attempts and cannot be deleted.")
        instance.delete()

    @action(detail=True, methods=["post"])
    def publish(self, request, pk=None):
        sim = self.get_object()
        if not sim.questions.exists():
            raise ValidationError("Add at least one question before publishing.")
        sim.status = SimulationStatus.PUBLISHED
        sim.save(update_fields=["status", "updated_at"])
        return Response({"id": str(sim.id), "status": sim.status})

    @action(detail=True, methods=["post"])
    def archive(self, request, pk=None):
        sim = self.get_object()
        sim.status = SimulationStatus.ARCHIVED
        sim.save(update_fields=["status", "updated_at"])
        return Response({"id": str(sim.id), "status": sim.status})

    @action(detail=True, methods=["get", "post"])
    def assignments(self, request, pk=None):
        sim = self.get_object()
        if request.method == "GET":
            return Response(SimulationAssignmentSerializer(sim.assignments.order_by("-created_at"), many=True).data)

        ser = SimulationAssignmentSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        with transaction.atomic():
            assignment = ser.save(simulation=sim, assigned_by=request.user)
            transaction.on_commit(lambda: notify_simulation_assigned.delay(str(assignment.id)))
        return Response(SimulationAssignmentSerializer(assignment).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=["get"], url_path="paper-students")
    def paper_students(self, request, pk=None):
        return Response(paper_service.paper_based_students(self.get_object()))

    @action(detail=True, methods=["post"], url_path="paper-results")
    def paper_results(self, request, pk=None):
        """
        POST /api/simulations/<id>/paper-results/
        Body: { "student_id": 7, "was_present": true,
                "answers": [{"question_id": "...", "selected_option_id": "..."|null}] }
        """
        ser = PaperResultInSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        data = paper_service.create_paper_result(
            self.get_object(),
            ser.validated_data["student_id"],
            answers=ser.validated_data["answers"],
            was_present=ser.validated_data["was_present"],
            entered_by=request.user,
        )
        return Response(data, status=status.HTTP_201_CREATED)


# --- Student play ---

class SimulationPlayView(APIView):
    """
    GET /api/simulations/<id>/play/
    Questions without correctness, attempt counters and due date.
    """
    permission_classes = [permissions.IsAuthenticated, IsStudent]

    def get(self, request, simulation_id):
        sim = get_object_or_404(Simulation, pk=simulation_id)
        return Response(attempt_service.get_simulation_for_student(sim, request.user))


class AttemptStartView(APIView):
    """
    POST /api/simulations/<id>/start/
    Creates the attempt or resumes the in-progress one.
    """
    permission_classes = [permissions.IsAuthenticated, IsStudent]

    def post(self, request, simulation_id):
        sim = get_object_or_404(Simulation, pk=simulation_id)
        attempt, resumed = attempt_service.start_attempt(sim, request.user)
        data = attempt_service.attempt_state(attempt)
        data["resumed"] = resumed
        data["autosave"] = {
            "interval_seconds": settings.SIMULATION_AUTOSAVE_SECONDS,
            "failure_alert": settings.SIMULATION_AUTOSAVE_FAILURE_ALERT,
        }
        data["questions"] = attempt_service.questions_for_attempt(sim, attempt.id)
        return Response(data, status=status.HTTP_200_OK if resumed else status.HTTP_201_CREATED)


class AttemptProgressView(APIView):
    """
    POST /api/attempts/<id>/progress/
    Body: { "answers": [...], "elapsed_seconds": 120 }
    """
    permission_classes = [permissions.IsAuthenticated, IsStudent]

    def post(self, request, attempt_id):
        attempt = get_object_or_404(Attempt, pk=attempt_id, student=request.user)
        ser = SaveProgressInSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        data = attempt_service.save_progress(
            attempt, request.user,
            answers=ser.validated_data.get("answers"),
            elapsed_seconds=ser.validated_data.get("elapsed_seconds"),
        )
        return Response(data)


class AttemptSubmitView(APIView):
    """
    POST /api/attempts/<id>/submit/
    Body: { "answers": [...], "elapsed_seconds": 1800, "reason": "MANUAL"|"TIMEOUT" }
    Safe to repeat: a submitted attempt answers with its stored result.
    """
    permission_classes = [permissions.IsAuthenticated, IsStudent]

    def post(self, request, attempt_id):
        attempt = get_object_or_404(Attempt, pk=attempt_id, student=request.user)
        ser = SubmitInSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        data = attempt_service.submit_attempt(
            attempt, request.user,
            answers=ser.validated_data.get("answers"),
            elapsed_seconds=ser.validated_data.get("elapsed_seconds"),
            reason=ser.validated_data["reason"],
        )
        return Response(data)


class SimulationSubmitView(APIView):
    permission_classes = [permissions.IsAuthenticated, IsStudent]

    def post(self, request, simulation_id):
        sim = get_object_or_404(Simulation, pk=simulation_id)
        ser = SubmitInSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        data = attempt_service.submit_simulation(
            sim, request.user,
            answers=ser.validated_data.get("answers"),
            elapsed_seconds=ser.validated_data.get("elapsed_seconds"),
            reason=ser.validated_data["reason"],
        )
        return Response(data)


class AttemptResultView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request, attempt_id):
        attempt = get_object_or_404(Attempt.objects.select_related("simulation"), pk=attempt_id)
        return Response(attempt_service.result_details(attempt, request.user))


class MyResultsView(generics.ListAPIView):
    """
    GET /api/results/mine/?simulation=<id>&passed=true
    """
    serializer_class = AttemptResultSerializer
    permission_classes = [permissions.IsAuthenticated]
    pagination_class = SmallPage
    filter_backends = [DjangoFilterBackend]
    filterset_fields = ["simulation", "passed", "is_paper_based"]

    def get_queryset(self):
        return attempt_service.my_results(self.request.user)


class LeaderboardView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request, simulation_id):
        sim = get_object_or_404(Simulation, pk=simulation_id)
        try:
            limit = int(request.query_params.get("limit", 50))
            limit = max(1, min(200, limit))
        except ValueError:
            limit = 50
        return Response(attempt_service.leaderboard(sim, request.user, limit=limit))
