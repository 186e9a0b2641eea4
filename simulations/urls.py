# simulations/urls.py
from django.urls import path
from rest_framework.routers import DefaultRouter

from .views import (
    AttemptProgressView, AttemptResultView, AttemptStartView, AttemptSubmitView,
    LeaderboardView, MyResultsView, SimulationPlayView, SimulationSubmitView, SimulationViewSet,
)

router = DefaultRouter()
router.register(r"simulations", SimulationViewSet, basename="simulation")

urlpatterns = [
    path("simulations/<uuid:simulation_id>/play/", SimulationPlayView.as_view(), name="simulation-play"),
    path("simulations/<uuid:simulation_id>/start/", AttemptStartView.as_view(), name="simulation-start"),
    path("simulations/<uuid:simulation_id>/submit/", SimulationSubmitView.as_view(), name="simulation-submit"),
    path("simulations/<uuid:simulation_id>/leaderboard/", LeaderboardView.as_view(), name="simulation-leaderboard"),

    path("attempts/<uuid:attempt_id>/progress/", AttemptProgressView.as_view(), name="attempt-progress"),
    path("attempts/<uuid:attempt_id>/submit/", AttemptSubmitView.as_view(), name="attempt-submit"),
    path("attempts/<uuid:attempt_id>/result/", AttemptResultView.as_view(), name="attempt-result"),

    path("results/mine/", MyResultsView.as_view(), name="my-results"),
] + router.urls
