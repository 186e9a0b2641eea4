# virtual_room/urls.py
from django.urls import path

from .views import (
    CheatingEventView, DisconnectView, HeartbeatView, JoinSessionView, KickParticipantView,
    LinkAttemptView, MarkCompletedView, MessagesReadView, MessagesView, RankingsView, ReadyView,
    SessionEndView, SessionForAssignmentView, SessionStartView, SessionStateView, StudentSessionStatusView,
    disconnect_beacon, session_stream,
)

# mounted under /api/virtual-room/
api_urlpatterns = [
    path("sessions/", SessionForAssignmentView.as_view(), name="vr-session-for-assignment"),
    path("sessions/<uuid:session_id>/start/", SessionStartView.as_view(), name="vr-session-start"),
    path("sessions/<uuid:session_id>/end/", SessionEndView.as_view(), name="vr-session-end"),
    path("sessions/<uuid:session_id>/state/", SessionStateView.as_view(), name="vr-session-state"),
    path("sessions/<uuid:session_id>/rankings/", RankingsView.as_view(), name="vr-session-rankings"),

    path("join/", JoinSessionView.as_view(), name="vr-join"),
    path("assignments/<uuid:assignment_id>/status/", StudentSessionStatusView.as_view(), name="vr-student-status"),

    path("participants/<uuid:participant_id>/heartbeat/", HeartbeatView.as_view(), name="vr-heartbeat"),
    path("participants/<uuid:participant_id>/ready/", ReadyView.as_view(), name="vr-ready"),
    path("participants/<uuid:participant_id>/kick/", KickParticipantView.as_view(), name="vr-kick"),
    path("participants/<uuid:participant_id>/cheating-events/", CheatingEventView.as_view(), name="vr-cheating"),
    path("participants/<uuid:participant_id>/messages/", MessagesView.as_view(), name="vr-messages"),
    path("participants/<uuid:participant_id>/messages/read/", MessagesReadView.as_view(), name="vr-messages-read"),
    path("participants/<uuid:participant_id>/disconnect/", DisconnectView.as_view(), name="vr-disconnect"),
    path("participants/<uuid:participant_id>/attempt/", LinkAttemptView.as_view(), name="vr-link-attempt"),
    path("participants/<uuid:participant_id>/completed/", MarkCompletedView.as_view(), name="vr-completed"),
]

# mounted under /virtual-room/ (EventSource and sendBeacon clients)
urlpatterns = [
    path("<uuid:session_id>/stream", session_stream, name="vr-stream"),
    path("disconnect", disconnect_beacon, name="vr-beacon"),
]
