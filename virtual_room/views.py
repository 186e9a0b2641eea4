# virtual_room/views.py
import json
import logging

from django.core.exceptions import ValidationError as DjangoValidationError
from django.http import JsonResponse, StreamingHttpResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_POST
from rest_framework import permissions, serializers, status
from rest_framework.exceptions import NotFound
from rest_framework.response import Response
from rest_framework.views import APIView

from accounts.authentication import user_from_raw_token
from accounts.permissions import IsStaff, IsStudent, is_staff_user
from common.enums import CheatingEventType
from . import services
from .models import SessionParticipant, SimulationSession
from .state import session_state
from .stream import event_stream

logger = logging.getLogger(__name__)


# ---------- input serializers ----------
class AssignmentIn(serializers.Serializer):
    assignment_id = serializers.UUIDField()


class StartSessionIn(serializers.Serializer):
    force_start = serializers.BooleanField(default=False)


class KickIn(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, max_length=255)


class HeartbeatIn(serializers.Serializer):
    current_question_index = serializers.IntegerField(required=False, min_value=0)
    answered_count = serializers.IntegerField(required=False, min_value=0)


class CheatingEventIn(serializers.Serializer):
    event_type = serializers.ChoiceField(choices=CheatingEventType.choices)
    description = serializers.CharField(required=False, allow_blank=True, max_length=500)
    metadata = serializers.DictField(required=False)


class MessageIn(serializers.Serializer):
    message = serializers.CharField(min_length=1, max_length=1000)


class LinkAttemptIn(serializers.Serializer):
    attempt_id = serializers.UUIDField()


# ---------- staff ----------
class SessionForAssignmentView(APIView):
    """
    POST /api/virtual-room/sessions/
    Body: { "assignment_id": "<uuid>" }
    """
    permission_classes = [permissions.IsAuthenticated, IsStaff]

    def post(self, request):
        ser = AssignmentIn(data=request.data)
        ser.is_valid(raise_exception=True)
        session, created = services.get_or_create_session(ser.validated_data["assignment_id"], by=request.user)
        return Response(
            {"session_id": str(session.id), "status": session.status, "created": created},
            status=status.HTTP_201_CREATED if created else status.HTTP_200_OK,
        )


class SessionStartView(APIView):
    permission_classes = [permissions.IsAuthenticated, IsStaff]

    def post(self, request, session_id):
        ser = StartSessionIn(data=request.data)
        ser.is_valid(raise_exception=True)
        return Response(services.start_session(session_id, request.user, ser.validated_data["force_start"]))


class SessionEndView(APIView):
    permission_classes = [permissions.IsAuthenticated, IsStaff]

    def post(self, request, session_id):
        return Response(services.end_session(session_id))


class SessionStateView(APIView):
    """
    GET /api/virtual-room/sessions/<id>/state/?participant_id=<uuid>
    """
    permission_classes = [permissions.IsAuthenticated, IsStaff]

    def get(self, request, session_id):
        data = session_state(session_id, request.query_params.get("participant_id"))
        if data is None:
            raise NotFound("Session not found.")
        return Response(data)


class KickParticipantView(APIView):
    permission_classes = [permissions.IsAuthenticated, IsStaff]

    def post(self, request, participant_id):
        ser = KickIn(data=request.data)
        ser.is_valid(raise_exception=True)
        return Response(services.kick_participant(participant_id, ser.validated_data.get("reason", "")))


# ---------- student ----------
class JoinSessionView(APIView):
    permission_classes = [permissions.IsAuthenticated, IsStudent]

    def post(self, request):
        ser = AssignmentIn(data=request.data)
        ser.is_valid(raise_exception=True)
        return Response(services.join_session(ser.validated_data["assignment_id"], request.user))


class StudentSessionStatusView(APIView):
    permission_classes = [permissions.IsAuthenticated, IsStudent]

    def get(self, request, assignment_id):
        return Response(services.student_session_status(assignment_id, request.user))


class HeartbeatView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, participant_id):
        p = services.participant_for(request.user, participant_id)
        ser = HeartbeatIn(data=request.data)
        ser.is_valid(raise_exception=True)
        return Response(services.heartbeat(p, **ser.validated_data))


class ReadyView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, participant_id):
        return Response(services.set_ready(services.participant_for(request.user, participant_id)))


class CheatingEventView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, participant_id):
        p = services.participant_for(request.user, participant_id)
        ser = CheatingEventIn(data=request.data)
        ser.is_valid(raise_exception=True)
        return Response(services.log_cheating_event(p, **ser.validated_data), status=status.HTTP_201_CREATED)


class MessagesView(APIView):
    """
    GET  /api/virtual-room/participants/<id>/messages/
    POST /api/virtual-room/participants/<id>/messages/   Body: { "message": "..." }
    """
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request, participant_id):
        return Response(services.messages_for(services.participant_for(request.user, participant_id)))

    def post(self, request, participant_id):
        p = services.participant_for(request.user, participant_id)
        ser = MessageIn(data=request.data)
        ser.is_valid(raise_exception=True)
        return Response(
            services.send_message(request.user, p, ser.validated_data["message"]),
            status=status.HTTP_201_CREATED,
        )


class MessagesReadView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, participant_id):
        p = services.participant_for(request.user, participant_id)
        return Response(services.mark_messages_read(request.user, p))


class RankingsView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request, session_id):
        return Response(services.rankings(session_id, request.user))


class DisconnectView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, participant_id):
        p = services.participant_for(request.user, participant_id)
        return Response(services.disconnect_participant(p.pk))


class LinkAttemptView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, participant_id):
        p = services.participant_for(request.user, participant_id)
        ser = LinkAttemptIn(data=request.data)
        ser.is_valid(raise_exception=True)
        return Response(services.link_attempt(p, ser.validated_data["attempt_id"]))


class MarkCompletedView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, participant_id):
        return Response(services.mark_completed(services.participant_for(request.user, participant_id)))


# ---------- push stream / beacon (plain Django views) ----------
def _raw_token(request):
    token = request.GET.get("token")
    if token:
        return token
    header = request.META.get("HTTP_AUTHORIZATION", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip()
    return None


@require_GET
def session_stream(request, session_id):
    """
    GET /virtual-room/<session_id>/stream?token=<access>&participantId=<uuid>
    EventSource cannot send headers, so the access token rides in the query.
    """
    user = user_from_raw_token(_raw_token(request))
    if user is None:
        return JsonResponse({"error": "Unauthorized"}, status=401)

    session = SimulationSession.objects.filter(pk=session_id).first()
    if session is None:
        return JsonResponse({"error": "Session not found"}, status=404)

    participant_id = request.GET.get("participantId") or None
    if not is_staff_user(user):
        own = SessionParticipant.objects.filter(session=session, student=user)
        if participant_id:
            own = own.filter(pk=participant_id)
        if not own.exists():
            return JsonResponse({"error": "Forbidden"}, status=403)

    response = StreamingHttpResponse(event_stream(str(session.id), participant_id),
                                     content_type="text/event-stream")
    response["Cache-Control"] = "no-cache, no-transform"
    response["X-Accel-Buffering"] = "no"
    return response


@csrf_exempt
@require_POST
def disconnect_beacon(request):
    """
    POST /virtual-room/disconnect   Body (text/plain JSON): { "participantId": "<uuid>" }
    Sent by navigator.sendBeacon on page unload, so the answer is always 200.
    """
    try:
        body = json.loads(request.body.decode("utf-8") or "{}")
        participant_id = body.get("participantId") if isinstance(body, dict) else None
        if not participant_id:
            return JsonResponse({"success": False, "error": "participantId required"})
        result = services.disconnect_participant(participant_id)
    except (ValueError, DjangoValidationError, SessionParticipant.DoesNotExist):
        # bad JSON, malformed id or unknown participant
        logger.warning("disconnect beacon rejected", exc_info=True)
        return JsonResponse({"success": False})
    except Exception:
        logger.exception("disconnect beacon failed")
        return JsonResponse({"success": False})
    return JsonResponse({"success": True, "messages_deleted": result["messages_deleted"]})
