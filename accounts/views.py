# accounts/views.py
from django.contrib.auth import authenticate
from rest_framework import permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import ValidationError
from rest_framework.response import Response
from rest_framework.views import APIView
from rest_framework_simplejwt.tokens import RefreshToken

from accounts.models import GroupMember, Notification, StudentGroup, User
from accounts.permissions import IsStaff
from common.enums import Role
from .serializers import (
    LoginEmailPasswordSerializer, NotificationSerializer, StudentGroupSerializer, UserSerializer,
)


class LoginEmailPasswordView(APIView):
    """
    POST /api/auth/login/
    Body: { "email": "user@example.com", "password": "secret" }

    Returns JWT access/refresh on success.
    """
    permission_classes = [permissions.AllowAny]

    def post(self, request):
        ser = LoginEmailPasswordSerializer(data=request.data)
        ser.is_valid(raise_exception=True)

        email = ser.validated_data["email"].strip().lower()
        password = ser.validated_data["password"]

        user = User.objects.filter(email__iexact=email).first()
        if not user:
            raise ValidationError("Invalid email or password.")

        if not user.is_active:
            raise ValidationError("This account is inactive.")

        auth_user = authenticate(request, username=user.username, password=password)
        if not auth_user:
            raise ValidationError("Invalid email or password.")

        refresh = RefreshToken.for_user(auth_user)
        return Response(
            {
                "user": UserSerializer(auth_user).data,
                "access": str(refresh.access_token),
                "refresh": str(refresh),
            },
            status=status.HTTP_200_OK,
        )


class MeView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request):
        return Response(UserSerializer(request.user).data)


class NotificationViewSet(viewsets.ReadOnlyModelViewSet):
    """
    Current user's in-app notifications.
    """
    serializer_class = NotificationSerializer
    permission_classes = [permissions.IsAuthenticated]

    def get_queryset(self):
        return Notification.objects.filter(recipient=self.request.user)

    @action(detail=False, methods=["post"], url_path="mark-read")
    def mark_read(self, request):
        ids = request.data.get("ids")
        qs = self.get_queryset().filter(is_read=False)
        if ids:
            qs = qs.filter(id__in=ids)
        updated = qs.update(is_read=True)
        return Response({"updated": updated})


class StudentGroupViewSet(viewsets.ModelViewSet):
    """
    Staff-managed student groups (assignment targets).
    POST /api/groups/<id>/members/   Body: { "student_ids": [3, 7] }
    """
    serializer_class = StudentGroupSerializer
    permission_classes = [permissions.IsAuthenticated, IsStaff]
    queryset = StudentGroup.objects.prefetch_related("members").order_by("name")

    @action(detail=True, methods=["post"])
    def members(self, request, pk=None):
        group = self.get_object()
        ids = request.data.get("student_ids") or []
        students = list(User.objects.filter(pk__in=ids, role=Role.STUDENT))
        if len(students) != len(set(ids)):
            raise ValidationError("Every id must belong to an existing student.")
        for s in students:
            GroupMember.objects.get_or_create(group=group, student=s)
        return Response(StudentGroupSerializer(self.get_object()).data)
