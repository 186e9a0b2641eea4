# accounts/permissions.py
from rest_framework.permissions import BasePermission

from common.enums import Role


def _role(user):
    return getattr(user, "role", None)


class IsAdmin(BasePermission):
    def has_permission(self, request, view):
        return bool(request.user and request.user.is_authenticated and (_role(request.user) == Role.ADMIN or request.user.is_staff))


class IsCollaborator(BasePermission):
    def has_permission(self, request, view):
        return bool(request.user and request.user.is_authenticated and _role(request.user) == Role.COLLABORATOR)


class IsStudent(BasePermission):
    def has_permission(self, request, view):
        return bool(request.user and request.user.is_authenticated and _role(request.user) == Role.STUDENT)


class IsStaff(BasePermission):
    """
    Admin or collaborator (the school staff).
    """
    def has_permission(self, request, view):
        return IsAdmin().has_permission(request, view) or IsCollaborator().has_permission(request, view)


def is_staff_user(user) -> bool:
    return bool(user and user.is_authenticated and (user.is_staff or _role(user) in (Role.ADMIN, Role.COLLABORATOR)))
