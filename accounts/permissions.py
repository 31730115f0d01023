from rest_framework import permissions

from .models import UserRole


class IsAdmin(permissions.BasePermission):
    """
    Allows access only to clinic Admins (or superusers).
    """
    message = "Only administrators can perform this action."

    def has_permission(self, request, view):
        user = request.user
        if not (user and user.is_authenticated):
            return False
        return user.is_superuser or user.user_role == UserRole.ADMIN


class IsFrontDeskStaff(permissions.BasePermission):
    """
    Admins, secretaries and dentists: anyone who handles patient records.
    """

    def has_permission(self, request, view):
        user = request.user
        if not (user and user.is_authenticated):
            return False
        return user.is_superuser or user.user_role in (
            UserRole.ADMIN,
            UserRole.SECRETARY,
            UserRole.DENTIST,
        )
