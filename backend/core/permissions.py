"""
Permission classes for role-based access control.

Role is read from request.user (authenticated via JWT).
Role is NEVER read from request body, query parameters, or headers.
Ownership (commissioner of *this* project, freelancer of *this* task) is
checked in the service layer, not here.
"""

from rest_framework import permissions


def current_actor(request):
    """
    Resolve the authenticated actor for a request.

    Returns:
        dict | None: {"userId": UUID, "role": str}, or None when the
        request is anonymous. Session issuance lives in apps.auth.
    """
    user = getattr(request, "user", None)
    if not user or not user.is_authenticated or not hasattr(user, "role"):
        return None
    return {"userId": user.id, "role": user.role}


class _RolePermission(permissions.BasePermission):
    allowed_roles = ()

    def has_permission(self, request, view):
        actor = current_actor(request)
        if actor is None:
            return False
        return actor["role"] in self.allowed_roles


class IsCommissioner(_RolePermission):
    """Allow COMMISSIONER role only."""

    allowed_roles = ("COMMISSIONER",)


class IsFreelancer(_RolePermission):
    """Allow FREELANCER role only."""

    allowed_roles = ("FREELANCER",)


class IsAdmin(_RolePermission):
    """Allow ADMIN role only."""

    allowed_roles = ("ADMIN",)


class IsAuthenticatedReadOnly(permissions.BasePermission):
    """Allow any known role for GET requests."""

    def has_permission(self, request, view):
        actor = current_actor(request)
        if actor is None:
            return False

        if request.method == "GET":
            return actor["role"] in ("FREELANCER", "COMMISSIONER", "ADMIN")

        return False
