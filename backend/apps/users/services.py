"""
Service-layer functions for the Users app.

Account creation and role lookups used by the project workflow.
"""

from __future__ import annotations

from typing import Any, Optional, Type

from core.exceptions import NotFoundError, ValidationError

VALID_ROLES = ("FREELANCER", "COMMISSIONER", "ADMIN")


def create_user(
    *,
    user_model: Type[Any],
    username: str,
    password: Optional[str] = None,
    display_name: Optional[str] = None,
    role: str = "FREELANCER",
    using: Optional[str] = None,
    **extra_fields: Any,
):
    """Create and persist a user. Unknown roles are rejected."""
    if not username:
        raise ValueError("The username field must be set")
    if role not in VALID_ROLES:
        raise ValueError(f"Unknown role: {role}")

    user = user_model(
        username=username,
        display_name=display_name or username,
        role=role,
        **extra_fields,
    )
    user.set_password(password)
    user.save(using=using)
    return user


def require_role(user_id, role: str):
    """
    Load a user that must hold ``role``.

    Raises:
        NotFoundError: no such user
        ValidationError: the user holds another role
    """
    from apps.users.models import User

    user = User.objects.filter(id=user_id).first()
    if user is None:
        raise NotFoundError(f"User {user_id} does not exist")
    if user.role != role:
        raise ValidationError(
            f"User {user_id} is not a {role.lower()}",
            {"user_id": str(user_id), "role": user.role},
        )
    return user
