"""
Marketplace accounts.

A user is exactly one of: FREELANCER (does the work and is paid),
COMMISSIONER (owns projects, approves tasks, triggers payouts) or ADMIN
(rollback and reconciliation). Admins double as Django superusers.
"""

import uuid
from django.contrib.auth.models import AbstractBaseUser, BaseUserManager
from django.db import models
from django.core.validators import RegexValidator

from . import services


class Role(models.TextChoices):
    ADMIN = "ADMIN"
    COMMISSIONER = "COMMISSIONER"
    FREELANCER = "FREELANCER"


class UserManager(BaseUserManager):
    def create_user(self, username, password=None, role=Role.FREELANCER, **extra):
        return services.create_user(
            user_model=self.model,
            username=username,
            password=password,
            role=role,
            using=self._db,
            **extra,
        )

    def create_superuser(self, username, password=None, **extra):
        extra.setdefault("role", Role.ADMIN)
        return self.create_user(username, password, **extra)


class User(AbstractBaseUser):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    username = models.CharField(
        max_length=150,
        unique=True,
        validators=[RegexValidator(regex=r"^[\w.@+-]+$")],
    )
    display_name = models.CharField(max_length=255)
    role = models.CharField(max_length=20, choices=Role.choices)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    USERNAME_FIELD = "username"
    REQUIRED_FIELDS = ["display_name", "role"]

    objects = UserManager()

    class Meta:
        db_table = "users"
        constraints = [
            models.CheckConstraint(
                condition=models.Q(role__in=Role.values),
                name="valid_role",
            )
        ]

    def __str__(self):
        return f"{self.username} ({self.role})"

    @property
    def is_admin(self):
        return self.role == Role.ADMIN

    is_staff = is_admin
    is_superuser = is_admin

    def has_perm(self, perm, obj=None):
        return self.is_admin

    def has_module_perms(self, app_label):
        return self.is_admin
