"""
Keyed entity store used by the payout pipeline.

Three primitives over the Django ORM:

- read: fetch by primary key, None when absent.
- create_only: insert, failing with AlreadyExists when the key is taken.
  This is the only atomic primitive the pipeline relies on. It runs inside
  a savepoint so a collision never poisons the caller's transaction.
- write: last-writer-wins update of an instance the caller owns.

advance_if_lower is the conditional update counters use: it only ever
moves a value forward.
"""

import logging

from django.db import DatabaseError, IntegrityError, transaction

from core.exceptions import StorageError

logger = logging.getLogger(__name__)


class AlreadyExists(StorageError):
    """create_only hit an existing key."""

    def __init__(self, message, details=None):
        super().__init__(message, details)


def read(model, pk, *, for_update=False):
    """Return the instance for pk, or None. Database failures raise StorageError."""
    try:
        queryset = model.objects.all()
        if for_update:
            queryset = queryset.select_for_update()
        return queryset.filter(pk=pk).first()
    except DatabaseError as exc:
        logger.exception(
            "store_read_failed",
            extra={"operation": "STORE_READ", "entity_id": str(pk)},
        )
        raise StorageError(
            f"Failed to read {model.__name__} {pk}",
            {"model": model.__name__, "key": str(pk)},
        ) from exc


def create_only(model, **fields):
    """
    Insert a new row, or raise AlreadyExists if a unique key is taken.

    Callers must not retry a create_only that raised StorageError: the
    insert may have landed.
    """
    try:
        with transaction.atomic():
            return model.objects.create(**fields)
    except IntegrityError as exc:
        raise AlreadyExists(
            f"{model.__name__} already exists",
            {"model": model.__name__, "fields": _describe(fields)},
        ) from exc
    except DatabaseError as exc:
        logger.exception(
            "store_create_failed",
            extra={"operation": "STORE_CREATE_ONLY", "entity_id": model.__name__},
        )
        raise StorageError(
            f"Failed to create {model.__name__}",
            {"model": model.__name__, "fields": _describe(fields)},
        ) from exc


def write(instance, **changes):
    """Apply changes to an instance and persist only those fields."""
    for field, value in changes.items():
        setattr(instance, field, value)
    try:
        instance.save(update_fields=list(changes))
    except DatabaseError as exc:
        logger.exception(
            "store_write_failed",
            extra={"operation": "STORE_WRITE", "entity_id": str(instance.pk)},
        )
        raise StorageError(
            f"Failed to write {type(instance).__name__} {instance.pk}",
            {"model": type(instance).__name__, "key": str(instance.pk)},
        ) from exc
    return instance


def advance_if_lower(queryset, field, value):
    """
    Set field to value on rows where it is currently lower.

    Returns the number of rows moved. Zero means another writer already
    advanced past value, which is never an error for monotonic counters.
    """
    try:
        return queryset.filter(**{f"{field}__lt": value}).update(**{field: value})
    except DatabaseError as exc:
        raise StorageError(
            "Failed to advance counter",
            {"field": field, "value": value},
        ) from exc


def _describe(fields):
    return {
        key: str(getattr(value, "pk", value))
        for key, value in fields.items()
        if not key.startswith("_")
    }
