"""
Domain exceptions for the task-approval, invoice and payout pipeline.

All exceptions follow the standard error format:
{
    "error": {
        "code": "ERROR_CODE",
        "message": "Human-readable description",
        "details": {}
    }
"""

from rest_framework.views import exception_handler
from rest_framework.response import Response
from rest_framework import status
import logging

logger = logging.getLogger(__name__)


class DomainError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, code, message, details=None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(DomainError):
    """Validation error - request body or parameters fail validation."""

    def __init__(self, message, details=None, code="VALIDATION_ERROR"):
        super().__init__(code, message, details)


class InvalidStateError(DomainError):
    """Entity is not in the required state for the operation."""

    def __init__(self, message, details=None):
        super().__init__("INVALID_STATE", message, details)


class NotFoundError(DomainError):
    """Requested resource does not exist."""

    def __init__(self, message, details=None):
        super().__init__("NOT_FOUND", message, details)


class PermissionDeniedError(DomainError):
    """Actor lacks the role or ownership required for the operation."""

    def __init__(self, message, details=None):
        super().__init__("FORBIDDEN", message, details)


class CollisionExhaustedError(DomainError):
    """Identifier allocation collided on every permitted attempt."""

    def __init__(self, message, details=None):
        super().__init__("PROJECT_CREATION_COLLISION", message, details)


class AlreadyProcessedError(DomainError):
    """
    Idempotency marker already present.

    Success-shaped: callers replaying the same trigger get a no-op.
    """

    def __init__(self, message, details=None):
        super().__init__("ALREADY_PROCESSED", message, details)


class InsufficientBudgetError(DomainError):
    """Remaining project budget cannot cover the requested payout."""

    def __init__(self, message, details=None):
        super().__init__("INSUFFICIENT_BUDGET", message, details)


class StorageError(DomainError):
    """Underlying store failed. Reads may be retried, create-only writes may not."""

    def __init__(self, message, details=None):
        super().__init__("STORAGE_ERROR", message, details)


_REQUEST_ERROR_CODES = {
    status.HTTP_401_UNAUTHORIZED: "UNAUTHORIZED",
    status.HTTP_403_FORBIDDEN: "FORBIDDEN",
    status.HTTP_404_NOT_FOUND: "NOT_FOUND",
    status.HTTP_405_METHOD_NOT_ALLOWED: "METHOD_NOT_ALLOWED",
    status.HTTP_429_TOO_MANY_REQUESTS: "THROTTLED",
}


def domain_exception_handler(exc, context):
    """
    Custom exception handler for domain exceptions.

    Returns standard error format:
    {
        "error": {
            "code": "ERROR_CODE",
            "message": "Human-readable description",
            "details": {}
        }
    }

    AlreadyProcessedError is rendered as a no-op success so that operators
    replaying a webhook are not shown an error.
    """
    if isinstance(exc, AlreadyProcessedError):
        return Response(
            {"data": {"noop": True, "reason": exc.message, **exc.details}},
            status=status.HTTP_200_OK,
        )

    if isinstance(exc, DomainError):
        status_code_map = {
            "VALIDATION_ERROR": status.HTTP_400_BAD_REQUEST,
            "VALIDATION_FAILED": status.HTTP_400_BAD_REQUEST,
            "INVALID_STATE": status.HTTP_409_CONFLICT,
            "NOT_FOUND": status.HTTP_404_NOT_FOUND,
            "FORBIDDEN": status.HTTP_403_FORBIDDEN,
            "PROJECT_CREATION_COLLISION": status.HTTP_503_SERVICE_UNAVAILABLE,
            "INSUFFICIENT_BUDGET": status.HTTP_422_UNPROCESSABLE_ENTITY,
            "STORAGE_ERROR": status.HTTP_503_SERVICE_UNAVAILABLE,
        }

        status_code = status_code_map.get(exc.code, status.HTTP_400_BAD_REQUEST)

        return Response(
            {
                "error": {
                    "code": exc.code,
                    "message": exc.message,
                    "details": exc.details,
                }
            },
            status=status_code,
        )

    # Use default REST framework exception handler for other exceptions
    response = exception_handler(exc, context)

    if response is not None:
        if "detail" in response.data:
            error_data = {
                "error": {
                    "code": _REQUEST_ERROR_CODES.get(
                        response.status_code, "REQUEST_ERROR"
                    ),
                    "message": str(response.data["detail"]),
                    "details": {},
                }
            }
        else:
            error_data = {
                "error": {
                    "code": "VALIDATION_ERROR",
                    "message": "Request validation failed",
                    "details": response.data,
                }
            }

        response.data = error_data
        return response

    logger.exception("Unhandled exception", exc_info=exc)
    return Response(
        {
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An internal error occurred",
                "details": {},
            }
        },
        status=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
