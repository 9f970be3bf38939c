import logging
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

logger = logging.getLogger(__name__)


class HustlError(Exception):
    """Base class for errors raised by the job lifecycle and payment services."""
    status_code = status.HTTP_400_BAD_REQUEST
    default_code = 'ERROR'

    def __init__(self, message, code=None, field=None, details=None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.field = field
        self.details = details or {}

    def as_dict(self):
        data = {"error": self.message, "code": self.code}
        if self.field:
            data["field"] = self.field
        if self.details:
            data["details"] = self.details
        return data


class ValidationError(HustlError):
    """Bad input, rejected before any state is touched."""
    status_code = status.HTTP_400_BAD_REQUEST
    default_code = 'VALIDATION_ERROR'


class NotFoundError(HustlError):
    status_code = status.HTTP_404_NOT_FOUND
    default_code = 'NOT_FOUND'


class ForbiddenError(HustlError):
    status_code = status.HTTP_403_FORBIDDEN
    default_code = 'FORBIDDEN'


class ConflictError(HustlError):
    """A precondition on the current status or ownership failed."""
    status_code = status.HTTP_409_CONFLICT
    default_code = 'CONFLICT'


class PaymentGatewayError(HustlError):
    """
    Wraps a payment provider failure.

    `charged` is true when money moved before the failure was reported.
    """
    status_code = status.HTTP_402_PAYMENT_REQUIRED
    default_code = 'GATEWAY_ERROR'

    def __init__(self, message, code=None, field=None, details=None, charged=False):
        super().__init__(message, code=code, field=field, details=details)
        self.charged = charged

    def as_dict(self):
        data = super().as_dict()
        data["charged"] = self.charged
        return data


class InvariantViolation(HustlError):
    """Internal consistency check failed. Never expected in normal operation."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_code = 'INVARIANT_VIOLATION'

    def __init__(self, message, code=None, field=None, details=None):
        super().__init__(message, code=code, field=field, details=details)
        logger.critical(f"Invariant violation: {message} {self.details}")


def exception_handler(exc, context):
    """DRF exception handler that renders HustlError subclasses as structured errors."""
    if isinstance(exc, InvariantViolation):
        return Response(
            {"error": "Internal error, the operation was not completed", "code": exc.code},
            status=exc.status_code
        )
    if isinstance(exc, HustlError):
        return Response(exc.as_dict(), status=exc.status_code)
    return drf_exception_handler(exc, context)
