"""
Exception taxonomy and the DRF exception handler.
"""
import logging
from django.db import IntegrityError
from rest_framework.views import exception_handler
from rest_framework.response import Response
from rest_framework import status

logger = logging.getLogger(__name__)


class BackOfficeException(Exception):
    """Base exception for back office errors."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = 'ERROR'

    def __init__(self, message, details=None, code=None):
        self.message = message
        self.details = details or {}
        if code:
            self.code = code
        super().__init__(self.message)


class ValidationError(BackOfficeException):
    """Raised when input is malformed or missing."""
    status_code = status.HTTP_400_BAD_REQUEST
    code = 'VALIDATION_ERROR'


class AuthorizationError(BackOfficeException):
    """Raised when an actor lacks standing for a structurally valid operation."""
    status_code = status.HTTP_403_FORBIDDEN
    code = 'FORBIDDEN'


class NotFoundError(BackOfficeException):
    """Raised when a referenced entity is absent or soft-deleted."""
    status_code = status.HTTP_404_NOT_FOUND
    code = 'NOT_FOUND'


class ConflictError(BackOfficeException):
    """Raised on uniqueness violations and invalid state transitions."""
    status_code = status.HTTP_409_CONFLICT
    code = 'CONFLICT'


class EntitlementError(BackOfficeException):
    """
    Raised when the company has not purchased the requested feature.

    Kept apart from AuthorizationError so callers can render an upsell
    message instead of a generic 403.
    """
    status_code = status.HTTP_403_FORBIDDEN
    code = 'NO_ENTITLEMENT'

    def __init__(self, message, details=None, code=None):
        details = dict(details or {})
        details.setdefault('no_entitlement', True)
        super().__init__(message, details=details, code=code)


class OverrideLimitExceeded(ValidationError):
    """Raised when a user already holds the maximum number of active overrides."""
    code = 'OVERRIDE_LIMIT_EXCEEDED'


def custom_exception_handler(exc, context):
    """
    Exception handler that logs errors and renders the standard envelope.

    Every error response has the shape
    {"success": false, "message": ..., "code": ..., "details": ..., "request_id": ...}.
    """
    request = context.get('request')
    request_id = getattr(request, 'request_id', None) if request else None
    log_extra = {
        'request_id': request_id,
        'path': request.path if request else None,
        'method': request.method if request else None,
    }

    if isinstance(exc, BackOfficeException):
        logger.warning(
            f"API error: {exc.__class__.__name__}",
            extra={**log_extra, 'error_message': exc.message, 'code': exc.code},
        )
        return Response(
            {
                'success': False,
                'message': exc.message,
                'code': exc.code,
                'details': exc.details,
                'request_id': request_id,
            },
            status=exc.status_code,
        )

    if isinstance(exc, IntegrityError):
        logger.warning("Uniqueness conflict", extra={**log_extra, 'exception': str(exc)})
        return Response(
            {
                'success': False,
                'message': 'Resource already exists',
                'code': ConflictError.code,
                'details': {},
                'request_id': request_id,
            },
            status=status.HTTP_409_CONFLICT,
        )

    # Call DRF's default exception handler for framework errors
    response = exception_handler(exc, context)

    if response is None:
        logger.error(
            f"API Exception: {exc.__class__.__name__}",
            extra={**log_extra, 'exception': str(exc)},
            exc_info=True,
        )
        return Response(
            {
                'success': False,
                'message': 'An unexpected error occurred',
                'code': BackOfficeException.code,
                'details': {},
                'request_id': request_id,
            },
            status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    data = response.data
    if isinstance(data, dict) and 'detail' in data:
        message = str(data['detail'])
        details = {}
    else:
        message = 'Invalid request'
        details = data
    response.data = {
        'success': False,
        'message': message,
        'code': getattr(getattr(exc, 'default_code', None), 'upper', lambda: 'ERROR')(),
        'details': details,
        'request_id': request_id,
    }
    return response
