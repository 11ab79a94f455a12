"""
Tests for the exception taxonomy and the error envelope.
"""
from django.db import IntegrityError
from django.test import RequestFactory
from rest_framework.exceptions import NotAuthenticated

from apps.core.exceptions import (
    AuthorizationError,
    ConflictError,
    EntitlementError,
    NotFoundError,
    OverrideLimitExceeded,
    ValidationError,
    custom_exception_handler,
)


def _context(request_id='req-1'):
    request = RequestFactory().post('/v1/rbac/roles')
    request.request_id = request_id
    return {'request': request}


class TestExceptionTaxonomy:

    def test_status_codes(self):
        assert ValidationError('x').status_code == 400
        assert AuthorizationError('x').status_code == 403
        assert EntitlementError('x').status_code == 403
        assert NotFoundError('x').status_code == 404
        assert ConflictError('x').status_code == 409

    def test_entitlement_error_is_distinguishable(self):
        error = EntitlementError('Feature not included', details={'module_id': 'm-1'})

        assert not isinstance(error, AuthorizationError)
        assert error.details == {'module_id': 'm-1', 'no_entitlement': True}

    def test_override_limit_is_a_validation_error(self):
        error = OverrideLimitExceeded('Too many')

        assert isinstance(error, ValidationError)
        assert error.code == 'OVERRIDE_LIMIT_EXCEEDED'


class TestCustomExceptionHandler:

    def test_domain_error_envelope(self):
        response = custom_exception_handler(
            ConflictError('Role already exists', details={'name': 'Sales'}), _context()
        )

        assert response.status_code == 409
        assert response.data == {
            'success': False,
            'message': 'Role already exists',
            'code': 'CONFLICT',
            'details': {'name': 'Sales'},
            'request_id': 'req-1',
        }

    def test_integrity_error_becomes_conflict(self):
        response = custom_exception_handler(IntegrityError('unique'), _context())

        assert response.status_code == 409
        assert response.data['code'] == 'CONFLICT'

    def test_framework_error_is_wrapped(self):
        response = custom_exception_handler(NotAuthenticated(), _context())

        assert response.status_code == 401
        assert response.data['success'] is False
        assert response.data['code'] == 'NOT_AUTHENTICATED'

    def test_unexpected_error_is_a_500(self):
        response = custom_exception_handler(RuntimeError('boom'), _context())

        assert response.status_code == 500
        assert response.data['message'] == 'An unexpected error occurred'
