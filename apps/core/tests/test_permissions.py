"""
Tests for the HasPermissions class and the requires_permissions decorator.
"""
import pytest
from django.test import RequestFactory
from rest_framework.views import APIView

from apps.core.exceptions import AuthorizationError, EntitlementError
from apps.core.permissions import HasPermissions, requires_permissions
from apps.rbac.models import RolePermission


class ReportView(APIView):
    permission_classes = [HasPermissions]
    required_permissions = ['general:dashboard:view']


class OpenView(APIView):
    permission_classes = [HasPermissions]


@pytest.fixture
def request_factory():
    return RequestFactory()


def _request(factory, user):
    request = factory.get('/v1/test')
    request.user = user
    return request


@pytest.mark.django_db
class TestHasPermissions:

    def test_view_without_requirements_allows_authenticated_users(self, request_factory, employee):
        assert HasPermissions().has_permission(_request(request_factory, employee), OpenView())

    def test_role_grant_allows(self, request_factory, employee, free_permission, system_roles):
        RolePermission.objects.create(role=system_roles['Employee'], permission=free_permission)

        assert HasPermissions().has_permission(_request(request_factory, employee), ReportView())

    def test_missing_grant_raises_authorization_error(self, request_factory, employee, free_permission):
        with pytest.raises(AuthorizationError) as exc_info:
            HasPermissions().has_permission(_request(request_factory, employee), ReportView())

        assert exc_info.value.details['permission'] == 'general:dashboard:view'
        assert exc_info.value.details['reason'] == 'Permission not granted by role'

    def test_missing_entitlement_raises_entitlement_error(self, request_factory, employee,
                                                          crm_permissions, system_roles):
        RolePermission.objects.create(
            role=system_roles['Employee'], permission=crm_permissions['crm:leads:view']
        )

        class LeadsView(APIView):
            required_permissions = ['crm:leads:view']

        with pytest.raises(EntitlementError) as exc_info:
            HasPermissions().has_permission(_request(request_factory, employee), LeadsView())

        assert exc_info.value.details['no_entitlement'] is True
        assert exc_info.value.code == 'NO_ENTITLEMENT'


class TestObjectPermission:

    class Obj:
        def __init__(self, company_id):
            self.company_id = company_id
            self.id = 'obj-1'

    class FakeUser:
        def __init__(self, company_id, role=None):
            self.company_id = company_id
            self.role = role
            self.id = 'user-1'

    def test_same_company_allowed(self, request_factory):
        request = request_factory.get('/')
        request.user = self.FakeUser('c-1')

        assert HasPermissions().has_object_permission(request, OpenView(), self.Obj('c-1'))

    def test_other_company_denied(self, request_factory):
        request = request_factory.get('/')
        request.user = self.FakeUser('c-1')

        assert not HasPermissions().has_object_permission(request, OpenView(), self.Obj('c-2'))

    def test_user_without_company_denied(self, request_factory):
        request = request_factory.get('/')
        request.user = self.FakeUser(None)

        assert not HasPermissions().has_object_permission(request, OpenView(), self.Obj('c-1'))


class TestRequiresPermissions:

    def test_class_decorator_sets_required_permissions(self):
        @requires_permissions('rbac:roles:view', 'rbac:roles:manage')
        class RolesView(APIView):
            pass

        assert RolesView.required_permissions == ['rbac:roles:view', 'rbac:roles:manage']

    def test_method_decorator_records_keys(self):
        class RolesView(APIView):
            @requires_permissions('rbac:roles:manage')
            def post(self, request):
                return None

        assert RolesView.post.required_permissions == ['rbac:roles:manage']
