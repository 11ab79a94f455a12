"""
Tests for OverrideService.
"""
import logging
from contextlib import contextmanager
from datetime import timedelta

import pytest
from django.test import override_settings
from django.utils import timezone

from apps.core.exceptions import (
    AuthorizationError,
    NotFoundError,
    OverrideLimitExceeded,
    ValidationError,
)
from apps.rbac.models import AuditLog, OverrideEffect, RolePermission, UserPermissionOverride
from apps.rbac.services import OverrideRequest, OverrideService


def _expired(user, permission, effect=OverrideEffect.ALLOW):
    return UserPermissionOverride.objects.create(
        user=user, permission=permission, effect=effect,
        expires_at=timezone.now() - timedelta(hours=1),
    )


class _Collector(logging.Handler):

    def __init__(self):
        super().__init__(level=logging.DEBUG)
        self.records = []

    def emit(self, record):
        self.records.append(record)


@contextmanager
def service_log():
    """Collect records from the override service logger, which does not propagate."""
    service_logger = logging.getLogger('apps.rbac.services.override_service')
    handler = _Collector()
    previous_level = service_logger.level
    service_logger.addHandler(handler)
    service_logger.setLevel(logging.DEBUG)
    try:
        yield handler.records
    finally:
        service_logger.removeHandler(handler)
        service_logger.setLevel(previous_level)


@pytest.mark.django_db
class TestGrantAuthorization:

    def test_company_admin_may_override_employee(self, company_admin, employee, crm_permissions):
        override, created = OverrideService.create_override(
            employee, crm_permissions['crm:leads:view'], OverrideEffect.ALLOW, company_admin,
        )

        assert created
        assert override.granted_by == company_admin

    def test_manager_may_override_employee(self, manager, employee, crm_permissions):
        _, created = OverrideService.create_override(
            employee, crm_permissions['crm:leads:view'], OverrideEffect.DENY, manager,
        )

        assert created

    def test_employee_cannot_grant(self, make_user, company, system_roles, employee, crm_permissions):
        colleague = make_user(company=company, role=system_roles['Employee'])

        with pytest.raises(AuthorizationError):
            OverrideService.create_override(
                colleague, crm_permissions['crm:leads:view'], OverrideEffect.ALLOW, employee,
            )

    def test_grantor_cannot_outrank_target(self, manager, company_admin, crm_permissions):
        with pytest.raises(AuthorizationError) as exc_info:
            OverrideService.create_override(
                company_admin, crm_permissions['crm:leads:view'], OverrideEffect.DENY, manager,
            )

        assert exc_info.value.details == {'grantor_priority': 20, 'target_priority': 10}
        assert not UserPermissionOverride.objects.filter(user=company_admin).exists()

    def test_grantor_from_other_company_is_rejected(self, make_user, other_company, system_roles,
                                                   employee, crm_permissions):
        outsider = make_user(company=other_company, role=system_roles['Company Admin'])

        with pytest.raises(AuthorizationError):
            OverrideService.create_override(
                employee, crm_permissions['crm:leads:view'], OverrideEffect.ALLOW, outsider,
            )

    def test_platform_account_may_override_any_company(self, super_admin, employee, crm_permissions):
        _, created = OverrideService.create_override(
            employee, crm_permissions['crm:leads:view'], OverrideEffect.ALLOW, super_admin,
        )

        assert created

    def test_target_without_role(self, company_admin, make_user, company, crm_permissions):
        target = make_user(company=company)

        with pytest.raises(AuthorizationError):
            OverrideService.create_override(
                target, crm_permissions['crm:leads:view'], OverrideEffect.ALLOW, company_admin,
            )

    def test_system_permission_cannot_be_overridden(self, company_admin, employee, system_permission):
        with pytest.raises(AuthorizationError) as exc_info:
            OverrideService.create_override(
                employee, system_permission, OverrideEffect.ALLOW, company_admin,
            )

        assert exc_info.value.details == {'permission_key': 'crm:settings:manage'}

    def test_deleted_permission_is_not_found(self, company_admin, employee, crm_permissions):
        permission = crm_permissions['crm:leads:view']
        permission.delete()

        with pytest.raises(NotFoundError):
            OverrideService.create_override(employee, permission, OverrideEffect.ALLOW, company_admin)


@pytest.mark.django_db
class TestCreateOverride:

    def test_invalid_effect(self, company_admin, employee, crm_permissions):
        with pytest.raises(ValidationError):
            OverrideService.create_override(
                employee, crm_permissions['crm:leads:view'], 'maybe', company_admin,
            )

    def test_missing_grantor(self, employee, crm_permissions):
        with pytest.raises(ValidationError):
            OverrideService.create_override(
                employee, crm_permissions['crm:leads:view'], OverrideEffect.ALLOW, None,
            )

    def test_past_expiry_rejected(self, company_admin, employee, crm_permissions):
        with pytest.raises(ValidationError):
            OverrideService.create_override(
                employee, crm_permissions['crm:leads:view'], OverrideEffect.ALLOW, company_admin,
                expires_at=timezone.now() - timedelta(minutes=5),
            )

    def test_second_call_updates_in_place(self, company_admin, employee, crm_permissions):
        permission = crm_permissions['crm:leads:view']
        first, _ = OverrideService.create_override(employee, permission, OverrideEffect.ALLOW, company_admin)

        second, created = OverrideService.create_override(
            employee, permission, OverrideEffect.DENY, company_admin, reason='Left the team',
        )

        assert not created
        assert second.id == first.id
        assert UserPermissionOverride.objects.filter(user=employee).count() == 1
        assert OverrideService.get_effective(employee, permission) == OverrideEffect.DENY

    def test_writes_audit_entries(self, company_admin, employee, crm_permissions):
        permission = crm_permissions['crm:leads:view']
        OverrideService.create_override(employee, permission, OverrideEffect.ALLOW, company_admin)
        OverrideService.create_override(employee, permission, OverrideEffect.DENY, company_admin)

        actions = AuditLog.objects.filter(target_type='UserPermissionOverride').values_list('action', flat=True)
        assert sorted(actions) == ['override_created', 'override_updated']
        updated = AuditLog.objects.get(action='override_updated')
        assert updated.diff['before'] == {'effect': 'allow'}
        assert updated.company == employee.company

    def test_logs_whether_row_was_created(self, company_admin, employee, crm_permissions):
        permission = crm_permissions['crm:leads:view']

        with service_log() as records:
            _, first = OverrideService.create_override(employee, permission, 'allow', company_admin)
            _, second = OverrideService.create_override(employee, permission, 'deny', company_admin)

        saved = [r for r in records if r.getMessage() == "Permission override saved"]
        assert (first, second) == (True, False)
        assert [r.was_created for r in saved] == [True, False]

    @override_settings(RBAC_MAX_ACTIVE_OVERRIDES=2)
    def test_active_override_cap(self, company_admin, employee, crm_permissions):
        OverrideService.create_override(employee, crm_permissions['crm:leads:view'], 'allow', company_admin)
        OverrideService.create_override(employee, crm_permissions['crm:leads:create'], 'allow', company_admin)

        with pytest.raises(OverrideLimitExceeded):
            OverrideService.create_override(
                employee, crm_permissions['crm:leads:update'], 'allow', company_admin,
            )

    @override_settings(RBAC_MAX_ACTIVE_OVERRIDES=1)
    def test_cap_allows_updating_existing_row(self, company_admin, employee, crm_permissions):
        permission = crm_permissions['crm:leads:view']
        OverrideService.create_override(employee, permission, 'allow', company_admin)

        _, created = OverrideService.create_override(employee, permission, 'deny', company_admin)

        assert not created

    @override_settings(RBAC_MAX_ACTIVE_OVERRIDES=1)
    def test_expired_rows_do_not_count_toward_cap(self, company_admin, employee, crm_permissions):
        _expired(employee, crm_permissions['crm:leads:view'])

        _, created = OverrideService.create_override(
            employee, crm_permissions['crm:leads:create'], 'allow', company_admin,
        )

        assert created

    def test_get_effective_ignores_expired(self, employee, crm_permissions):
        permission = crm_permissions['crm:leads:view']
        _expired(employee, permission, OverrideEffect.DENY)

        assert OverrideService.get_effective(employee, permission) is None


@pytest.mark.django_db
class TestCascade:

    def _ids(self, crm_permissions, *actions):
        return {crm_permissions[f'crm:leads:{action}'].id for action in actions}

    def test_allow_flows_to_narrower_actions(self, crm_permissions):
        manage = crm_permissions['crm:leads:manage']

        expanded = OverrideService.expand_cascade([OverrideRequest(manage.id, OverrideEffect.ALLOW)])

        assert {r.permission_id for r in expanded} == self._ids(
            crm_permissions, 'manage', 'create', 'update', 'view', 'delete'
        )
        assert all(r.effect == OverrideEffect.ALLOW for r in expanded)

    def test_deny_flows_to_broader_actions(self, crm_permissions):
        view = crm_permissions['crm:leads:view']

        expanded = OverrideService.expand_cascade([OverrideRequest(view.id, OverrideEffect.DENY)])

        assert {r.permission_id for r in expanded} == self._ids(crm_permissions, 'view', 'manage', 'update')
        cascaded = [r for r in expanded if r.permission_id != view.id]
        assert all(r.reason == 'Cascaded from narrower permission denial crm:leads:view' for r in cascaded)

    def test_cascaded_deny_beats_explicit_allow(self, crm_permissions):
        manage = crm_permissions['crm:leads:manage']
        view = crm_permissions['crm:leads:view']

        expanded = OverrideService.expand_cascade([
            OverrideRequest(manage.id, OverrideEffect.ALLOW),
            OverrideRequest(view.id, OverrideEffect.DENY),
        ])

        effects = {r.permission_id: r.effect for r in expanded}
        assert effects[manage.id] == OverrideEffect.DENY
        assert effects[view.id] == OverrideEffect.DENY
        assert effects[crm_permissions['crm:leads:create'].id] == OverrideEffect.ALLOW

    def test_explicit_reason_is_carried_down(self, crm_permissions):
        update = crm_permissions['crm:leads:update']

        expanded = OverrideService.expand_cascade(
            [OverrideRequest(update.id, OverrideEffect.ALLOW, reason='Covering for Sam')]
        )

        assert [r.reason for r in expanded] == ['Covering for Sam', 'Covering for Sam']

    def test_bulk_create_with_cascade(self, company_admin, employee, crm_permissions):
        manage = crm_permissions['crm:leads:manage']

        result = OverrideService.bulk_create_overrides(
            employee, [OverrideRequest(manage.id, OverrideEffect.ALLOW)], company_admin,
        )

        assert result.original_count == 1
        assert result.cascaded_count == 4
        assert result.total_created == 5
        assert UserPermissionOverride.objects.filter(user=employee).count() == 5
        assert AuditLog.objects.filter(action='overrides_bulk_created').count() == 1

    def test_bulk_create_without_cascade(self, company_admin, employee, crm_permissions):
        manage = crm_permissions['crm:leads:manage']

        result = OverrideService.bulk_create_overrides(
            employee, [OverrideRequest(manage.id, OverrideEffect.ALLOW)], company_admin, cascade=False,
        )

        assert (result.cascaded_count, result.total_created) == (0, 1)

    def test_bulk_counts_updates_separately(self, company_admin, employee, crm_permissions):
        view = crm_permissions['crm:leads:view']
        OverrideService.create_override(employee, view, OverrideEffect.ALLOW, company_admin)

        result = OverrideService.bulk_create_overrides(
            employee, [OverrideRequest(view.id, OverrideEffect.DENY)], company_admin,
        )

        assert result.total_created == 2
        assert len(result.overrides) == 3

    def test_bulk_is_all_or_nothing(self, company_admin, employee, crm_permissions, system_permission):
        requests = [
            OverrideRequest(crm_permissions['crm:leads:view'].id, OverrideEffect.ALLOW),
            OverrideRequest(system_permission.id, OverrideEffect.ALLOW),
        ]

        with pytest.raises(AuthorizationError):
            OverrideService.bulk_create_overrides(employee, requests, company_admin)

        assert not UserPermissionOverride.objects.filter(user=employee).exists()

    @override_settings(RBAC_MAX_ACTIVE_OVERRIDES=3)
    def test_bulk_respects_cap_after_cascade(self, company_admin, employee, crm_permissions):
        manage = crm_permissions['crm:leads:manage']

        with pytest.raises(OverrideLimitExceeded) as exc_info:
            OverrideService.bulk_create_overrides(
                employee, [OverrideRequest(manage.id, OverrideEffect.ALLOW)], company_admin,
            )

        assert exc_info.value.details['requested'] == 5
        assert not UserPermissionOverride.objects.filter(user=employee).exists()

    def test_bulk_requires_requests(self, company_admin, employee):
        with pytest.raises(ValidationError):
            OverrideService.bulk_create_overrides(employee, [], company_admin)


@pytest.mark.django_db
class TestRemovalAndExpiry:

    def test_remove_override(self, company_admin, employee, crm_permissions):
        permission = crm_permissions['crm:leads:view']
        OverrideService.create_override(employee, permission, OverrideEffect.ALLOW, company_admin)

        OverrideService.remove_override(employee, permission, company_admin)

        assert not UserPermissionOverride.objects.filter(user=employee).exists()
        assert AuditLog.objects.filter(action='override_removed').exists()

    def test_remove_missing_override(self, company_admin, employee, crm_permissions):
        with pytest.raises(NotFoundError):
            OverrideService.remove_override(employee, crm_permissions['crm:leads:view'], company_admin)

    def test_remove_all_overrides(self, company_admin, employee, crm_permissions):
        for code in ('crm:leads:view', 'crm:leads:create'):
            OverrideService.create_override(employee, crm_permissions[code], 'allow', company_admin)
        _expired(employee, crm_permissions['crm:leads:delete'])

        removed = OverrideService.remove_all_overrides(employee, company_admin)

        assert removed == 3
        assert not UserPermissionOverride.objects.filter(user=employee).exists()

    def test_remove_all_requires_standing(self, employee, manager):
        with pytest.raises(AuthorizationError):
            OverrideService.remove_all_overrides(manager, employee)

    def test_update_expiration(self, company_admin, employee, crm_permissions):
        permission = crm_permissions['crm:leads:view']
        OverrideService.create_override(employee, permission, OverrideEffect.ALLOW, company_admin)
        expires_at = timezone.now() + timedelta(days=7)

        override = OverrideService.update_expiration(employee, permission, expires_at, company_admin)

        assert override.expires_at == expires_at
        override = OverrideService.update_expiration(employee, permission, None, company_admin)
        assert override.expires_at is None

    def test_list_overrides_hides_expired(self, company_admin, employee, crm_permissions):
        OverrideService.create_override(employee, crm_permissions['crm:leads:view'], 'allow', company_admin)
        _expired(employee, crm_permissions['crm:leads:create'])

        assert [o.permission.code for o in OverrideService.list_overrides(employee)] == ['crm:leads:view']
        assert len(OverrideService.list_overrides(employee, include_expired=True)) == 2

    def test_cleanup_removes_only_expired(self, company_admin, employee, manager, crm_permissions):
        OverrideService.create_override(employee, crm_permissions['crm:leads:view'], 'allow', company_admin)
        _expired(employee, crm_permissions['crm:leads:create'])
        _expired(manager, crm_permissions['crm:leads:create'])

        assert OverrideService.cleanup_expired_overrides(user=employee) == 1
        assert OverrideService.cleanup_expired_overrides() == 1
        assert UserPermissionOverride.objects.count() == 1

    def test_override_stats(self, company_admin, employee, crm_permissions):
        OverrideService.create_override(employee, crm_permissions['crm:leads:view'], 'allow', company_admin)
        OverrideService.create_override(employee, crm_permissions['crm:leads:create'], 'deny', company_admin)
        _expired(employee, crm_permissions['crm:leads:delete'], OverrideEffect.DENY)

        assert OverrideService.override_stats(employee) == {
            'total': 3, 'active': 2, 'expired': 1, 'allows': 1, 'denies': 1,
        }


@pytest.mark.django_db
class TestRedundantDenyWarning:

    def _warnings(self, records):
        return [r for r in records if r.getMessage().startswith("Redundant deny override")]

    def test_deny_without_role_grant_is_flagged(self, company_admin, employee, crm_permissions):
        with service_log() as records:
            OverrideService.create_override(employee, crm_permissions['crm:leads:view'], 'deny', company_admin)

        assert len(self._warnings(records)) == 1
        assert UserPermissionOverride.objects.filter(user=employee, effect=OverrideEffect.DENY).exists()

    def test_deny_of_directly_granted_permission(self, company_admin, employee, crm_permissions):
        RolePermission.objects.create(role=employee.role, permission=crm_permissions['crm:leads:view'])

        with service_log() as records:
            OverrideService.create_override(employee, crm_permissions['crm:leads:view'], 'deny', company_admin)

        assert self._warnings(records) == []

    def test_deny_of_permission_granted_through_broader_action(self, company_admin, employee, crm_permissions):
        RolePermission.objects.create(role=employee.role, permission=crm_permissions['crm:leads:manage'])

        with service_log() as records:
            OverrideService.create_override(employee, crm_permissions['crm:leads:view'], 'deny', company_admin)

        assert self._warnings(records) == []


@pytest.mark.django_db
class TestUsersWithOverride:

    def test_lists_active_overrides_ordered_by_email(self, company_admin, make_user, company, system_roles,
                                                     crm_permissions):
        permission = crm_permissions['crm:leads:view']
        zed = make_user(company=company, role=system_roles['Employee'], email='zed@acme.com')
        amy = make_user(company=company, role=system_roles['Employee'], email='amy@acme.com')
        lapsed = make_user(company=company, role=system_roles['Employee'], email='bob@acme.com')
        OverrideService.create_override(zed, permission, 'allow', company_admin)
        OverrideService.create_override(amy, permission, 'deny', company_admin)
        _expired(lapsed, permission)

        emails = [o.user.email for o in OverrideService.users_with_override(permission)]
        all_emails = [o.user.email for o in OverrideService.users_with_override(permission, include_expired=True)]

        assert emails == ['amy@acme.com', 'zed@acme.com']
        assert all_emails == ['amy@acme.com', 'bob@acme.com', 'zed@acme.com']

    def test_filters_by_company(self, company_admin, super_admin, employee, make_user, other_company,
                                system_roles, company, crm_permissions):
        permission = crm_permissions['crm:leads:view']
        outsider = make_user(company=other_company, role=system_roles['Employee'])
        OverrideService.create_override(employee, permission, 'allow', company_admin)
        OverrideService.create_override(outsider, permission, 'allow', super_admin)

        overrides = OverrideService.users_with_override(permission, company=company)

        assert [o.user for o in overrides] == [employee]
        assert OverrideService.users_with_override(permission).count() == 2

    def test_other_permissions_are_excluded(self, company_admin, employee, crm_permissions):
        OverrideService.create_override(employee, crm_permissions['crm:leads:create'], 'allow', company_admin)

        assert not OverrideService.users_with_override(crm_permissions['crm:leads:view']).exists()
