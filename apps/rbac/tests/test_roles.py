"""
Tests for RoleService: role rules, cloning, permission assignment and role
assignment.
"""
import pytest
from django.db import IntegrityError

from apps.core.exceptions import (
    AuthorizationError,
    ConflictError,
    EntitlementError,
    NotFoundError,
    ValidationError,
)
from apps.rbac.models import AuditLog, Role, RolePermission, RoleScope
from apps.rbac.services import RoleService


@pytest.mark.django_db
class TestSystemRoles:

    def test_initialize_creates_ranked_platform_roles(self, system_roles):
        assert {name: role.priority for name, role in system_roles.items()} == {
            'Super Admin': 0,
            'Company Admin': 10,
            'Manager': 20,
            'Employee': 30,
            'Client': 40,
        }
        assert all(role.is_system_role and role.scope == RoleScope.PLATFORM
                   for role in system_roles.values())

    def test_initialize_is_idempotent(self, system_roles):
        RoleService.initialize_system_roles()

        assert Role.objects.filter(is_system_role=True).count() == 5

    def test_system_role_cannot_be_deleted(self, system_roles):
        with pytest.raises(ConflictError):
            RoleService.delete_role(system_roles['Client'])

    def test_system_role_cannot_be_renamed(self, system_roles):
        with pytest.raises(ValidationError):
            RoleService.update_role(system_roles['Client'], name='Customer')


@pytest.mark.django_db
class TestCreateRole:

    def test_company_role(self, company, company_admin):
        role = RoleService.create_role('Sales', company=company, priority=25, created_by=company_admin)

        assert role.scope == RoleScope.COMPANY
        assert role.company == company
        assert AuditLog.objects.filter(action='role_created', target_id=role.id).exists()

    def test_company_role_priority_floor(self, company):
        with pytest.raises(ValidationError):
            RoleService.create_role('Boss', company=company, priority=15)

    def test_custom_platform_role_priority_floor(self, db):
        with pytest.raises(ValidationError):
            RoleService.create_role('Support', scope=RoleScope.PLATFORM, priority=5)

        role = RoleService.create_role('Support', scope=RoleScope.PLATFORM, priority=10)
        assert role.company is None

    def test_company_role_requires_company(self, db):
        with pytest.raises(ValidationError):
            RoleService.create_role('Orphan', scope=RoleScope.COMPANY, priority=30)

    def test_name_unique_within_company(self, company, other_company):
        RoleService.create_role('Sales', company=company, priority=30)

        with pytest.raises(ConflictError):
            RoleService.create_role('Sales', company=company, priority=40)
        assert RoleService.create_role('Sales', company=other_company, priority=30)

    def test_deleted_role_frees_its_name(self, company):
        role = RoleService.create_role('Sales', company=company, priority=30)
        RoleService.delete_role(role)

        assert RoleService.create_role('Sales', company=company, priority=30).id != role.id

    def test_company_role_needs_entitled_permissions(self, company, crm_permissions):
        with pytest.raises(EntitlementError) as exc_info:
            RoleService.create_role(
                'Sales', company=company, priority=30,
                permission_ids=[crm_permissions['crm:leads:view'].id],
            )

        assert exc_info.value.details['permission_keys'] == ['crm:leads:view']
        assert not Role.objects.filter(name='Sales').exists()

    def test_company_role_with_entitled_permissions(self, subscribed_company, crm_permissions):
        ids = [crm_permissions['crm:leads:view'].id, crm_permissions['crm:leads:create'].id]

        role = RoleService.create_role('Sales', company=subscribed_company, priority=30, permission_ids=ids)

        assert RoleService.role_permission_ids(role) == set(ids)

    def test_unknown_permission_id(self, company, crm_permissions):
        crm_permissions['crm:leads:view'].delete()

        with pytest.raises(NotFoundError):
            RoleService.create_role(
                'Sales', company=company, priority=30,
                permission_ids=[crm_permissions['crm:leads:view'].id],
            )

    def test_database_enforces_company_priority_floor(self, company):
        with pytest.raises(IntegrityError):
            Role.objects.create(name='Sneaky', scope=RoleScope.COMPANY, company=company, priority=5)


@pytest.mark.django_db
class TestUpdateAndDelete:

    def test_update_priority_respects_floor(self, company):
        role = RoleService.create_role('Sales', company=company, priority=30)

        with pytest.raises(ValidationError):
            RoleService.update_role(role, priority=19)

    def test_rename_conflict(self, company):
        RoleService.create_role('Sales', company=company, priority=30)
        support = RoleService.create_role('Support', company=company, priority=30)

        with pytest.raises(ConflictError):
            RoleService.update_role(support, name='Sales')

    def test_update_records_before_and_after(self, company):
        role = RoleService.create_role('Sales', company=company, priority=30)

        RoleService.update_role(role, description='Field sales', priority=35)

        entry = AuditLog.objects.get(action='role_updated')
        assert entry.diff['before']['priority'] == 30
        assert entry.diff['after'] == {'name': 'Sales', 'description': 'Field sales', 'priority': 35}

    def test_role_held_by_users_cannot_be_deleted(self, company, make_user):
        role = RoleService.create_role('Sales', company=company, priority=30)
        make_user(company=company, role=role)

        with pytest.raises(ConflictError) as exc_info:
            RoleService.delete_role(role)

        assert exc_info.value.details['user_count'] == 1

    def test_delete_is_soft(self, company):
        role = RoleService.create_role('Sales', company=company, priority=30)

        RoleService.delete_role(role)

        assert not Role.objects.filter(pk=role.pk).exists()
        assert Role.objects_with_deleted.get(pk=role.pk).is_deleted


@pytest.mark.django_db
class TestCloneRole:

    def test_clone_copies_permissions(self, subscribed_company, system_roles, crm_permissions):
        manager_role = system_roles['Manager']
        RolePermission.objects.create(role=manager_role, permission=crm_permissions['crm:leads:manage'])

        clone = RoleService.clone_role_to_company(manager_role, subscribed_company)

        assert clone.scope == RoleScope.COMPANY
        assert clone.base_role == manager_role
        assert clone.priority == 20
        assert RoleService.role_permission_ids(clone) == {crm_permissions['crm:leads:manage'].id}

    def test_clone_raises_priority_to_company_floor(self, company, system_roles):
        clone = RoleService.clone_role_to_company(system_roles['Company Admin'], company)

        assert clone.priority == 20

    def test_clone_keeps_lower_priority(self, company, system_roles):
        clone = RoleService.clone_role_to_company(system_roles['Client'], company, name='Guest')

        assert (clone.name, clone.priority) == ('Guest', 40)

    def test_clone_needs_entitlement(self, company, system_roles, crm_permissions):
        manager_role = system_roles['Manager']
        RolePermission.objects.create(role=manager_role, permission=crm_permissions['crm:leads:view'])

        with pytest.raises(EntitlementError):
            RoleService.clone_role_to_company(manager_role, company)

    def test_clone_with_permission_subset(self, company, system_roles, crm_permissions, free_permission):
        manager_role = system_roles['Manager']
        RolePermission.objects.create(role=manager_role, permission=crm_permissions['crm:leads:view'])
        RolePermission.objects.create(role=manager_role, permission=free_permission)

        clone = RoleService.clone_role_to_company(
            manager_role, company, permission_ids=[free_permission.id]
        )

        assert RoleService.role_permission_ids(clone) == {free_permission.id}

    def test_only_platform_roles_are_cloned(self, company, system_roles):
        clone = RoleService.clone_role_to_company(system_roles['Employee'], company)

        with pytest.raises(ValidationError):
            RoleService.clone_role_to_company(clone, company, name='Copy')

    def test_clone_name_conflict(self, company, system_roles):
        RoleService.clone_role_to_company(system_roles['Employee'], company)

        with pytest.raises(ConflictError):
            RoleService.clone_role_to_company(system_roles['Employee'], company)


@pytest.mark.django_db
class TestRolePermissions:

    def test_grant_is_idempotent(self, system_roles, crm_permissions):
        role = system_roles['Employee']
        permission = crm_permissions['crm:leads:view']

        _, created = RoleService.grant_permission(role, permission)
        _, created_again = RoleService.grant_permission(role, permission)

        assert created and not created_again
        assert AuditLog.objects.filter(action='role_permission_granted').count() == 1

    def test_company_role_grant_needs_entitlement(self, company, crm_permissions):
        role = RoleService.create_role('Sales', company=company, priority=30)

        with pytest.raises(EntitlementError):
            RoleService.grant_permission(role, crm_permissions['crm:leads:view'])

    def test_revoke(self, system_roles, crm_permissions):
        role = system_roles['Employee']
        permission = crm_permissions['crm:leads:view']
        RoleService.grant_permission(role, permission)

        assert RoleService.revoke_permission(role, permission) is True
        assert RoleService.revoke_permission(role, permission) is False

    def test_set_role_permissions_replaces_the_set(self, system_roles, crm_permissions):
        role = system_roles['Employee']
        RoleService.grant_permission(role, crm_permissions['crm:leads:view'])
        wanted = {crm_permissions['crm:leads:create'].id, crm_permissions['crm:leads:update'].id}

        RoleService.set_role_permissions(role, wanted)

        assert RoleService.role_permission_ids(role) == wanted
        entry = AuditLog.objects.get(action='role_permissions_replaced')
        assert entry.diff['removed'] == [str(crm_permissions['crm:leads:view'].id)]


@pytest.mark.django_db
class TestAssignRole:

    def test_assign_own_company_role(self, company, employee, company_admin):
        role = RoleService.create_role('Sales', company=company, priority=30)

        RoleService.assign_role(employee, role, assigned_by=company_admin)

        employee.refresh_from_db()
        assert employee.role == role

    def test_assign_foreign_company_role(self, other_company, employee):
        role = RoleService.create_role('Sales', company=other_company, priority=30)

        with pytest.raises(ValidationError):
            RoleService.assign_role(employee, role)

    def test_user_without_company(self, make_user, system_roles):
        user = make_user()

        with pytest.raises(ValidationError):
            RoleService.assign_role(user, system_roles['Employee'])

    def test_inactive_role(self, employee, company):
        role = RoleService.create_role('Sales', company=company, priority=30)
        role.deactivate()

        with pytest.raises(NotFoundError):
            RoleService.assign_role(employee, role)

    def test_cannot_hand_out_higher_role(self, manager, employee, system_roles):
        with pytest.raises(AuthorizationError):
            RoleService.assign_role(employee, system_roles['Company Admin'], assigned_by=manager)

        employee.refresh_from_db()
        assert employee.role == system_roles['Employee']

    def test_cannot_demote_a_senior(self, manager, company_admin, system_roles):
        with pytest.raises(AuthorizationError):
            RoleService.assign_role(company_admin, system_roles['Client'], assigned_by=manager)

    def test_assignment_is_audited(self, employee, company_admin, system_roles):
        RoleService.assign_role(employee, system_roles['Manager'], assigned_by=company_admin)

        entry = AuditLog.objects.get(action='role_assigned')
        assert entry.diff == {
            'before': str(system_roles['Employee'].id),
            'after': str(system_roles['Manager'].id),
        }
        assert entry.user == company_admin
