"""
Role permission graph.

Roles are flat bundles of permissions ranked by priority. There is no
runtime inheritance: cloning a platform role into a company copies its rows.
"""
import logging
from typing import Iterable, Optional

from django.db import transaction

from apps.companies.services.entitlement_service import EntitlementService
from apps.core.exceptions import (
    AuthorizationError,
    ConflictError,
    EntitlementError,
    NotFoundError,
    ValidationError,
)
from apps.core.logging import SecurityLogger
from apps.rbac.models import (
    COMPANY_ROLE_MIN_PRIORITY,
    DEFAULT_ROLE_PRIORITY,
    AuditLog,
    Permission,
    Role,
    RolePermission,
    RoleScope,
    User,
)

logger = logging.getLogger(__name__)

SYSTEM_ROLES = [
    ('Super Admin', 0, 'Full platform access'),
    ('Company Admin', 10, 'Administers a company'),
    ('Manager', 20, 'Manages a team'),
    ('Employee', 30, 'Regular company staff'),
    ('Client', 40, 'External client access'),
]


class RoleService:
    """Service for role CRUD, role permissions and role assignment."""

    @staticmethod
    def initialize_system_roles(using='default'):
        """Create the default platform system roles. Safe to run repeatedly."""
        roles = []
        with transaction.atomic(using=using):
            for name, priority, description in SYSTEM_ROLES:
                role, created = Role.objects.using(using).get_or_create(
                    name=name,
                    scope=RoleScope.PLATFORM,
                    defaults={
                        'priority': priority,
                        'description': description,
                        'is_system_role': True,
                    },
                )
                if created:
                    logger.info(
                        "System role created",
                        extra={'role_name': name, 'priority': priority}
                    )
                roles.append(role)
        return roles

    @staticmethod
    def _validate_role(role):
        violations = role.invariant_violations()
        if violations:
            raise ValidationError(violations[0], details={'violations': violations})

    @staticmethod
    def _ensure_unique_name(role, using):
        queryset = Role.objects.using(using).filter(name=role.name, scope=role.scope)
        if role.scope == RoleScope.COMPANY:
            queryset = queryset.filter(company_id=role.company_id)
        if queryset.exclude(pk=role.pk).exists():
            raise ConflictError(
                f"Role '{role.name}' already exists",
                details={'name': role.name, 'scope': role.scope},
            )

    @staticmethod
    def _load_permissions(permission_ids, using):
        permission_ids = set(permission_ids)
        permissions = list(
            Permission.objects.using(using).active().select_related('module').filter(id__in=permission_ids)
        )
        missing = permission_ids - {p.id for p in permissions}
        if missing:
            raise NotFoundError(
                "One or more permissions not found",
                details={'permission_ids': sorted(str(pid) for pid in missing)},
            )
        return permissions

    @staticmethod
    def _ensure_entitled(company, permissions):
        unentitled = [
            p.code for p in permissions
            if not EntitlementService.check_entitlement(company.id, p)
        ]
        if unentitled:
            raise EntitlementError(
                "Company is not entitled to one or more permissions",
                details={'permission_keys': sorted(unentitled), 'company_id': str(company.id)},
            )

    @classmethod
    def create_role(cls, name, scope=RoleScope.COMPANY, company=None, priority=None,
                    description='', permission_ids=(), created_by=None, using='default'):
        """
        Create a custom platform or company role.

        Raises:
            ValidationError: Scope or priority rules broken
            ConflictError: Name already taken in the same scope
            EntitlementError: Company role given unentitled permissions
        """
        role = Role(
            name=name,
            scope=scope,
            company=company,
            priority=DEFAULT_ROLE_PRIORITY if priority is None else priority,
            description=description,
        )
        cls._validate_role(role)

        permissions = cls._load_permissions(permission_ids, using)
        if company is not None:
            cls._ensure_entitled(company, permissions)

        with transaction.atomic(using=using):
            cls._ensure_unique_name(role, using)
            role.save(using=using)
            RolePermission.objects.using(using).bulk_create(
                [RolePermission(role=role, permission=p) for p in permissions]
            )
            AuditLog.log_action(
                action='role_created',
                user=created_by,
                company=company,
                target_type='Role',
                target_id=role.id,
                diff={
                    'name': name,
                    'scope': scope,
                    'priority': role.priority,
                    'permissions': sorted(p.code for p in permissions),
                },
                using=using,
            )

        logger.info(
            "Role created",
            extra={
                'role_id': str(role.id),
                'role_name': role.name,
                'scope': scope,
                'company_id': str(company.id) if company else None,
            }
        )
        return role

    @classmethod
    def update_role(cls, role, name=None, description=None, priority=None,
                    updated_by=None, using='default'):
        """Update a role's name, description or priority."""
        before = {'name': role.name, 'description': role.description, 'priority': role.priority}

        if name is not None and name != role.name:
            if role.is_system_role:
                raise ValidationError(
                    "System role names cannot be changed",
                    details={'role_id': str(role.id)},
                )
            role.name = name
        if description is not None:
            role.description = description
        if priority is not None:
            role.priority = priority
        cls._validate_role(role)

        with transaction.atomic(using=using):
            cls._ensure_unique_name(role, using)
            role.save(using=using)
            after = {'name': role.name, 'description': role.description, 'priority': role.priority}
            AuditLog.log_action(
                action='role_updated',
                user=updated_by,
                company=role.company,
                target_type='Role',
                target_id=role.id,
                diff={'before': before, 'after': after},
                using=using,
            )
        return role

    @staticmethod
    def delete_role(role, deleted_by=None, using='default'):
        """
        Soft delete a role.

        Raises:
            ConflictError: System role, or users still hold the role
        """
        if role.is_system_role:
            raise ConflictError(
                "System roles cannot be deleted",
                details={'role_id': str(role.id)},
            )

        with transaction.atomic(using=using):
            user_count = User.objects.using(using).filter(role=role).count()
            if user_count:
                raise ConflictError(
                    f"Role is assigned to {user_count} user(s)",
                    details={'role_id': str(role.id), 'user_count': user_count},
                )
            role.delete(using=using)
            AuditLog.log_action(
                action='role_deleted',
                user=deleted_by,
                company=role.company,
                target_type='Role',
                target_id=role.id,
                diff={'name': role.name},
                using=using,
            )

        logger.info("Role deleted", extra={'role_id': str(role.id), 'role_name': role.name})

    @classmethod
    def clone_role_to_company(cls, platform_role, company, permission_ids=None, name=None,
                              description=None, cloned_by=None, using='default'):
        """
        Copy a platform role into a company.

        The clone gets priority max(platform priority, 20) and the chosen
        permissions (default: all of the platform role's), each of which the
        company must be entitled to.
        """
        if platform_role.scope != RoleScope.PLATFORM:
            raise ValidationError(
                "Only platform roles can be cloned",
                details={'role_id': str(platform_role.id)},
            )

        if permission_ids is None:
            permission_ids = RolePermission.objects.db_manager(using).permission_ids_for_role(platform_role.id)
        permissions = cls._load_permissions(permission_ids, using)
        cls._ensure_entitled(company, permissions)

        role = Role(
            name=name or platform_role.name,
            description=platform_role.description if description is None else description,
            scope=RoleScope.COMPANY,
            company=company,
            priority=max(platform_role.priority, COMPANY_ROLE_MIN_PRIORITY),
            base_role=platform_role,
        )
        cls._validate_role(role)

        with transaction.atomic(using=using):
            cls._ensure_unique_name(role, using)
            role.save(using=using)
            RolePermission.objects.using(using).bulk_create(
                [RolePermission(role=role, permission=p) for p in permissions]
            )
            AuditLog.log_action(
                action='role_cloned',
                user=cloned_by,
                company=company,
                target_type='Role',
                target_id=role.id,
                diff={
                    'base_role_id': str(platform_role.id),
                    'priority': role.priority,
                    'permissions': sorted(p.code for p in permissions),
                },
                using=using,
            )

        logger.info(
            "Role cloned to company",
            extra={
                'role_id': str(role.id),
                'base_role_id': str(platform_role.id),
                'company_id': str(company.id),
                'permission_count': len(permissions),
            }
        )
        return role

    @staticmethod
    def role_permission_ids(role):
        return RolePermission.objects.permission_ids_for_role(role.id)

    @classmethod
    def grant_permission(cls, role, permission, granted_by=None, using='default'):
        """Grant `permission` to `role`. Idempotent; returns (row, created)."""
        if role.company_id is not None:
            cls._ensure_entitled(role.company, [permission])

        with transaction.atomic(using=using):
            role_permission, created = RolePermission.objects.using(using).get_or_create(
                role=role, permission=permission
            )
            if created:
                AuditLog.log_action(
                    action='role_permission_granted',
                    user=granted_by,
                    company=role.company,
                    target_type='Role',
                    target_id=role.id,
                    diff={'permission_key': permission.code},
                    using=using,
                )
        return role_permission, created

    @staticmethod
    def revoke_permission(role, permission, revoked_by=None, using='default'):
        """Remove `permission` from `role`. Returns True when a row was removed."""
        with transaction.atomic(using=using):
            removed = RolePermission.objects.using(using).filter(
                role=role, permission=permission
            ).delete()[0]
            if removed:
                AuditLog.log_action(
                    action='role_permission_revoked',
                    user=revoked_by,
                    company=role.company,
                    target_type='Role',
                    target_id=role.id,
                    diff={'permission_key': permission.code},
                    using=using,
                )
        return bool(removed)

    @classmethod
    def set_role_permissions(cls, role, permission_ids: Iterable, updated_by=None, using='default'):
        """Replace the role's whole permission set in one transaction."""
        permissions = cls._load_permissions(permission_ids, using)
        if role.company_id is not None:
            cls._ensure_entitled(role.company, permissions)

        wanted = {p.id for p in permissions}
        with transaction.atomic(using=using):
            current = RolePermission.objects.db_manager(using).permission_ids_for_role(role.id)
            removed = current - wanted
            added = wanted - current
            RolePermission.objects.using(using).filter(role=role, permission_id__in=removed).delete()
            RolePermission.objects.using(using).bulk_create(
                [RolePermission(role=role, permission=p) for p in permissions if p.id in added]
            )
            AuditLog.log_action(
                action='role_permissions_replaced',
                user=updated_by,
                company=role.company,
                target_type='Role',
                target_id=role.id,
                diff={
                    'added': sorted(str(pid) for pid in added),
                    'removed': sorted(str(pid) for pid in removed),
                },
                using=using,
            )

        logger.info(
            "Role permissions replaced",
            extra={'role_id': str(role.id), 'added': len(added), 'removed': len(removed)}
        )
        return wanted

    @staticmethod
    def validate_role_assignment(user, role):
        """
        A user may hold a platform system role or a role of their own company.

        Raises:
            NotFoundError: Role is deleted or inactive
            ValidationError: User has no company or the role is foreign
        """
        if role is None or not role.is_active:
            raise NotFoundError("Role not found")
        if user.company_id is None:
            raise ValidationError(
                "Users without a company cannot be assigned roles",
                details={'user_id': str(user.id)},
            )
        if role.scope == RoleScope.PLATFORM and role.is_system_role:
            return
        if role.scope == RoleScope.COMPANY and role.company_id == user.company_id:
            return
        raise ValidationError(
            "Role is not available to the user's company",
            details={'role_id': str(role.id), 'company_id': str(user.company_id)},
        )

    @classmethod
    def assign_role(cls, user, role, assigned_by: Optional[object] = None, using='default'):
        """
        Give `user` the role `role`.

        The assigner may not hand out a role ranked above their own, nor
        change the role of a user ranked above them.
        """
        cls.validate_role_assignment(user, role)

        if assigned_by is not None:
            assigner_priority = assigned_by.role_priority
            if assigner_priority is None or assigner_priority > role.priority:
                SecurityLogger.log_escalation_attempt(
                    assigned_by, user, 'role_assignment',
                    f"Assigner priority {assigner_priority} cannot grant role priority {role.priority}",
                )
                raise AuthorizationError(
                    "Cannot assign a role ranked above your own",
                    details={'role_priority': role.priority, 'assigner_priority': assigner_priority},
                )
            current_priority = user.role_priority
            if current_priority is not None and assigner_priority > current_priority:
                SecurityLogger.log_escalation_attempt(
                    assigned_by, user, 'role_assignment',
                    "Assigner is junior to the target user",
                )
                raise AuthorizationError("Cannot change the role of a higher-ranked user")

        with transaction.atomic(using=using):
            locked = type(user).objects.using(using).select_for_update().get(pk=user.pk)
            previous_role_id = locked.role_id
            locked.role = role
            locked.save(using=using, update_fields=['role', 'updated_at'])
            AuditLog.log_action(
                action='role_assigned',
                user=assigned_by,
                company=locked.company,
                target_type='User',
                target_id=locked.id,
                diff={
                    'before': str(previous_role_id) if previous_role_id else None,
                    'after': str(role.id),
                },
                using=using,
            )

        user.role = role
        logger.info(
            "Role assigned",
            extra={
                'user_id': str(user.id),
                'role_id': str(role.id),
                'assigned_by': str(assigned_by.id) if assigned_by else None,
            }
        )
        return user
