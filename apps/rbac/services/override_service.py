"""
User permission override store.

Per-user allow/deny directives layered on top of role grants. Expiry is lazy:
an expired row simply stops counting until cleanup_expired_overrides removes
it.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional
from uuid import UUID

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from apps.core.exceptions import (
    AuthorizationError,
    NotFoundError,
    OverrideLimitExceeded,
    ValidationError,
)
from apps.core.logging import SecurityLogger
from apps.rbac.hierarchy import get_permission_hierarchy
from apps.rbac.models import (
    AuditLog,
    OverrideEffect,
    Permission,
    RolePermission,
    UserPermissionOverride,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OverrideRequest:
    permission_id: UUID
    effect: str
    reason: str = ''
    expires_at: Optional[datetime] = None


@dataclass(frozen=True)
class BulkOverrideResult:
    overrides: List[UserPermissionOverride]
    original_count: int
    cascaded_count: int
    total_created: int


def _max_active_overrides():
    return getattr(settings, 'RBAC_MAX_ACTIVE_OVERRIDES', 50)


def _grantor_max_priority():
    return getattr(settings, 'RBAC_OVERRIDE_GRANTOR_MAX_PRIORITY', 20)


class OverrideService:
    """Service for creating, listing and removing user permission overrides."""

    @classmethod
    def validate_grant_authorization(cls, granted_by, target_user, permission):
        """
        Check that `granted_by` may place or remove an override on `target_user`.

        Raises:
            NotFoundError: If grantor, target or permission is missing
            AuthorizationError: If the grantor lacks standing
        """
        if permission is None or permission.is_deleted:
            raise NotFoundError("Permission not found")
        cls.validate_standing(granted_by, target_user)

        if permission.is_system_permission:
            SecurityLogger.log_event(
                'system_permission_override_attempt',
                actor_id=str(granted_by.id),
                target_user_id=str(target_user.id),
                permission_key=permission.code,
            )
            raise AuthorizationError(
                "System permissions cannot be overridden",
                details={'permission_key': permission.code},
            )

    @staticmethod
    def validate_standing(granted_by, target_user):
        """The permission-independent half of the authorization gate."""
        if granted_by is None:
            raise NotFoundError("Granting user not found")
        if target_user is None:
            raise NotFoundError("Target user not found")

        grantor_priority = granted_by.role_priority
        if grantor_priority is None or not granted_by.is_active:
            raise AuthorizationError(
                "Granting user has no active role",
                details={'granted_by': str(granted_by.id)},
            )
        if grantor_priority > _grantor_max_priority():
            SecurityLogger.log_escalation_attempt(
                granted_by, target_user, 'override_grant',
                f"Grantor priority {grantor_priority} exceeds {_grantor_max_priority()}",
            )
            raise AuthorizationError(
                "Insufficient privileges to manage permission overrides",
                details={'grantor_priority': grantor_priority},
            )

        target_priority = target_user.role_priority
        if target_priority is None:
            raise AuthorizationError(
                "Target user has no role assigned",
                details={'user_id': str(target_user.id)},
            )
        if grantor_priority > target_priority:
            SecurityLogger.log_escalation_attempt(
                granted_by, target_user, 'override_grant',
                "Grantor is junior to the target user",
            )
            raise AuthorizationError(
                "Cannot manage overrides for a user with a higher-ranked role",
                details={'grantor_priority': grantor_priority, 'target_priority': target_priority},
            )

        if granted_by.company_id is not None and granted_by.company_id != target_user.company_id:
            SecurityLogger.log_escalation_attempt(
                granted_by, target_user, 'override_grant',
                "Target user belongs to a different company",
            )
            raise AuthorizationError("Cannot manage overrides for users of another company")

    @staticmethod
    def _validate_effect(effect):
        if effect not in OverrideEffect.values:
            raise ValidationError(
                "Override effect must be 'allow' or 'deny'",
                details={'effect': effect},
            )

    @staticmethod
    def _validate_expiry(expires_at):
        if expires_at is not None and expires_at <= timezone.now():
            raise ValidationError(
                "Expiration must be in the future",
                details={'expires_at': expires_at.isoformat()},
            )

    @staticmethod
    def active_override_count(user, using='default'):
        return UserPermissionOverride.objects.using(using).active().filter(user=user).count()

    @classmethod
    def create_override(cls, user, permission, effect, granted_by, expires_at=None,
                        reason='', using='default'):
        """
        Create or update the user's override on `permission`.

        Returns:
            (override, created) tuple

        Raises:
            ValidationError: Bad effect, missing grantor or past expiry
            AuthorizationError: Grantor lacks standing
            OverrideLimitExceeded: A new row would exceed the active cap
        """
        cls._validate_effect(effect)
        if granted_by is None:
            raise ValidationError("granted_by is required")
        cls._validate_expiry(expires_at)
        cls.validate_grant_authorization(granted_by, user, permission)

        if effect == OverrideEffect.DENY:
            # The role may grant the permission directly or through a broader action.
            granting_ids = (permission.id,) + tuple(get_permission_hierarchy().broader(permission.id))
            if not RolePermission.objects.filter(
                role_id=user.role_id, permission_id__in=granting_ids
            ).exists():
                logger.warning(
                    "Redundant deny override: role does not grant the permission",
                    extra={
                        'user_id': str(user.id),
                        'permission_key': permission.code,
                        'role_id': str(user.role_id),
                    }
                )

        with transaction.atomic(using=using):
            existing = (
                UserPermissionOverride.objects.using(using).select_for_update()
                .filter(user=user, permission=permission).first()
            )
            if existing is None and cls.active_override_count(user, using) >= _max_active_overrides():
                raise OverrideLimitExceeded(
                    f"User already holds the maximum of {_max_active_overrides()} active overrides",
                    details={'user_id': str(user.id), 'limit': _max_active_overrides()},
                )

            before = {'effect': existing.effect} if existing else {}
            override, created = UserPermissionOverride.objects.using(using).update_or_create(
                user=user,
                permission=permission,
                defaults={
                    'effect': effect,
                    'expires_at': expires_at,
                    'reason': reason,
                    'granted_by': granted_by,
                },
            )

            AuditLog.log_action(
                action='override_created' if created else 'override_updated',
                user=granted_by,
                company=user.company,
                target_type='UserPermissionOverride',
                target_id=override.id,
                diff={
                    'before': before,
                    'after': {
                        'effect': effect,
                        'expires_at': expires_at.isoformat() if expires_at else None,
                    },
                },
                metadata={
                    'user_id': str(user.id),
                    'permission_key': permission.code,
                    'reason': reason,
                },
                using=using,
            )

        logger.info(
            "Permission override saved",
            extra={
                'user_id': str(user.id),
                'permission_key': permission.code,
                'effect': effect,
                'was_created': created,
                'granted_by': str(granted_by.id),
            }
        )
        return override, created

    @staticmethod
    def get_effective(user, permission) -> Optional[str]:
        """The unexpired override effect for (user, permission), or None."""
        return (
            UserPermissionOverride.objects.active()
            .filter(user=user, permission=permission)
            .values_list('effect', flat=True)
            .first()
        )

    @staticmethod
    def expand_cascade(requests: Iterable[OverrideRequest], hierarchy=None) -> List[OverrideRequest]:
        """
        Expand override requests along the action hierarchy.

        An allow flows down to narrower actions of the same resource, a deny
        flows up to broader ones. Deny wins when both land on one permission;
        an explicit request wins over a cascaded one of the same effect.
        """
        hierarchy = hierarchy or get_permission_hierarchy()

        explicit = {}
        for request in requests:
            current = explicit.get(request.permission_id)
            if current is not None and current.effect == OverrideEffect.DENY:
                continue
            explicit[request.permission_id] = request

        cascaded_denies = {}
        cascaded_allows = {}
        for request in explicit.values():
            code = hierarchy.code(request.permission_id) or str(request.permission_id)
            if request.effect == OverrideEffect.ALLOW:
                for narrower_id in hierarchy.narrower(request.permission_id):
                    cascaded_allows.setdefault(narrower_id, OverrideRequest(
                        permission_id=narrower_id,
                        effect=OverrideEffect.ALLOW,
                        reason=request.reason or f"Cascaded from broader permission {code}",
                        expires_at=request.expires_at,
                    ))
            else:
                for broader_id in hierarchy.broader(request.permission_id):
                    cascaded_denies.setdefault(broader_id, OverrideRequest(
                        permission_id=broader_id,
                        effect=OverrideEffect.DENY,
                        reason=request.reason or f"Cascaded from narrower permission denial {code}",
                        expires_at=request.expires_at,
                    ))

        expanded = dict(explicit)
        for permission_id, request in cascaded_denies.items():
            current = expanded.get(permission_id)
            if current is None or current.effect == OverrideEffect.ALLOW:
                expanded[permission_id] = request
        for permission_id, request in cascaded_allows.items():
            expanded.setdefault(permission_id, request)
        return list(expanded.values())

    @classmethod
    def bulk_create_overrides(cls, user, requests: Iterable[OverrideRequest], granted_by,
                              cascade=True, using='default') -> BulkOverrideResult:
        """
        Upsert many overrides at once, optionally cascading them.

        Every expanded row passes the authorization gate before anything is
        written; the writes then happen in one transaction.
        """
        requests = list(requests)
        if not requests:
            raise ValidationError("At least one override is required")
        if granted_by is None:
            raise ValidationError("granted_by is required")
        for request in requests:
            cls._validate_effect(request.effect)
            cls._validate_expiry(request.expires_at)

        expanded = cls.expand_cascade(requests) if cascade else cls.expand_cascade(
            requests, hierarchy=_NoHierarchy()
        )
        explicit_ids = {id(request) for request in requests}
        cascaded_count = sum(1 for request in expanded if id(request) not in explicit_ids)

        permissions = Permission.objects.using(using).in_bulk([r.permission_id for r in expanded])
        for request in expanded:
            cls.validate_grant_authorization(granted_by, user, permissions.get(request.permission_id))

        with transaction.atomic(using=using):
            existing_ids = set(
                UserPermissionOverride.objects.using(using).select_for_update()
                .filter(user=user, permission_id__in=list(permissions))
                .values_list('permission_id', flat=True)
            )
            new_count = sum(1 for r in expanded if r.permission_id not in existing_ids)
            active_count = cls.active_override_count(user, using)
            if active_count + new_count > _max_active_overrides():
                raise OverrideLimitExceeded(
                    f"Creating {new_count} overrides would exceed the maximum of "
                    f"{_max_active_overrides()} active overrides",
                    details={
                        'user_id': str(user.id),
                        'active': active_count,
                        'requested': new_count,
                        'limit': _max_active_overrides(),
                    },
                )

            overrides = []
            total_created = 0
            for request in expanded:
                override, created = UserPermissionOverride.objects.using(using).update_or_create(
                    user=user,
                    permission=permissions[request.permission_id],
                    defaults={
                        'effect': request.effect,
                        'expires_at': request.expires_at,
                        'reason': request.reason,
                        'granted_by': granted_by,
                    },
                )
                overrides.append(override)
                total_created += int(created)

            AuditLog.log_action(
                action='overrides_bulk_created',
                user=granted_by,
                company=user.company,
                target_type='User',
                target_id=user.id,
                diff={
                    'overrides': [
                        {'permission_key': permissions[r.permission_id].code, 'effect': r.effect}
                        for r in expanded
                    ],
                },
                metadata={
                    'cascade': cascade,
                    'original_count': len(requests),
                    'cascaded_count': cascaded_count,
                },
                using=using,
            )

        logger.info(
            "Bulk permission overrides saved",
            extra={
                'user_id': str(user.id),
                'original_count': len(requests),
                'cascaded_count': cascaded_count,
                'total_created': total_created,
            }
        )
        return BulkOverrideResult(
            overrides=overrides,
            original_count=len(requests),
            cascaded_count=cascaded_count,
            total_created=total_created,
        )

    @staticmethod
    def list_overrides(user, include_expired=False):
        queryset = UserPermissionOverride.objects.filter(user=user).select_related(
            'user', 'permission', 'permission__module', 'granted_by'
        )
        if not include_expired:
            queryset = queryset.active()
        return queryset.order_by('permission__code')

    @staticmethod
    def users_with_override(permission, company=None, include_expired=False):
        """Overrides placed on `permission`, with their users, optionally for one company."""
        queryset = UserPermissionOverride.objects.filter(permission=permission).select_related(
            'user', 'permission', 'granted_by'
        )
        if company is not None:
            queryset = queryset.filter(user__company=company)
        if not include_expired:
            queryset = queryset.active()
        return queryset.order_by('user__email')

    @classmethod
    def remove_override(cls, user, permission, removed_by, using='default'):
        """Hard delete the user's override on `permission`."""
        cls.validate_grant_authorization(removed_by, user, permission)

        with transaction.atomic(using=using):
            override = UserPermissionOverride.objects.using(using).filter(
                user=user, permission=permission
            ).first()
            if override is None:
                raise NotFoundError(
                    "Override not found",
                    details={'user_id': str(user.id), 'permission_key': permission.code},
                )
            override_id = override.id
            effect = override.effect
            override.delete(using=using)

            AuditLog.log_action(
                action='override_removed',
                user=removed_by,
                company=user.company,
                target_type='UserPermissionOverride',
                target_id=override_id,
                diff={'before': {'effect': effect}, 'after': None},
                metadata={'user_id': str(user.id), 'permission_key': permission.code},
                using=using,
            )

        logger.info(
            "Permission override removed",
            extra={'user_id': str(user.id), 'permission_key': permission.code}
        )

    @classmethod
    def remove_all_overrides(cls, user, removed_by, using='default') -> int:
        """Hard delete every override the user holds. Returns the count removed."""
        cls.validate_standing(removed_by, user)

        with transaction.atomic(using=using):
            overrides = list(
                UserPermissionOverride.objects.using(using).select_for_update()
                .filter(user=user).select_related('permission')
            )
            for override in overrides:
                cls.validate_grant_authorization(removed_by, user, override.permission)

            removed = UserPermissionOverride.objects.using(using).filter(
                id__in=[o.id for o in overrides]
            ).delete()[0]

            AuditLog.log_action(
                action='overrides_cleared',
                user=removed_by,
                company=user.company,
                target_type='User',
                target_id=user.id,
                diff={'removed': [o.permission.code for o in overrides]},
                using=using,
            )

        logger.info(
            "All permission overrides removed",
            extra={'user_id': str(user.id), 'removed': removed}
        )
        return removed

    @classmethod
    def update_expiration(cls, user, permission, expires_at, updated_by, using='default'):
        """Change when an existing override expires (None for never)."""
        cls._validate_expiry(expires_at)
        cls.validate_grant_authorization(updated_by, user, permission)

        with transaction.atomic(using=using):
            override = (
                UserPermissionOverride.objects.using(using).select_for_update()
                .filter(user=user, permission=permission).first()
            )
            if override is None:
                raise NotFoundError(
                    "Override not found",
                    details={'user_id': str(user.id), 'permission_key': permission.code},
                )
            before = override.expires_at
            override.expires_at = expires_at
            override.save(using=using, update_fields=['expires_at', 'updated_at'])

            AuditLog.log_action(
                action='override_expiration_updated',
                user=updated_by,
                company=user.company,
                target_type='UserPermissionOverride',
                target_id=override.id,
                diff={
                    'before': before.isoformat() if before else None,
                    'after': expires_at.isoformat() if expires_at else None,
                },
                using=using,
            )
        return override

    @staticmethod
    def cleanup_expired_overrides(user=None, using='default') -> int:
        """
        Delete expired overrides, for one user or everyone.

        Returns:
            Number of rows removed
        """
        queryset = UserPermissionOverride.objects.using(using).expired()
        if user is not None:
            queryset = queryset.filter(user=user)
        removed = queryset.delete()[0]
        logger.info(
            "Expired permission overrides cleaned up",
            extra={'removed': removed, 'user_id': str(user.id) if user else None}
        )
        return removed

    @staticmethod
    def override_stats(user):
        now = timezone.now()
        queryset = UserPermissionOverride.objects.filter(user=user)
        return {
            'total': queryset.count(),
            'active': queryset.active(now).count(),
            'expired': queryset.expired(now).count(),
            'allows': queryset.active(now).allows().count(),
            'denies': queryset.active(now).denies().count(),
        }


class _NoHierarchy:
    """Hierarchy stand-in that relates nothing, used when cascading is off."""

    def code(self, permission_id):
        return None

    def broader(self, permission_id):
        return ()

    def narrower(self, permission_id):
        return ()
