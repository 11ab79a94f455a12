"""
Access decision engine.

A single decision chain answers "may this user use this permission?":

1. preconditions (user, active account, role, company, permission)
2. company entitlement (terminal when missing)
3. deny override, exact then via a broader action
4. allow override, exact then via a broader action
5. role grant, exact then via a broader action
6. default deny

The single check, the batch check and the snapshot all run `_decide` against
an access context. The live context queries the database per question, the
preloaded context answers from sets loaded once, so the three operations
cannot drift apart.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Optional

from django.core.exceptions import ValidationError as DjangoValidationError

from apps.companies.services.entitlement_service import EntitlementService
from apps.core.exceptions import NotFoundError
from apps.core.models import LifecycleState
from apps.rbac.hierarchy import PermissionHierarchy, get_permission_hierarchy
from apps.rbac.models import (
    SUPER_ADMIN_PRIORITY,
    Module,
    OverrideEffect,
    Permission,
    RolePermission,
    User,
    UserPermissionOverride,
)

logger = logging.getLogger(__name__)


class DecisionReason:
    USER_NOT_FOUND = "User not found"
    USER_INACTIVE = "User account is inactive"
    NO_ROLE = "User has no role assigned"
    NO_COMPANY = "User has no company assigned"
    PERMISSION_NOT_FOUND = "Permission not found"
    NO_ENTITLEMENT = "Feature not included in subscription"
    OVERRIDE_DENY = "Permission explicitly denied for user"
    OVERRIDE_ALLOW = "Permission explicitly allowed for user"
    ROLE_GRANT = "Permission granted by role"
    NOT_GRANTED = "Permission not granted by role"

    HIERARCHICAL_SUFFIX = " (via higher-level action)"


class MatchType:
    EXACT = 'exact'
    HIERARCHICAL = 'hierarchical'


@dataclass(frozen=True)
class AccessDecision:
    has_access: bool
    reason: str
    details: Dict = field(default_factory=dict)

    def __bool__(self):
        return self.has_access

    @property
    def match_type(self) -> Optional[str]:
        return self.details.get('match_type')

    @property
    def granted_via(self) -> Optional[str]:
        return self.details.get('granted_via')

    @property
    def no_entitlement(self) -> bool:
        return bool(self.details.get('no_entitlement'))

    def to_dict(self):
        return {
            'has_access': self.has_access,
            'reason': self.reason,
            'details': self.details,
        }


@dataclass(frozen=True)
class AccessSnapshot:
    permissions: List[str]
    modules: List[str]


class _LiveContext:
    """Answers chain questions straight from the database."""

    def __init__(self, user):
        self.user = user

    def check_entitlement(self, permission):
        return EntitlementService.check_entitlement(self.user.company_id, permission)

    def override_effects(self, permission_ids) -> Dict:
        return dict(
            UserPermissionOverride.objects.active()
            .filter(user_id=self.user.id, permission_id__in=list(permission_ids))
            .values_list('permission_id', 'effect')
        )

    def role_grants(self, permission_ids) -> set:
        return set(
            RolePermission.objects.filter(
                role_id=self.user.role_id, permission_id__in=list(permission_ids)
            ).values_list('permission_id', flat=True)
        )


class _PreloadedContext:
    """Answers chain questions from sets loaded once per user."""

    def __init__(self, entitlements, effects: Dict, granted: FrozenSet):
        self.entitlements = entitlements
        self.effects = effects
        self.granted = granted

    @classmethod
    def load(cls, user):
        return cls(
            entitlements=EntitlementService.load_company_entitlements(user.company_id),
            effects=dict(
                UserPermissionOverride.objects.active()
                .filter(user_id=user.id)
                .values_list('permission_id', 'effect')
            ),
            granted=frozenset(RolePermission.objects.permission_ids_for_role(user.role_id)),
        )

    def check_entitlement(self, permission):
        return self.entitlements.check(permission)

    def override_effects(self, permission_ids) -> Dict:
        return {pid: self.effects[pid] for pid in permission_ids if pid in self.effects}

    def role_grants(self, permission_ids) -> set:
        return {pid for pid in permission_ids if pid in self.granted}


def _match(permission, broader_ids, hits, hierarchy, reason) -> Optional[AccessDecision]:
    """Exact match first, then the first broader permission in table order."""
    if permission.id in hits:
        return AccessDecision(True, reason, {'match_type': MatchType.EXACT})
    for broader_id in broader_ids:
        if broader_id in hits:
            return AccessDecision(
                True,
                reason + DecisionReason.HIERARCHICAL_SUFFIX,
                {'match_type': MatchType.HIERARCHICAL, 'granted_via': hierarchy.code(broader_id)},
            )
    return None


def _decide(ctx, permission, hierarchy: PermissionHierarchy) -> AccessDecision:
    """Run steps 2-6 of the chain for a user who passed the preconditions."""
    entitlement = ctx.check_entitlement(permission)
    if not entitlement:
        return AccessDecision(False, DecisionReason.NO_ENTITLEMENT, {
            'no_entitlement': True,
            'module_id': str(permission.module_id),
            'permission_key': permission.code,
        })

    broader_ids = hierarchy.broader(permission.id)
    candidate_ids = (permission.id,) + tuple(broader_ids)
    effects = ctx.override_effects(candidate_ids)

    denied = {pid for pid, effect in effects.items() if effect == OverrideEffect.DENY}
    match = _match(permission, broader_ids, denied, hierarchy, DecisionReason.OVERRIDE_DENY)
    if match is not None:
        return AccessDecision(False, match.reason, match.details)

    allowed = {pid for pid, effect in effects.items() if effect == OverrideEffect.ALLOW}
    match = _match(permission, broader_ids, allowed, hierarchy, DecisionReason.OVERRIDE_ALLOW)
    if match is not None:
        return match

    granted = ctx.role_grants(candidate_ids)
    match = _match(permission, broader_ids, granted, hierarchy, DecisionReason.ROLE_GRANT)
    if match is not None:
        return match

    return AccessDecision(False, DecisionReason.NOT_GRANTED)


class AccessService:
    """Service for access decisions. The only place the chain is evaluated."""

    @staticmethod
    def _load_user(user_id):
        try:
            return User.objects.select_related('role', 'company').get(pk=user_id)
        except (User.DoesNotExist, DjangoValidationError, ValueError):
            return None

    @staticmethod
    def _precondition_failure(user) -> Optional[AccessDecision]:
        if user is None:
            return AccessDecision(False, DecisionReason.USER_NOT_FOUND)
        if not user.is_active:
            return AccessDecision(False, DecisionReason.USER_INACTIVE)
        if user.role_id is None or not user.role.is_active:
            return AccessDecision(False, DecisionReason.NO_ROLE)
        if user.company_id is None:
            return AccessDecision(False, DecisionReason.NO_COMPANY)
        return None

    @classmethod
    def check_user_permission(cls, user_id, permission_key: str) -> AccessDecision:
        """
        Decide whether a user may use the permission named by `permission_key`.

        Args:
            user_id: User UUID (or its string form)
            permission_key: Permission code, e.g. 'crm:leads:view'

        Returns:
            AccessDecision with the reason of the step that decided
        """
        user = cls._load_user(user_id)
        decision = cls._precondition_failure(user)
        if decision is None:
            permission = (
                Permission.objects.active().select_related('module')
                .filter(code=permission_key).first()
            )
            if permission is None:
                decision = AccessDecision(False, DecisionReason.PERMISSION_NOT_FOUND)
            else:
                decision = _decide(_LiveContext(user), permission, get_permission_hierarchy())

        logger.debug(
            "Access decision",
            extra={
                'user_id': str(user_id),
                'permission_key': permission_key,
                'has_access': decision.has_access,
                'reason': decision.reason,
            }
        )
        return decision

    @classmethod
    def batch_check_decisions(cls, user_id, permission_keys: Iterable[str]) -> Dict[str, AccessDecision]:
        """Full decisions for many keys, with user data loaded once."""
        permission_keys = list(dict.fromkeys(permission_keys))
        user = cls._load_user(user_id)
        failure = cls._precondition_failure(user)
        if failure is not None:
            return {key: failure for key in permission_keys}

        permissions = {
            p.code: p for p in
            Permission.objects.active().select_related('module').filter(code__in=permission_keys)
        }
        ctx = _PreloadedContext.load(user)
        hierarchy = get_permission_hierarchy()

        decisions = {}
        for key in permission_keys:
            permission = permissions.get(key)
            if permission is None:
                decisions[key] = AccessDecision(False, DecisionReason.PERMISSION_NOT_FOUND)
            else:
                decisions[key] = _decide(ctx, permission, hierarchy)
        return decisions

    @classmethod
    def batch_check_user_permissions(cls, user_id, permission_keys: Iterable[str]) -> Dict[str, bool]:
        """
        Check many permissions at once.

        Returns the same answers as calling check_user_permission per key.
        """
        decisions = cls.batch_check_decisions(user_id, permission_keys)
        logger.debug(
            "Batch access check",
            extra={
                'user_id': str(user_id),
                'checked': len(decisions),
                'granted': sum(1 for d in decisions.values() if d.has_access),
            }
        )
        return {key: decision.has_access for key, decision in decisions.items()}

    @classmethod
    def get_user_access_snapshot(cls, user_id) -> AccessSnapshot:
        """
        Every permission the user holds and the modules they can reach.

        A super-admin (priority 0) holds every free permission outright;
        everything else goes through the regular chain.

        Raises:
            NotFoundError: If the user does not exist
        """
        user = cls._load_user(user_id)
        if user is None:
            raise NotFoundError(DecisionReason.USER_NOT_FOUND, details={'user_id': str(user_id)})

        permissions = list(Permission.objects.active().select_related('module'))
        is_super_admin = (
            user.is_active and user.role_id is not None and user.role.is_active
            and user.role.priority == SUPER_ADMIN_PRIORITY
        )
        chain_applies = cls._precondition_failure(user) is None

        granted = []
        if chain_applies:
            ctx = _PreloadedContext.load(user)
            hierarchy = get_permission_hierarchy()
        for permission in permissions:
            if is_super_admin and permission.is_free:
                granted.append(permission)
            elif chain_applies and _decide(ctx, permission, hierarchy).has_access:
                granted.append(permission)

        module_ids = {p.module_id for p in granted}
        if chain_applies:
            module_ids |= set(ctx.entitlements.module_ids)

        modules = Module.objects.active().filter(id__in=module_ids).values_list('name', flat=True)
        snapshot = AccessSnapshot(
            permissions=sorted(p.code for p in granted),
            modules=sorted(modules),
        )
        logger.info(
            "Access snapshot built",
            extra={
                'user_id': str(user.id),
                'permission_count': len(snapshot.permissions),
                'module_count': len(snapshot.modules),
            }
        )
        return snapshot

    @classmethod
    def effective_permissions(cls, user_id) -> Dict[str, List[str]]:
        """Raw inputs of the chain: role grants and active overrides by code."""
        user = cls._load_user(user_id)
        if user is None or user.role_id is None:
            return {'role_permissions': [], 'allow_overrides': [], 'deny_overrides': []}

        role_codes = Permission.objects.active().filter(
            role_permissions__role_id=user.role_id
        ).values_list('code', flat=True)
        overrides = (
            UserPermissionOverride.objects.active()
            .filter(user=user, permission__state=LifecycleState.ACTIVE)
            .values_list('permission__code', 'effect')
        )
        return {
            'role_permissions': sorted(role_codes),
            'allow_overrides': sorted(code for code, effect in overrides if effect == OverrideEffect.ALLOW),
            'deny_overrides': sorted(code for code, effect in overrides if effect == OverrideEffect.DENY),
        }
