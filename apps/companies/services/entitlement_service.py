"""
Entitlement resolver.

Answers what a company has paid for: free modules, modules and permissions
granted by the current subscription plan, and purchased add-ons recorded in
the CompanyModule / CompanyPermission ledger.
"""
import logging
from dataclasses import dataclass
from typing import FrozenSet, Optional
from uuid import UUID

from apps.companies.models import (
    CompanyModule,
    CompanyPermission,
    CompanySubscription,
    SubscriptionPlanModule,
    SubscriptionPlanPermission,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EntitlementQuery:
    company_id: UUID
    module_id: Optional[UUID] = None
    permission_id: Optional[UUID] = None


class EntitlementPath:
    SUBSCRIPTION_EXEMPT = 'subscription_exempt'
    FREE_MODULE = 'free_module'
    MODULE = 'module'
    PERMISSION = 'permission'


@dataclass(frozen=True)
class EntitlementResult:
    entitled: bool
    via: Optional[str] = None

    def __bool__(self):
        return self.entitled


NOT_ENTITLED = EntitlementResult(False)


@dataclass(frozen=True)
class CompanyEntitlements:
    """
    Everything a company is entitled to, loaded once.

    `check()` answers exactly what EntitlementService.check_entitlement
    answers, without touching the database.
    """
    company_id: UUID
    free_module_ids: FrozenSet[UUID]
    module_ids: FrozenSet[UUID]
    permission_ids: FrozenSet[UUID]

    def check(self, permission) -> EntitlementResult:
        if permission.is_subscription_exempt:
            return EntitlementResult(True, EntitlementPath.SUBSCRIPTION_EXEMPT)
        if permission.module_id in self.free_module_ids:
            return EntitlementResult(True, EntitlementPath.FREE_MODULE)
        if permission.module_id in self.module_ids:
            return EntitlementResult(True, EntitlementPath.MODULE)
        if permission.id in self.permission_ids:
            return EntitlementResult(True, EntitlementPath.PERMISSION)
        return NOT_ENTITLED


class EntitlementService:
    """Service for resolving company entitlements."""

    @staticmethod
    def current_subscription(company_id):
        """The company's current, active, non-deleted subscription."""
        return CompanySubscription.objects.current_for(company_id)

    @staticmethod
    def free_module_ids():
        from apps.rbac.models import Module
        return set(Module.objects.active().filter(is_free_for_all=True).values_list('id', flat=True))

    @classmethod
    def module_ids_accessible_to_company(cls, company_id) -> set:
        """Free modules, current-plan modules and active CompanyModule rows."""
        module_ids = cls.free_module_ids()
        module_ids |= set(
            CompanyModule.objects.active()
            .filter(company_id=company_id)
            .values_list('module_id', flat=True)
        )
        subscription = cls.current_subscription(company_id)
        if subscription is not None:
            module_ids |= set(
                SubscriptionPlanModule.objects.active()
                .filter(plan_id=subscription.plan_id)
                .values_list('module_id', flat=True)
            )
        return module_ids

    @classmethod
    def permission_ids_entitled_to_company(cls, company_id) -> set:
        """Current-plan permissions and active CompanyPermission rows."""
        permission_ids = set(
            CompanyPermission.objects.active()
            .filter(company_id=company_id)
            .values_list('permission_id', flat=True)
        )
        subscription = cls.current_subscription(company_id)
        if subscription is not None:
            permission_ids |= set(
                SubscriptionPlanPermission.objects.active()
                .filter(plan_id=subscription.plan_id)
                .values_list('permission_id', flat=True)
            )
        return permission_ids

    @classmethod
    def has_module_access(cls, query: EntitlementQuery) -> bool:
        """
        Module access, cheapest check first:

        1. the module is active and free for all
        2. an active CompanyModule row
        3. the current subscription's plan includes the module
        """
        from apps.rbac.models import Module

        if Module.objects.active().filter(pk=query.module_id, is_free_for_all=True).exists():
            return True

        if CompanyModule.objects.active().filter(
            company_id=query.company_id, module_id=query.module_id
        ).exists():
            return True

        subscription = cls.current_subscription(query.company_id)
        if subscription is None:
            return False
        return SubscriptionPlanModule.objects.active().filter(
            plan_id=subscription.plan_id, module_id=query.module_id
        ).exists()

    @classmethod
    def has_permission_access(cls, query: EntitlementQuery) -> bool:
        """Direct permission entitlement: current plan first, then the ledger."""
        subscription = cls.current_subscription(query.company_id)
        if subscription is not None and SubscriptionPlanPermission.objects.active().filter(
            plan_id=subscription.plan_id, permission_id=query.permission_id
        ).exists():
            return True

        return CompanyPermission.objects.active().filter(
            company_id=query.company_id, permission_id=query.permission_id
        ).exists()

    @classmethod
    def check_entitlement(cls, company_id, permission) -> EntitlementResult:
        """
        Whether the company may use `permission` at all.

        Subscription-exempt permissions and permissions of active free
        modules need no entitlement. Otherwise module access is required or,
        failing that, a direct permission entitlement.
        """
        if permission.is_subscription_exempt:
            return EntitlementResult(True, EntitlementPath.SUBSCRIPTION_EXEMPT)

        module = permission.module
        if module.is_active and module.is_free_for_all:
            return EntitlementResult(True, EntitlementPath.FREE_MODULE)

        if cls.has_module_access(EntitlementQuery(company_id, module_id=permission.module_id)):
            return EntitlementResult(True, EntitlementPath.MODULE)

        if cls.has_permission_access(EntitlementQuery(company_id, permission_id=permission.id)):
            return EntitlementResult(True, EntitlementPath.PERMISSION)

        return NOT_ENTITLED

    @classmethod
    def load_company_entitlements(cls, company_id) -> CompanyEntitlements:
        """Preload module and permission entitlement sets for batch checks."""
        free_module_ids = cls.free_module_ids()
        entitlements = CompanyEntitlements(
            company_id=company_id,
            free_module_ids=frozenset(free_module_ids),
            module_ids=frozenset(cls.module_ids_accessible_to_company(company_id)),
            permission_ids=frozenset(cls.permission_ids_entitled_to_company(company_id)),
        )
        logger.debug(
            "Company entitlements loaded",
            extra={
                'company_id': str(company_id),
                'module_count': len(entitlements.module_ids),
                'permission_count': len(entitlements.permission_ids),
            }
        )
        return entitlements
