"""
Subscription service for managing company subscriptions.

Handles pricing, subscription creation and renewal with the copy-down of
plan grants into the entitlement ledger, cancellation, and add-on purchases.
"""
import calendar
import logging
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional

from django.db import transaction, IntegrityError
from django.utils import timezone

from apps.companies.models import (
    Company,
    CompanyModule,
    CompanyPermission,
    CompanySubscription,
    EntitlementSource,
    SubscriptionPlanModule,
    SubscriptionPlanPermission,
)
from apps.core.exceptions import ConflictError, NotFoundError, ValidationError
from apps.core.models import LifecycleState

logger = logging.getLogger(__name__)

CENTS = Decimal('0.01')
DISCOUNT_TYPES = ('percentage', 'fixed')


@dataclass(frozen=True)
class PriceBreakdown:
    original_price: Decimal
    discount_type: str
    discount_value: Decimal
    discount_amount: Decimal
    addon_module_cost: Decimal
    addon_permission_cost: Decimal
    price: Decimal


def _add_months(start: date, months: int) -> date:
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


class SubscriptionService:
    """Service for subscription lifecycle and the entitlement ledger."""

    @staticmethod
    def validate_number_of_users(plan, number_of_users):
        """
        Seat count must be a whole number >= 1 within the plan's limits.
        """
        if isinstance(number_of_users, bool) or not isinstance(number_of_users, int):
            raise ValidationError(
                "Number of users must be a whole number",
                details={'number_of_users': number_of_users},
            )
        if number_of_users < 1:
            raise ValidationError(
                "Number of users must be at least 1",
                details={'number_of_users': number_of_users},
            )
        if number_of_users < plan.min_users:
            raise ValidationError(
                f"Plan '{plan.name}' requires at least {plan.min_users} users",
                details={'number_of_users': number_of_users, 'min_users': plan.min_users},
            )
        if plan.max_users is not None and number_of_users > plan.max_users:
            raise ValidationError(
                f"Plan '{plan.name}' allows at most {plan.max_users} users",
                details={'number_of_users': number_of_users, 'max_users': plan.max_users},
            )

    @staticmethod
    def calculate_end_date(plan, start_date: date) -> date:
        """Start date plus the plan duration."""
        if plan.duration_unit == 'day':
            return start_date + timedelta(days=plan.duration_value)
        if plan.duration_unit == 'month':
            return _add_months(start_date, plan.duration_value)
        if plan.duration_unit == 'year':
            return _add_months(start_date, 12 * plan.duration_value)
        raise ValidationError(f"Unknown plan duration unit '{plan.duration_unit}'")

    @classmethod
    def calculate_price(cls, plan, number_of_users, discount_type=None, discount_value=None,
                        addon_modules: Iterable = (), addon_permissions: Iterable = ()) -> PriceBreakdown:
        """
        Compute the pricing breakdown.

        original = plan price (times seats for per-user plans)
        final = original - discount + add-on costs
        """
        cls.validate_number_of_users(plan, number_of_users)

        original_price = Decimal(plan.price)
        if plan.price_per_user:
            original_price *= number_of_users

        discount_value = Decimal(discount_value or 0)
        discount_amount = Decimal('0')
        if discount_type:
            if discount_type not in DISCOUNT_TYPES:
                raise ValidationError(
                    "Discount type must be 'percentage' or 'fixed'",
                    details={'discount_type': discount_type},
                )
            if discount_value < 0:
                raise ValidationError("Discount value cannot be negative")
            if discount_type == 'percentage':
                if discount_value > 100:
                    raise ValidationError("Percentage discount cannot exceed 100")
                discount_amount = original_price * discount_value / Decimal('100')
            else:
                discount_amount = discount_value
        elif discount_value:
            raise ValidationError("Discount value given without a discount type")

        addon_module_cost = sum((Decimal(m.price) for m in addon_modules), Decimal('0'))
        addon_permission_cost = sum((Decimal(p.price) for p in addon_permissions), Decimal('0'))

        def q(amount):
            return amount.quantize(CENTS, rounding=ROUND_HALF_UP)

        return PriceBreakdown(
            original_price=q(original_price),
            discount_type=discount_type or '',
            discount_value=q(discount_value),
            discount_amount=q(discount_amount),
            addon_module_cost=q(addon_module_cost),
            addon_permission_cost=q(addon_permission_cost),
            price=q(original_price - discount_amount + addon_module_cost + addon_permission_cost),
        )

    @staticmethod
    def current_subscription(company):
        return CompanySubscription.objects.current_for(company.id)

    @classmethod
    def create_subscription(cls, company, plan, number_of_users, discount_type=None,
                            discount_value=None, addon_module_ids=(), addon_permission_ids=(),
                            start_date: Optional[date] = None, created_by=None, using='default'):
        """
        Create the company's new current subscription.

        Supersedes the previous current subscription (its plan-sourced ledger
        rows are soft-deleted), copies the plan's modules, the permissions of
        those modules and the plan's permissions into the ledger with
        source=plan, and records add-ons with source=addon. All or nothing.
        """
        from apps.rbac.models import AuditLog, Module, Permission

        if not plan.is_active:
            raise ValidationError(f"Plan '{plan.name}' is not available")

        addon_modules = list(Module.objects.using(using).active().filter(id__in=list(addon_module_ids)))
        if len(addon_modules) != len(set(addon_module_ids)):
            raise NotFoundError("One or more add-on modules not found")
        addon_permissions = list(
            Permission.objects.using(using).active().filter(id__in=list(addon_permission_ids))
        )
        if len(addon_permissions) != len(set(addon_permission_ids)):
            raise NotFoundError("One or more add-on permissions not found")

        pricing = cls.calculate_price(
            plan, number_of_users, discount_type, discount_value, addon_modules, addon_permissions
        )
        start_date = start_date or timezone.localdate()

        with transaction.atomic(using=using):
            # Serializes concurrent subscription changes for one company
            Company.objects.using(using).select_for_update().get(pk=company.pk)

            previous = (
                CompanySubscription.objects.using(using)
                .select_for_update()
                .filter(company=company, is_current=True)
                .first()
            )
            if previous is not None:
                previous.is_current = False
                previous.save(using=using, update_fields=['is_current', 'updated_at'])
                cls._retire_plan_entitlements(previous, using=using)

            plan_module_ids = set(
                SubscriptionPlanModule.objects.using(using).active()
                .filter(plan=plan).values_list('module_id', flat=True)
            )
            plan_permission_ids = set(
                SubscriptionPlanPermission.objects.using(using).active()
                .filter(plan=plan).values_list('permission_id', flat=True)
            )
            cls._reject_addons_included_in_plan(
                addon_modules, addon_permissions, plan_module_ids, plan_permission_ids
            )

            subscription = CompanySubscription.objects.using(using).create(
                company=company,
                plan=plan,
                number_of_users=number_of_users,
                start_date=start_date,
                end_date=cls.calculate_end_date(plan, start_date),
                status='active',
                is_current=True,
                original_price=pricing.original_price,
                discount_type=pricing.discount_type,
                discount_value=pricing.discount_value,
                discount_amount=pricing.discount_amount,
                addon_module_cost=pricing.addon_module_cost,
                addon_permission_cost=pricing.addon_permission_cost,
                price=pricing.price,
            )

            copied_modules, copied_permissions = cls._copy_plan_entitlements(
                company, subscription, plan_module_ids, plan_permission_ids, using=using
            )

            for module in addon_modules:
                cls._create_ledger_row(
                    CompanyModule, using, company=company, module=module,
                    subscription=subscription, source=EntitlementSource.ADDON, price=module.price,
                )
            for permission in addon_permissions:
                cls._create_ledger_row(
                    CompanyPermission, using, company=company, permission=permission,
                    subscription=subscription, source=EntitlementSource.ADDON, price=permission.price,
                )

            AuditLog.log_action(
                action='subscription_created',
                user=created_by,
                company=company,
                target_type='CompanySubscription',
                target_id=subscription.id,
                diff={
                    'plan': plan.name,
                    'number_of_users': number_of_users,
                    'price': str(pricing.price),
                    'superseded_subscription_id': str(previous.id) if previous else None,
                },
                metadata={
                    'plan_modules_copied': copied_modules,
                    'plan_permissions_copied': copied_permissions,
                    'addon_modules': [str(m.id) for m in addon_modules],
                    'addon_permissions': [str(p.id) for p in addon_permissions],
                },
                using=using,
            )

        logger.info(
            "Subscription created",
            extra={
                'company_id': str(company.id),
                'subscription_id': str(subscription.id),
                'plan_name': plan.name,
                'price': str(pricing.price),
                'superseded': bool(previous),
            }
        )
        return subscription

    @classmethod
    def renew_subscription(cls, company, plan=None, number_of_users=None, discount_type=None,
                           discount_value=None, renewed_by=None, using='default'):
        """
        Supersede the current subscription with a fresh one.

        Defaults to the same plan and seat count. Add-ons persist untouched.
        """
        current = cls.current_subscription(company)
        if current is None and (plan is None or number_of_users is None):
            raise NotFoundError("Company has no current subscription to renew")

        return cls.create_subscription(
            company,
            plan or current.plan,
            number_of_users if number_of_users is not None else current.number_of_users,
            discount_type=discount_type,
            discount_value=discount_value,
            created_by=renewed_by,
            using=using,
        )

    @classmethod
    def cancel_subscription(cls, subscription, cancelled_by=None, using='default'):
        """Cancel a subscription and withdraw its plan-sourced entitlements."""
        from apps.rbac.models import AuditLog

        if subscription.status != 'active':
            raise ConflictError(
                f"Only active subscriptions can be cancelled (status: {subscription.status})"
            )

        with transaction.atomic(using=using):
            locked = CompanySubscription.objects.using(using).select_for_update().get(pk=subscription.pk)
            locked.status = 'cancelled'
            locked.cancelled_at = timezone.now()
            locked.save(using=using, update_fields=['status', 'cancelled_at', 'updated_at'])
            cls._retire_plan_entitlements(locked, using=using)

            AuditLog.log_action(
                action='subscription_cancelled',
                user=cancelled_by,
                company=locked.company,
                target_type='CompanySubscription',
                target_id=locked.id,
                using=using,
            )

        logger.info(
            "Subscription cancelled",
            extra={'company_id': str(locked.company_id), 'subscription_id': str(locked.id)}
        )
        return locked

    @classmethod
    def purchase_addon_module(cls, company, module, purchased_by=None, using='default'):
        """Record a standalone add-on module purchase."""
        return cls._purchase_addon(CompanyModule, 'module', company, module, purchased_by, using)

    @classmethod
    def purchase_addon_permission(cls, company, permission, purchased_by=None, using='default'):
        """Record a standalone add-on permission purchase."""
        return cls._purchase_addon(CompanyPermission, 'permission', company, permission, purchased_by, using)

    @classmethod
    def remove_addon_module(cls, company, module, removed_by=None, using='default'):
        return cls._remove_addon(CompanyModule, 'module', company, module, removed_by, using)

    @classmethod
    def remove_addon_permission(cls, company, permission, removed_by=None, using='default'):
        return cls._remove_addon(CompanyPermission, 'permission', company, permission, removed_by, using)

    # Internal helpers

    @staticmethod
    def _retire_plan_entitlements(subscription, using):
        modules = CompanyModule.objects.using(using).filter(
            subscription=subscription, source=EntitlementSource.PLAN
        ).delete()
        permissions = CompanyPermission.objects.using(using).filter(
            subscription=subscription, source=EntitlementSource.PLAN
        ).delete()
        logger.info(
            "Plan entitlements retired",
            extra={
                'subscription_id': str(subscription.id),
                'modules_retired': modules,
                'permissions_retired': permissions,
            }
        )

    @staticmethod
    def _reject_addons_included_in_plan(addon_modules, addon_permissions,
                                        plan_module_ids, plan_permission_ids):
        included = [m.name for m in addon_modules if m.id in plan_module_ids]
        included += [
            p.code for p in addon_permissions
            if p.id in plan_permission_ids or p.module_id in plan_module_ids
        ]
        if included:
            raise ValidationError(
                "Add-ons already included in the plan",
                details={'included': included},
            )

    @classmethod
    def _copy_plan_entitlements(cls, company, subscription, plan_module_ids, plan_permission_ids, using):
        from apps.rbac.models import Permission

        held_module_ids = set(
            CompanyModule.objects.using(using).filter(company=company).values_list('module_id', flat=True)
        )
        module_rows = [
            CompanyModule(
                company=company, module_id=module_id, subscription=subscription,
                source=EntitlementSource.PLAN,
            )
            for module_id in plan_module_ids - held_module_ids
        ]
        CompanyModule.objects.using(using).bulk_create(module_rows)

        module_permission_ids = set(
            Permission.objects.using(using).active()
            .filter(module_id__in=plan_module_ids).values_list('id', flat=True)
        )
        held_permission_ids = set(
            CompanyPermission.objects.using(using).filter(company=company)
            .values_list('permission_id', flat=True)
        )
        permission_rows = [
            CompanyPermission(
                company=company, permission_id=permission_id, subscription=subscription,
                source=EntitlementSource.PLAN,
            )
            for permission_id in (module_permission_ids | plan_permission_ids) - held_permission_ids
        ]
        CompanyPermission.objects.using(using).bulk_create(permission_rows)
        return len(module_rows), len(permission_rows)

    @staticmethod
    def _create_ledger_row(model, using, **fields):
        try:
            with transaction.atomic(using=using):
                return model.objects.using(using).create(**fields)
        except IntegrityError:
            raise ConflictError(
                f"Company already holds this {model._meta.verbose_name}",
                details={key: str(getattr(value, 'id', value)) for key, value in fields.items()},
            )

    @classmethod
    def _purchase_addon(cls, model, field, company, target, purchased_by, using):
        from apps.rbac.models import AuditLog

        with transaction.atomic(using=using):
            existing = model.objects.using(using).select_for_update().filter(
                company=company, **{field: target}
            ).first()
            if existing is not None and existing.state == LifecycleState.ACTIVE:
                raise ConflictError(
                    f"Company already has access to this {field}",
                    details={f'{field}_id': str(target.id), 'source': existing.source},
                )
            if existing is not None:
                existing.source = EntitlementSource.ADDON
                existing.subscription = None
                existing.price = target.price
                existing.state = LifecycleState.ACTIVE
                existing.save(using=using)
                row = existing
            else:
                row = cls._create_ledger_row(
                    model, using, company=company, source=EntitlementSource.ADDON,
                    price=target.price, **{field: target},
                )

            AuditLog.log_action(
                action=f'addon_{field}_purchased',
                user=purchased_by,
                company=company,
                target_type=model.__name__,
                target_id=row.id,
                diff={f'{field}_id': str(target.id), 'price': str(target.price)},
                using=using,
            )

        logger.info(
            f"Add-on {field} purchased",
            extra={'company_id': str(company.id), f'{field}_id': str(target.id)}
        )
        return row

    @staticmethod
    def _remove_addon(model, field, company, target, removed_by, using):
        from apps.rbac.models import AuditLog

        with transaction.atomic(using=using):
            row = model.objects.using(using).filter(
                company=company, source=EntitlementSource.ADDON, **{field: target}
            ).first()
            if row is None:
                raise NotFoundError(f"Add-on {field} not found for company")
            row.delete(using=using)

            AuditLog.log_action(
                action=f'addon_{field}_removed',
                user=removed_by,
                company=company,
                target_type=model.__name__,
                target_id=row.id,
                using=using,
            )
        return row
