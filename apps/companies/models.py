"""
Company, subscription plan and entitlement ledger models.
"""
from django.db import models
from django.db.models import Q

from apps.core.models import LifecycleModel, LifecycleManager, LifecycleState

NOT_DELETED = ~Q(state=LifecycleState.DELETED)


class Company(LifecycleModel):
    """
    A customer company (tenant) of the back office.
    """

    name = models.CharField(max_length=200)
    slug = models.SlugField(max_length=100, unique=True)

    class Meta(LifecycleModel.Meta):
        db_table = 'companies'
        ordering = ['name']
        verbose_name_plural = 'companies'

    def __str__(self):
        return self.name


class SubscriptionPlan(LifecycleModel):
    """
    Pricing template owning a set of module and permission grants.
    """

    DURATION_UNIT_CHOICES = [
        ('day', 'Day'),
        ('month', 'Month'),
        ('year', 'Year'),
    ]

    name = models.CharField(max_length=100, unique=True)
    description = models.TextField(blank=True)
    price = models.DecimalField(max_digits=12, decimal_places=2)
    price_per_user = models.BooleanField(
        default=False,
        help_text="Multiply the price by the number of users"
    )
    duration_value = models.PositiveIntegerField(default=1)
    duration_unit = models.CharField(max_length=10, choices=DURATION_UNIT_CHOICES, default='month')
    min_users = models.PositiveIntegerField(default=1)
    max_users = models.PositiveIntegerField(null=True, blank=True)

    class Meta(LifecycleModel.Meta):
        db_table = 'subscription_plans'
        ordering = ['price']

    def __str__(self):
        return self.name


class SubscriptionPlanModule(LifecycleModel):
    plan = models.ForeignKey(SubscriptionPlan, on_delete=models.CASCADE, related_name='plan_modules')
    module = models.ForeignKey('rbac.Module', on_delete=models.CASCADE, related_name='plan_modules')

    class Meta(LifecycleModel.Meta):
        db_table = 'subscription_plan_modules'
        constraints = LifecycleModel.Meta.constraints + [
            models.UniqueConstraint(
                fields=['plan', 'module'], condition=NOT_DELETED, name='plan_module_unique'
            ),
        ]


class SubscriptionPlanPermission(LifecycleModel):
    plan = models.ForeignKey(SubscriptionPlan, on_delete=models.CASCADE, related_name='plan_permissions')
    permission = models.ForeignKey('rbac.Permission', on_delete=models.CASCADE, related_name='plan_permissions')

    class Meta(LifecycleModel.Meta):
        db_table = 'subscription_plan_permissions'
        constraints = LifecycleModel.Meta.constraints + [
            models.UniqueConstraint(
                fields=['plan', 'permission'], condition=NOT_DELETED, name='plan_permission_unique'
            ),
        ]


class CompanySubscriptionManager(LifecycleManager):
    """Manager for CompanySubscription queries."""

    def current_for(self, company_id):
        """The company's current active subscription, or None."""
        return self.filter(
            company_id=company_id,
            is_current=True,
            status='active',
        ).select_related('plan').first()


class CompanySubscription(LifecycleModel):
    """
    A company's subscription instance with its computed pricing breakdown.

    Exactly one non-deleted row per company is current.
    """

    STATUS_CHOICES = [
        ('active', 'Active'),
        ('cancelled', 'Cancelled'),
        ('expired', 'Expired'),
    ]

    DISCOUNT_TYPE_CHOICES = [
        ('percentage', 'Percentage'),
        ('fixed', 'Fixed Amount'),
    ]

    company = models.ForeignKey(Company, on_delete=models.CASCADE, related_name='subscriptions')
    plan = models.ForeignKey(SubscriptionPlan, on_delete=models.PROTECT, related_name='subscriptions')
    number_of_users = models.PositiveIntegerField()
    start_date = models.DateField()
    end_date = models.DateField()
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='active', db_index=True)
    is_current = models.BooleanField(default=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    # Pricing breakdown
    original_price = models.DecimalField(max_digits=12, decimal_places=2)
    discount_type = models.CharField(max_length=20, choices=DISCOUNT_TYPE_CHOICES, blank=True)
    discount_value = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    discount_amount = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    addon_module_cost = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    addon_permission_cost = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    price = models.DecimalField(max_digits=12, decimal_places=2)

    objects = CompanySubscriptionManager()

    class Meta(LifecycleModel.Meta):
        db_table = 'company_subscriptions'
        constraints = LifecycleModel.Meta.constraints + [
            models.UniqueConstraint(
                fields=['company'],
                condition=Q(is_current=True) & NOT_DELETED,
                name='company_single_current_subscription',
            ),
        ]
        indexes = [
            models.Index(fields=['company', 'is_current', 'status']),
        ]

    def __str__(self):
        return f"{self.company.name} - {self.plan.name} ({self.status})"


class EntitlementSource(models.TextChoices):
    PLAN = 'plan', 'Plan'
    ADDON = 'addon', 'Add-on'


class CompanyModule(LifecycleModel):
    """
    Ledger row: the company holds full access to a module.
    """

    company = models.ForeignKey(Company, on_delete=models.CASCADE, related_name='company_modules')
    module = models.ForeignKey('rbac.Module', on_delete=models.CASCADE, related_name='company_modules')
    subscription = models.ForeignKey(
        CompanySubscription,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='company_modules',
    )
    source = models.CharField(max_length=10, choices=EntitlementSource.choices)
    price = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    purchased_at = models.DateTimeField(auto_now_add=True)

    class Meta(LifecycleModel.Meta):
        db_table = 'company_modules'
        constraints = LifecycleModel.Meta.constraints + [
            models.UniqueConstraint(
                fields=['company', 'module'], condition=NOT_DELETED, name='company_module_unique'
            ),
        ]

    def __str__(self):
        return f"{self.company_id}:{self.module_id} ({self.source})"


class CompanyPermission(LifecycleModel):
    """
    Ledger row: the company holds one permission without its whole module.
    """

    company = models.ForeignKey(Company, on_delete=models.CASCADE, related_name='company_permissions')
    permission = models.ForeignKey('rbac.Permission', on_delete=models.CASCADE, related_name='company_permissions')
    subscription = models.ForeignKey(
        CompanySubscription,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='company_permissions',
    )
    source = models.CharField(max_length=10, choices=EntitlementSource.choices)
    price = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    purchased_at = models.DateTimeField(auto_now_add=True)

    class Meta(LifecycleModel.Meta):
        db_table = 'company_permissions'
        constraints = LifecycleModel.Meta.constraints + [
            models.UniqueConstraint(
                fields=['company', 'permission'], condition=NOT_DELETED, name='company_permission_unique'
            ),
        ]

    def __str__(self):
        return f"{self.company_id}:{self.permission_id} ({self.source})"
