"""
Django admin configuration for companies app.
"""
from django.contrib import admin
from .models import (
    Company,
    CompanyModule,
    CompanyPermission,
    CompanySubscription,
    SubscriptionPlan,
    SubscriptionPlanModule,
    SubscriptionPlanPermission,
)


@admin.register(Company)
class CompanyAdmin(admin.ModelAdmin):
    list_display = ['name', 'slug', 'state', 'created_at']
    list_filter = ['state']
    search_fields = ['name', 'slug']
    prepopulated_fields = {'slug': ('name',)}


class SubscriptionPlanModuleInline(admin.TabularInline):
    model = SubscriptionPlanModule
    extra = 0


class SubscriptionPlanPermissionInline(admin.TabularInline):
    model = SubscriptionPlanPermission
    extra = 0


@admin.register(SubscriptionPlan)
class SubscriptionPlanAdmin(admin.ModelAdmin):
    list_display = ['name', 'price', 'price_per_user', 'duration_value', 'duration_unit', 'state']
    list_filter = ['price_per_user', 'duration_unit', 'state']
    inlines = [SubscriptionPlanModuleInline, SubscriptionPlanPermissionInline]


@admin.register(CompanySubscription)
class CompanySubscriptionAdmin(admin.ModelAdmin):
    """Subscriptions are created through the API so the ledger stays consistent."""
    list_display = ['company', 'plan', 'number_of_users', 'status', 'is_current', 'price', 'start_date', 'end_date']
    list_filter = ['status', 'is_current', 'plan']
    search_fields = ['company__name']
    readonly_fields = [
        'original_price', 'discount_amount', 'addon_module_cost', 'addon_permission_cost', 'price',
    ]


@admin.register(CompanyModule)
class CompanyModuleAdmin(admin.ModelAdmin):
    list_display = ['company', 'module', 'source', 'price', 'state', 'purchased_at']
    list_filter = ['source', 'state']
    search_fields = ['company__name', 'module__name']


@admin.register(CompanyPermission)
class CompanyPermissionAdmin(admin.ModelAdmin):
    list_display = ['company', 'permission', 'source', 'price', 'state', 'purchased_at']
    list_filter = ['source', 'state']
    search_fields = ['company__name', 'permission__code']
