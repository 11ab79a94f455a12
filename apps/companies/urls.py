"""
Company entitlement and subscription URLs.
"""
from django.urls import path
from apps.companies.views import (
    AddonModuleDetailView,
    AddonModuleView,
    AddonPermissionDetailView,
    AddonPermissionView,
    CompanyEntitlementsView,
    SubscriptionCancelView,
    SubscriptionPlanListView,
    SubscriptionRenewView,
    SubscriptionView,
)

app_name = 'companies'

urlpatterns = [
    path('plans', SubscriptionPlanListView.as_view(), name='plan-list'),
    path('entitlements', CompanyEntitlementsView.as_view(), name='entitlements'),

    # Subscription endpoints
    path('subscription', SubscriptionView.as_view(), name='subscription'),
    path('subscription/renew', SubscriptionRenewView.as_view(), name='subscription-renew'),
    path(
        'subscriptions/<uuid:subscription_id>/cancel',
        SubscriptionCancelView.as_view(),
        name='subscription-cancel',
    ),

    # Add-on endpoints
    path('addons/modules', AddonModuleView.as_view(), name='addon-modules'),
    path('addons/modules/<uuid:module_id>', AddonModuleDetailView.as_view(), name='addon-module-detail'),
    path('addons/permissions', AddonPermissionView.as_view(), name='addon-permissions'),
    path(
        'addons/permissions/<uuid:permission_id>',
        AddonPermissionDetailView.as_view(),
        name='addon-permission-detail',
    ),
]
