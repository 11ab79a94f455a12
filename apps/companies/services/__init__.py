from apps.companies.services.entitlement_service import (
    CompanyEntitlements,
    EntitlementQuery,
    EntitlementResult,
    EntitlementService,
)
from apps.companies.services.subscription_service import PriceBreakdown, SubscriptionService

__all__ = [
    'CompanyEntitlements',
    'EntitlementQuery',
    'EntitlementResult',
    'EntitlementService',
    'PriceBreakdown',
    'SubscriptionService',
]
