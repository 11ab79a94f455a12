"""
Company entitlement and subscription API views.

Subscription management permissions are subscription exempt, so a company
whose plan lapsed can still reach billing.
"""
from django.shortcuts import get_object_or_404
from drf_spectacular.utils import extend_schema, extend_schema_view
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.views import APIView

from apps.companies.models import (
    CompanyModule,
    CompanyPermission,
    CompanySubscription,
    SubscriptionPlan,
)
from apps.companies.serializers import (
    AddonModuleSerializer,
    AddonPermissionSerializer,
    CompanyModuleSerializer,
    CompanyPermissionSerializer,
    CompanySubscriptionSerializer,
    SubscriptionCreateSerializer,
    SubscriptionPlanSerializer,
    SubscriptionRenewSerializer,
)
from apps.companies.services import EntitlementService, SubscriptionService
from apps.core.exceptions import ValidationError
from apps.core.permissions import HasPermissions, requires_permissions
from apps.core.responses import api_response
from apps.rbac.models import Module, Permission


def require_company(request):
    company = request.user.company
    if company is None:
        raise ValidationError("This endpoint requires a company account")
    return company


@extend_schema_view(
    get=extend_schema(tags=['Billing'], summary='List subscription plans',
                      responses={200: SubscriptionPlanSerializer(many=True)})
)
class SubscriptionPlanListView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        plans = SubscriptionPlan.objects.active().prefetch_related('plan_modules')
        return api_response(SubscriptionPlanSerializer(plans, many=True).data)


@extend_schema_view(
    get=extend_schema(tags=['Billing'], summary='Company entitlements',
                      description='Modules and permissions the company may use.')
)
class CompanyEntitlementsView(APIView):
    """
    GET /v1/companies/entitlements
    """
    permission_classes = [HasPermissions]
    required_permissions = ['companies:subscriptions:view']

    def get(self, request):
        company = require_company(request)
        module_ids = EntitlementService.module_ids_accessible_to_company(company.id)
        permission_ids = EntitlementService.permission_ids_entitled_to_company(company.id)
        ledger_modules = CompanyModule.objects.filter(company=company).select_related('module')
        ledger_permissions = CompanyPermission.objects.filter(company=company).select_related('permission')
        return api_response({
            'module_ids': sorted(str(mid) for mid in module_ids),
            'permission_ids': sorted(str(pid) for pid in permission_ids),
            'company_modules': CompanyModuleSerializer(ledger_modules, many=True).data,
            'company_permissions': CompanyPermissionSerializer(ledger_permissions, many=True).data,
        })


@extend_schema_view(
    get=extend_schema(tags=['Billing'], summary='Current subscription',
                      responses={200: CompanySubscriptionSerializer}),
    post=extend_schema(tags=['Billing'], summary='Subscribe to a plan',
                       request=SubscriptionCreateSerializer,
                       responses={201: CompanySubscriptionSerializer}),
)
class SubscriptionView(APIView):
    permission_classes = [HasPermissions]
    required_permissions = ['companies:subscriptions:view']

    def get(self, request):
        company = require_company(request)
        subscription = SubscriptionService.current_subscription(company)
        data = CompanySubscriptionSerializer(subscription).data if subscription else None
        return api_response(data)

    @requires_permissions('companies:subscriptions:manage')
    def post(self, request):
        company = require_company(request)
        serializer = SubscriptionCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        plan = get_object_or_404(SubscriptionPlan.objects.all(), pk=data['plan_id'])
        subscription = SubscriptionService.create_subscription(
            company,
            plan,
            data['number_of_users'],
            discount_type=data.get('discount_type'),
            discount_value=data.get('discount_value'),
            addon_module_ids=data['addon_module_ids'],
            addon_permission_ids=data['addon_permission_ids'],
            start_date=data.get('start_date'),
            created_by=request.user,
        )
        return api_response(
            CompanySubscriptionSerializer(subscription).data,
            "Subscription created",
            status.HTTP_201_CREATED,
        )


@extend_schema_view(
    post=extend_schema(tags=['Billing'], summary='Renew the current subscription',
                       request=SubscriptionRenewSerializer,
                       responses={201: CompanySubscriptionSerializer}),
)
class SubscriptionRenewView(APIView):
    permission_classes = [HasPermissions]
    required_permissions = ['companies:subscriptions:manage']

    def post(self, request):
        company = require_company(request)
        serializer = SubscriptionRenewSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        plan = None
        if data.get('plan_id'):
            plan = get_object_or_404(SubscriptionPlan.objects.all(), pk=data['plan_id'])
        subscription = SubscriptionService.renew_subscription(
            company,
            plan=plan,
            number_of_users=data.get('number_of_users'),
            discount_type=data.get('discount_type'),
            discount_value=data.get('discount_value'),
            renewed_by=request.user,
        )
        return api_response(
            CompanySubscriptionSerializer(subscription).data,
            "Subscription renewed",
            status.HTTP_201_CREATED,
        )


@extend_schema_view(
    post=extend_schema(tags=['Billing'], summary='Cancel a subscription'),
)
class SubscriptionCancelView(APIView):
    permission_classes = [HasPermissions]
    required_permissions = ['companies:subscriptions:manage']

    def post(self, request, subscription_id):
        company = require_company(request)
        subscription = get_object_or_404(
            CompanySubscription.objects.filter(company=company), pk=subscription_id
        )
        subscription = SubscriptionService.cancel_subscription(subscription, cancelled_by=request.user)
        return api_response(CompanySubscriptionSerializer(subscription).data, "Subscription cancelled")


@extend_schema_view(
    post=extend_schema(tags=['Billing'], summary='Purchase an add-on module',
                       request=AddonModuleSerializer),
)
class AddonModuleView(APIView):
    permission_classes = [HasPermissions]
    required_permissions = ['companies:subscriptions:manage']

    def post(self, request):
        company = require_company(request)
        serializer = AddonModuleSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        module = get_object_or_404(Module.objects.active(), pk=serializer.validated_data['module_id'])
        row = SubscriptionService.purchase_addon_module(company, module, purchased_by=request.user)
        return api_response(CompanyModuleSerializer(row).data, "Add-on purchased", status.HTTP_201_CREATED)


@extend_schema_view(
    delete=extend_schema(tags=['Billing'], summary='Remove an add-on module'),
)
class AddonModuleDetailView(APIView):
    permission_classes = [HasPermissions]
    required_permissions = ['companies:subscriptions:manage']

    def delete(self, request, module_id):
        company = require_company(request)
        module = get_object_or_404(Module.objects.all(), pk=module_id)
        SubscriptionService.remove_addon_module(company, module, removed_by=request.user)
        return api_response(message="Add-on removed")


@extend_schema_view(
    post=extend_schema(tags=['Billing'], summary='Purchase an add-on permission',
                       request=AddonPermissionSerializer),
)
class AddonPermissionView(APIView):
    permission_classes = [HasPermissions]
    required_permissions = ['companies:subscriptions:manage']

    def post(self, request):
        company = require_company(request)
        serializer = AddonPermissionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        permission = get_object_or_404(
            Permission.objects.active(), pk=serializer.validated_data['permission_id']
        )
        row = SubscriptionService.purchase_addon_permission(company, permission, purchased_by=request.user)
        return api_response(CompanyPermissionSerializer(row).data, "Add-on purchased", status.HTTP_201_CREATED)


@extend_schema_view(
    delete=extend_schema(tags=['Billing'], summary='Remove an add-on permission'),
)
class AddonPermissionDetailView(APIView):
    permission_classes = [HasPermissions]
    required_permissions = ['companies:subscriptions:manage']

    def delete(self, request, permission_id):
        company = require_company(request)
        permission = get_object_or_404(Permission.objects.all(), pk=permission_id)
        SubscriptionService.remove_addon_permission(company, permission, removed_by=request.user)
        return api_response(message="Add-on removed")
