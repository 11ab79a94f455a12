"""
Company and subscription serializers.
"""
from rest_framework import serializers

from apps.companies.models import (
    Company,
    CompanyModule,
    CompanyPermission,
    CompanySubscription,
    SubscriptionPlan,
)


class CompanySerializer(serializers.ModelSerializer):

    class Meta:
        model = Company
        fields = ['id', 'name', 'slug', 'state', 'created_at']
        read_only_fields = fields


class SubscriptionPlanSerializer(serializers.ModelSerializer):
    """Serializer for SubscriptionPlan model."""

    module_ids = serializers.SerializerMethodField()

    class Meta:
        model = SubscriptionPlan
        fields = [
            'id', 'name', 'description', 'price', 'price_per_user', 'duration_value',
            'duration_unit', 'min_users', 'max_users', 'module_ids',
        ]
        read_only_fields = fields

    def get_module_ids(self, obj):
        return [str(pm.module_id) for pm in obj.plan_modules.all() if pm.is_active]


class CompanySubscriptionSerializer(serializers.ModelSerializer):
    """Serializer for CompanySubscription model with its pricing breakdown."""

    plan_name = serializers.CharField(source='plan.name', read_only=True)

    class Meta:
        model = CompanySubscription
        fields = [
            'id', 'company', 'plan', 'plan_name', 'number_of_users', 'start_date', 'end_date',
            'status', 'is_current', 'cancelled_at', 'original_price', 'discount_type',
            'discount_value', 'discount_amount', 'addon_module_cost', 'addon_permission_cost',
            'price', 'created_at',
        ]
        read_only_fields = fields


class CompanyModuleSerializer(serializers.ModelSerializer):
    module_name = serializers.CharField(source='module.name', read_only=True)

    class Meta:
        model = CompanyModule
        fields = ['id', 'module', 'module_name', 'subscription', 'source', 'price', 'purchased_at', 'state']
        read_only_fields = fields


class CompanyPermissionSerializer(serializers.ModelSerializer):
    permission_code = serializers.CharField(source='permission.code', read_only=True)

    class Meta:
        model = CompanyPermission
        fields = [
            'id', 'permission', 'permission_code', 'subscription', 'source', 'price',
            'purchased_at', 'state',
        ]
        read_only_fields = fields


class SubscriptionCreateSerializer(serializers.Serializer):
    plan_id = serializers.UUIDField()
    number_of_users = serializers.IntegerField()
    discount_type = serializers.ChoiceField(
        choices=CompanySubscription.DISCOUNT_TYPE_CHOICES, required=False, allow_null=True
    )
    discount_value = serializers.DecimalField(
        max_digits=12, decimal_places=2, required=False, allow_null=True
    )
    addon_module_ids = serializers.ListField(child=serializers.UUIDField(), required=False, default=list)
    addon_permission_ids = serializers.ListField(child=serializers.UUIDField(), required=False, default=list)
    start_date = serializers.DateField(required=False, allow_null=True)


class SubscriptionRenewSerializer(serializers.Serializer):
    plan_id = serializers.UUIDField(required=False)
    number_of_users = serializers.IntegerField(required=False)
    discount_type = serializers.ChoiceField(
        choices=CompanySubscription.DISCOUNT_TYPE_CHOICES, required=False, allow_null=True
    )
    discount_value = serializers.DecimalField(
        max_digits=12, decimal_places=2, required=False, allow_null=True
    )


class AddonModuleSerializer(serializers.Serializer):
    module_id = serializers.UUIDField()


class AddonPermissionSerializer(serializers.Serializer):
    permission_id = serializers.UUIDField()
