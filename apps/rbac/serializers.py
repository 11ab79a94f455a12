"""
RBAC serializers for REST API endpoints.

Provides serialization for:
- Users, modules and permissions
- Roles, role permissions and role assignment
- Permission overrides
- Access checks and audit logs
"""
from rest_framework import serializers

from apps.rbac.models import (
    AuditLog,
    Module,
    OverrideEffect,
    Permission,
    Role,
    RoleScope,
    User,
    UserPermissionOverride,
)


# ===== CATALOGUE SERIALIZERS =====

class UserSummarySerializer(serializers.ModelSerializer):
    """Compact user representation for nesting."""

    role_name = serializers.CharField(source='role.name', read_only=True, default=None)

    class Meta:
        model = User
        fields = ['id', 'email', 'first_name', 'last_name', 'company', 'role', 'role_name', 'is_active']
        read_only_fields = fields


class ModuleSerializer(serializers.ModelSerializer):

    class Meta:
        model = Module
        fields = ['id', 'name', 'description', 'is_free_for_all', 'parent', 'price', 'state']
        read_only_fields = fields


class PermissionSerializer(serializers.ModelSerializer):
    """Serializer for Permission model."""

    module_name = serializers.CharField(source='module.name', read_only=True)

    class Meta:
        model = Permission
        fields = [
            'id', 'code', 'label', 'description', 'module', 'module_name', 'action',
            'is_free_for_all', 'is_subscription_exempt', 'is_system_permission', 'price',
        ]
        read_only_fields = fields


# ===== ROLE SERIALIZERS =====

class RoleSerializer(serializers.ModelSerializer):
    """Serializer for Role model."""

    permission_count = serializers.SerializerMethodField()

    class Meta:
        model = Role
        fields = [
            'id', 'name', 'description', 'scope', 'company', 'priority',
            'is_system_role', 'base_role', 'state', 'permission_count', 'created_at',
        ]
        read_only_fields = fields

    def get_permission_count(self, obj):
        return obj.role_permissions.count()


class RoleCreateSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=100)
    description = serializers.CharField(required=False, allow_blank=True, default='')
    scope = serializers.ChoiceField(choices=RoleScope.choices, default=RoleScope.COMPANY)
    priority = serializers.IntegerField(required=False, min_value=0)
    permission_ids = serializers.ListField(child=serializers.UUIDField(), required=False, default=list)


class RoleUpdateSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=100, required=False)
    description = serializers.CharField(required=False, allow_blank=True)
    priority = serializers.IntegerField(required=False, min_value=0)


class RoleCloneSerializer(serializers.Serializer):
    """Clone a platform role into the requesting user's company."""

    name = serializers.CharField(max_length=100, required=False)
    description = serializers.CharField(required=False, allow_blank=True)
    permission_ids = serializers.ListField(
        child=serializers.UUIDField(),
        required=False,
        help_text="Defaults to every permission of the platform role"
    )


class RolePermissionsSerializer(serializers.Serializer):
    permission_ids = serializers.ListField(child=serializers.UUIDField(), allow_empty=True)


class AssignRoleSerializer(serializers.Serializer):
    role_id = serializers.UUIDField()


# ===== OVERRIDE SERIALIZERS =====

class UserPermissionOverrideSerializer(serializers.ModelSerializer):
    """Serializer for UserPermissionOverride model."""

    permission_code = serializers.CharField(source='permission.code', read_only=True)
    user_email = serializers.EmailField(source='user.email', read_only=True)
    granted_by_email = serializers.EmailField(source='granted_by.email', read_only=True, default=None)
    is_expired = serializers.SerializerMethodField()

    class Meta:
        model = UserPermissionOverride
        fields = [
            'id', 'user', 'user_email', 'permission', 'permission_code', 'effect', 'expires_at',
            'is_expired', 'reason', 'granted_by', 'granted_by_email', 'created_at', 'updated_at',
        ]
        read_only_fields = fields

    def get_is_expired(self, obj):
        return obj.is_expired()


class OverrideItemSerializer(serializers.Serializer):
    permission_id = serializers.UUIDField()
    effect = serializers.ChoiceField(choices=OverrideEffect.choices)
    reason = serializers.CharField(required=False, allow_blank=True, default='')
    expires_at = serializers.DateTimeField(required=False, allow_null=True, default=None)


class OverrideCreateSerializer(OverrideItemSerializer):
    pass


class BulkOverrideCreateSerializer(serializers.Serializer):
    overrides = OverrideItemSerializer(many=True, allow_empty=False)
    cascade = serializers.BooleanField(default=True)


class OverrideExpirationSerializer(serializers.Serializer):
    expires_at = serializers.DateTimeField(allow_null=True)


# ===== ACCESS CHECK SERIALIZERS =====

class AccessCheckSerializer(serializers.Serializer):
    permission_key = serializers.CharField(max_length=150)


class BatchAccessCheckSerializer(serializers.Serializer):
    permission_keys = serializers.ListField(
        child=serializers.CharField(max_length=150),
        allow_empty=False,
        max_length=200,
    )


class AuditLogSerializer(serializers.ModelSerializer):
    """Serializer for AuditLog model."""

    user_email = serializers.EmailField(source='user.email', read_only=True, default=None)

    class Meta:
        model = AuditLog
        fields = [
            'id', 'action', 'user', 'user_email', 'company', 'target_type', 'target_id',
            'diff', 'metadata', 'ip_address', 'request_id', 'created_at',
        ]
        read_only_fields = fields
