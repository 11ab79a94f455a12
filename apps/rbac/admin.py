"""
Django admin configuration for RBAC app.
"""
from django.contrib import admin
from .models import (
    AuditLog,
    Module,
    Permission,
    Role,
    RolePermission,
    User,
    UserPermissionOverride,
)


@admin.register(User)
class UserAdmin(admin.ModelAdmin):
    """
    Admin for our User model.

    Email based; the role and company are edited here, but role changes made
    through the API go through the escalation guard.
    """
    list_display = ['email', 'first_name', 'last_name', 'company', 'role', 'is_active', 'created_at']
    list_filter = ['is_active', 'is_superuser', 'role', 'created_at']
    search_fields = ['email', 'first_name', 'last_name']
    ordering = ['-created_at']
    readonly_fields = ['created_at', 'updated_at', 'last_login_at']
    fieldsets = (
        (None, {
            'fields': ('email', 'password_hash')
        }),
        ('Personal Info', {
            'fields': ('first_name', 'last_name')
        }),
        ('Access', {
            'fields': ('company', 'role', 'is_active', 'is_superuser')
        }),
        ('Activity', {
            'fields': ('last_login_at', 'created_at', 'updated_at')
        }),
    )


@admin.register(Module)
class ModuleAdmin(admin.ModelAdmin):
    list_display = ['name', 'is_free_for_all', 'price', 'state']
    list_filter = ['is_free_for_all', 'state']
    search_fields = ['name']


@admin.register(Permission)
class PermissionAdmin(admin.ModelAdmin):
    """Admin interface for Permission model."""
    list_display = ['code', 'module', 'action', 'is_subscription_exempt', 'is_system_permission', 'state']
    list_filter = ['module', 'action', 'is_subscription_exempt', 'is_system_permission', 'state']
    search_fields = ['code', 'label']


class RolePermissionInline(admin.TabularInline):
    model = RolePermission
    extra = 0
    autocomplete_fields = ['permission']


@admin.register(Role)
class RoleAdmin(admin.ModelAdmin):
    """Admin interface for Role model."""
    list_display = ['name', 'scope', 'company', 'priority', 'is_system_role', 'state']
    list_filter = ['scope', 'is_system_role', 'state']
    search_fields = ['name', 'company__name']
    inlines = [RolePermissionInline]


@admin.register(UserPermissionOverride)
class UserPermissionOverrideAdmin(admin.ModelAdmin):
    list_display = ['user', 'permission', 'effect', 'expires_at', 'granted_by', 'created_at']
    list_filter = ['effect']
    search_fields = ['user__email', 'permission__code']
    raw_id_fields = ['user', 'granted_by']


@admin.register(AuditLog)
class AuditLogAdmin(admin.ModelAdmin):
    """Read-only admin interface for AuditLog model."""
    list_display = ['action', 'user', 'company', 'target_type', 'target_id', 'created_at']
    list_filter = ['action', 'target_type', 'created_at']
    search_fields = ['action', 'user__email', 'target_id']
    readonly_fields = [f.name for f in AuditLog._meta.fields]

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False
