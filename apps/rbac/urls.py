"""
RBAC API URLs.

Provides endpoints for:
- Access checks (single, batch, snapshot)
- Permission and module catalogue
- Role management (CRUD, permissions, cloning, assignment)
- User permission overrides
- Audit log viewing
"""
from django.urls import path
from apps.rbac.views import (
    AccessCheckView,
    AccessSnapshotView,
    AuditLogListView,
    BatchAccessCheckView,
    ModuleListView,
    PermissionListView,
    PermissionOverridesView,
    RoleCloneView,
    RoleDetailView,
    RoleListView,
    RolePermissionsView,
    UserAccessSnapshotView,
    UserOverrideDetailView,
    UserOverridesBulkView,
    UserOverridesView,
    UserOverrideStatsView,
    UserRoleAssignView,
)

app_name = 'rbac'

urlpatterns = [
    # Access check endpoints
    path('access/check', AccessCheckView.as_view(), name='access-check'),
    path('access/batch', BatchAccessCheckView.as_view(), name='access-batch'),
    path('access/snapshot', AccessSnapshotView.as_view(), name='access-snapshot'),

    # Catalogue endpoints
    path('permissions', PermissionListView.as_view(), name='permission-list'),
    path(
        'permissions/<uuid:permission_id>/overrides',
        PermissionOverridesView.as_view(),
        name='permission-overrides',
    ),
    path('modules', ModuleListView.as_view(), name='module-list'),

    # Role endpoints
    path('roles', RoleListView.as_view(), name='role-list'),
    path('roles/<uuid:role_id>', RoleDetailView.as_view(), name='role-detail'),
    path('roles/<uuid:role_id>/permissions', RolePermissionsView.as_view(), name='role-permissions'),
    path('roles/<uuid:role_id>/clone', RoleCloneView.as_view(), name='role-clone'),

    # User endpoints
    path('users/<uuid:user_id>/access', UserAccessSnapshotView.as_view(), name='user-access'),
    path('users/<uuid:user_id>/role', UserRoleAssignView.as_view(), name='user-role-assign'),
    path('users/<uuid:user_id>/overrides', UserOverridesView.as_view(), name='user-overrides'),
    path('users/<uuid:user_id>/overrides/bulk', UserOverridesBulkView.as_view(), name='user-overrides-bulk'),
    path('users/<uuid:user_id>/overrides/stats', UserOverrideStatsView.as_view(), name='user-override-stats'),
    path(
        'users/<uuid:user_id>/overrides/<uuid:permission_id>',
        UserOverrideDetailView.as_view(),
        name='user-override-detail',
    ),

    # Audit log endpoint
    path('audit-logs', AuditLogListView.as_view(), name='audit-log-list'),
]
