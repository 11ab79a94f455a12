"""
RBAC REST API views.

Implements endpoints for:
- Access checks (single, batch, snapshot)
- Permission and module catalogue
- Role management (CRUD, permissions, cloning, assignment)
- User permission overrides
- Audit log viewing
"""
from django.shortcuts import get_object_or_404
from drf_spectacular.utils import extend_schema, extend_schema_view, OpenApiParameter
from drf_spectacular.types import OpenApiTypes
from rest_framework import status
from rest_framework.pagination import PageNumberPagination
from rest_framework.permissions import IsAuthenticated
from rest_framework.views import APIView

from apps.core.permissions import HasPermissions, requires_permissions
from apps.core.responses import api_response
from apps.rbac.models import AuditLog, Module, Permission, Role, User
from apps.rbac.serializers import (
    AccessCheckSerializer,
    AssignRoleSerializer,
    AuditLogSerializer,
    BatchAccessCheckSerializer,
    BulkOverrideCreateSerializer,
    ModuleSerializer,
    OverrideCreateSerializer,
    OverrideExpirationSerializer,
    PermissionSerializer,
    RoleCloneSerializer,
    RoleCreateSerializer,
    RolePermissionsSerializer,
    RoleSerializer,
    RoleUpdateSerializer,
    UserPermissionOverrideSerializer,
    UserSummarySerializer,
)
from apps.rbac.services import AccessService, OverrideRequest, OverrideService, RoleService


class StandardResultsSetPagination(PageNumberPagination):
    """Standard pagination for list endpoints."""
    page_size = 50
    page_size_query_param = 'page_size'
    max_page_size = 100


def get_company_user(request, user_id):
    """Load a user of the requester's company."""
    queryset = User.objects.select_related('role', 'company').filter(company_id=request.user.company_id)
    return get_object_or_404(queryset, pk=user_id)


def get_visible_role(request, role_id):
    return get_object_or_404(Role.objects.assignable_to_company(request.user.company_id), pk=role_id)


def get_manageable_role(request, role_id):
    """Only the company's own roles may be changed."""
    return get_object_or_404(Role.objects.for_company(request.user.company_id), pk=role_id)


# ===== ACCESS CHECKS =====

@extend_schema_view(
    post=extend_schema(
        tags=['RBAC - Access'],
        summary='Check one permission',
        description='Run the access decision chain for the authenticated user.',
        request=AccessCheckSerializer,
    )
)
class AccessCheckView(APIView):
    """
    POST /v1/rbac/access/check

    No permission required - users may always ask about themselves.
    """
    permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = AccessCheckSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        decision = AccessService.check_user_permission(
            request.user.id, serializer.validated_data['permission_key']
        )
        return api_response(decision.to_dict())


@extend_schema_view(
    post=extend_schema(
        tags=['RBAC - Access'],
        summary='Check many permissions',
        request=BatchAccessCheckSerializer,
    )
)
class BatchAccessCheckView(APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = BatchAccessCheckSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        results = AccessService.batch_check_user_permissions(
            request.user.id, serializer.validated_data['permission_keys']
        )
        return api_response(results)


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Access'],
        summary='Access snapshot of the authenticated user',
        description='Every permission code the user holds and the modules they can reach.',
    )
)
class AccessSnapshotView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        snapshot = AccessService.get_user_access_snapshot(request.user.id)
        return api_response({'permissions': snapshot.permissions, 'modules': snapshot.modules})


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Access'],
        summary='Access snapshot of a company user',
    )
)
class UserAccessSnapshotView(APIView):
    permission_classes = [HasPermissions]
    required_permissions = ['rbac:overrides:view']

    def get(self, request, user_id):
        user = get_company_user(request, user_id)
        snapshot = AccessService.get_user_access_snapshot(user.id)
        return api_response({
            'user': UserSummarySerializer(user).data,
            'permissions': snapshot.permissions,
            'modules': snapshot.modules,
            'effective': AccessService.effective_permissions(user.id),
        })


# ===== CATALOGUE =====

@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Permissions'],
        summary='List all permissions',
        parameters=[
            OpenApiParameter('module', OpenApiTypes.UUID, description='Filter by module'),
        ],
        responses={200: PermissionSerializer(many=True)},
    )
)
class PermissionListView(APIView):
    """
    GET /v1/rbac/permissions

    All authenticated users can view the permission catalogue.
    """
    permission_classes = [IsAuthenticated]

    def get(self, request):
        permissions = Permission.objects.active().select_related('module')
        module_id = request.query_params.get('module')
        if module_id:
            permissions = permissions.filter(module_id=module_id)
        return api_response(PermissionSerializer(permissions, many=True).data)


@extend_schema_view(
    get=extend_schema(tags=['RBAC - Permissions'], summary='List modules',
                      responses={200: ModuleSerializer(many=True)})
)
class ModuleListView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        return api_response(ModuleSerializer(Module.objects.active(), many=True).data)


# ===== ROLES =====

@extend_schema_view(
    get=extend_schema(tags=['RBAC - Roles'], summary='List roles',
                      responses={200: RoleSerializer(many=True)}),
    post=extend_schema(tags=['RBAC - Roles'], summary='Create a role',
                       request=RoleCreateSerializer, responses={201: RoleSerializer}),
)
class RoleListView(APIView):
    """
    GET  /v1/rbac/roles - platform system roles and the company's own roles
    POST /v1/rbac/roles - requires rbac:roles:manage
    """
    permission_classes = [HasPermissions]
    required_permissions = ['rbac:roles:view']

    def get(self, request):
        roles = Role.objects.assignable_to_company(request.user.company_id)
        return api_response(RoleSerializer(roles, many=True).data)

    @requires_permissions('rbac:roles:manage')
    def post(self, request):
        serializer = RoleCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        role = RoleService.create_role(
            name=data['name'],
            scope=data['scope'],
            company=request.user.company if data['scope'] == 'company' else None,
            priority=data.get('priority'),
            description=data['description'],
            permission_ids=data['permission_ids'],
            created_by=request.user,
        )
        return api_response(RoleSerializer(role).data, "Role created", status.HTTP_201_CREATED)


@extend_schema_view(
    get=extend_schema(tags=['RBAC - Roles'], summary='Get a role', responses={200: RoleSerializer}),
    patch=extend_schema(tags=['RBAC - Roles'], summary='Update a role', request=RoleUpdateSerializer),
    delete=extend_schema(tags=['RBAC - Roles'], summary='Delete a role'),
)
class RoleDetailView(APIView):
    permission_classes = [HasPermissions]
    required_permissions = ['rbac:roles:view']

    def get(self, request, role_id):
        role = get_visible_role(request, role_id)
        data = RoleSerializer(role).data
        data['permissions'] = PermissionSerializer(
            Permission.objects.filter(role_permissions__role=role), many=True
        ).data
        return api_response(data)

    @requires_permissions('rbac:roles:manage')
    def patch(self, request, role_id):
        role = get_manageable_role(request, role_id)
        serializer = RoleUpdateSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        role = RoleService.update_role(role, updated_by=request.user, **serializer.validated_data)
        return api_response(RoleSerializer(role).data, "Role updated")

    @requires_permissions('rbac:roles:manage')
    def delete(self, request, role_id):
        role = get_manageable_role(request, role_id)
        RoleService.delete_role(role, deleted_by=request.user)
        return api_response(message="Role deleted")


@extend_schema_view(
    get=extend_schema(tags=['RBAC - Roles'], summary='List role permissions'),
    put=extend_schema(tags=['RBAC - Roles'], summary='Replace role permissions',
                      request=RolePermissionsSerializer),
)
class RolePermissionsView(APIView):
    permission_classes = [HasPermissions]
    required_permissions = ['rbac:roles:view']

    def get(self, request, role_id):
        role = get_visible_role(request, role_id)
        permissions = Permission.objects.filter(role_permissions__role=role).select_related('module')
        return api_response(PermissionSerializer(permissions, many=True).data)

    @requires_permissions('rbac:roles:manage')
    def put(self, request, role_id):
        role = get_manageable_role(request, role_id)
        serializer = RolePermissionsSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        permission_ids = RoleService.set_role_permissions(
            role, serializer.validated_data['permission_ids'], updated_by=request.user
        )
        return api_response({'permission_ids': sorted(str(pid) for pid in permission_ids)},
                            "Role permissions updated")


@extend_schema_view(
    post=extend_schema(tags=['RBAC - Roles'], summary='Clone a platform role into the company',
                       request=RoleCloneSerializer, responses={201: RoleSerializer}),
)
class RoleCloneView(APIView):
    permission_classes = [HasPermissions]
    required_permissions = ['rbac:roles:manage']

    def post(self, request, role_id):
        platform_role = get_object_or_404(Role.objects.platform_roles(), pk=role_id)
        serializer = RoleCloneSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        role = RoleService.clone_role_to_company(
            platform_role,
            request.user.company,
            permission_ids=serializer.validated_data.get('permission_ids'),
            name=serializer.validated_data.get('name'),
            description=serializer.validated_data.get('description'),
            cloned_by=request.user,
        )
        return api_response(RoleSerializer(role).data, "Role cloned", status.HTTP_201_CREATED)


@extend_schema_view(
    post=extend_schema(tags=['RBAC - Roles'], summary='Assign a role to a user',
                       request=AssignRoleSerializer),
)
class UserRoleAssignView(APIView):
    permission_classes = [HasPermissions]
    required_permissions = ['rbac:roles:manage']

    def post(self, request, user_id):
        user = get_company_user(request, user_id)
        serializer = AssignRoleSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        role = get_visible_role(request, serializer.validated_data['role_id'])
        RoleService.assign_role(user, role, assigned_by=request.user)
        return api_response(UserSummarySerializer(user).data, "Role assigned")


# ===== OVERRIDES =====

@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Overrides'],
        summary='List user overrides',
        parameters=[OpenApiParameter('include_expired', OpenApiTypes.BOOL)],
        responses={200: UserPermissionOverrideSerializer(many=True)},
    ),
    post=extend_schema(tags=['RBAC - Overrides'], summary='Create or update an override',
                       request=OverrideCreateSerializer),
    delete=extend_schema(tags=['RBAC - Overrides'], summary='Remove all overrides of a user'),
)
class UserOverridesView(APIView):
    permission_classes = [HasPermissions]
    required_permissions = ['rbac:overrides:view']

    def get(self, request, user_id):
        user = get_company_user(request, user_id)
        include_expired = request.query_params.get('include_expired', '').lower() == 'true'
        overrides = OverrideService.list_overrides(user, include_expired=include_expired)
        return api_response(UserPermissionOverrideSerializer(overrides, many=True).data)

    @requires_permissions('rbac:overrides:manage')
    def post(self, request, user_id):
        user = get_company_user(request, user_id)
        serializer = OverrideCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        permission = get_object_or_404(Permission.objects.active(), pk=data['permission_id'])
        override, created = OverrideService.create_override(
            user,
            permission,
            data['effect'],
            granted_by=request.user,
            expires_at=data['expires_at'],
            reason=data['reason'],
        )
        return api_response(
            UserPermissionOverrideSerializer(override).data,
            "Override created" if created else "Override updated",
            status.HTTP_201_CREATED if created else status.HTTP_200_OK,
        )

    @requires_permissions('rbac:overrides:manage')
    def delete(self, request, user_id):
        user = get_company_user(request, user_id)
        removed = OverrideService.remove_all_overrides(user, removed_by=request.user)
        return api_response({'removed': removed}, "Overrides removed")


@extend_schema_view(
    post=extend_schema(tags=['RBAC - Overrides'], summary='Create overrides in bulk',
                       request=BulkOverrideCreateSerializer),
)
class UserOverridesBulkView(APIView):
    permission_classes = [HasPermissions]
    required_permissions = ['rbac:overrides:manage']

    def post(self, request, user_id):
        user = get_company_user(request, user_id)
        serializer = BulkOverrideCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        requests = [OverrideRequest(**item) for item in serializer.validated_data['overrides']]
        result = OverrideService.bulk_create_overrides(
            user, requests, granted_by=request.user, cascade=serializer.validated_data['cascade']
        )
        return api_response(
            {
                'overrides': UserPermissionOverrideSerializer(result.overrides, many=True).data,
                'original_count': result.original_count,
                'cascaded_count': result.cascaded_count,
                'total_created': result.total_created,
            },
            "Overrides saved",
            status.HTTP_201_CREATED,
        )


@extend_schema_view(
    patch=extend_schema(tags=['RBAC - Overrides'], summary='Change override expiration',
                        request=OverrideExpirationSerializer),
    delete=extend_schema(tags=['RBAC - Overrides'], summary='Remove an override'),
)
class UserOverrideDetailView(APIView):
    permission_classes = [HasPermissions]
    required_permissions = ['rbac:overrides:manage']

    def patch(self, request, user_id, permission_id):
        user = get_company_user(request, user_id)
        permission = get_object_or_404(Permission.objects.all(), pk=permission_id)
        serializer = OverrideExpirationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        override = OverrideService.update_expiration(
            user, permission, serializer.validated_data['expires_at'], updated_by=request.user
        )
        return api_response(UserPermissionOverrideSerializer(override).data, "Expiration updated")

    def delete(self, request, user_id, permission_id):
        user = get_company_user(request, user_id)
        permission = get_object_or_404(Permission.objects.all(), pk=permission_id)
        OverrideService.remove_override(user, permission, removed_by=request.user)
        return api_response(message="Override removed")


@extend_schema_view(
    get=extend_schema(tags=['RBAC - Overrides'], summary='Override statistics of a user'),
)
class UserOverrideStatsView(APIView):
    permission_classes = [HasPermissions]
    required_permissions = ['rbac:overrides:view']

    def get(self, request, user_id):
        user = get_company_user(request, user_id)
        return api_response(OverrideService.override_stats(user))


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Overrides'],
        summary='List company users holding an override on a permission',
        parameters=[OpenApiParameter('include_expired', OpenApiTypes.BOOL)],
        responses={200: UserPermissionOverrideSerializer(many=True)},
    ),
)
class PermissionOverridesView(APIView):
    permission_classes = [HasPermissions]
    required_permissions = ['rbac:overrides:view']

    def get(self, request, permission_id):
        permission = get_object_or_404(Permission.objects.all(), pk=permission_id)
        include_expired = request.query_params.get('include_expired', '').lower() == 'true'
        overrides = OverrideService.users_with_override(
            permission, company=request.user.company, include_expired=include_expired
        )
        return api_response(UserPermissionOverrideSerializer(overrides, many=True).data)


# ===== AUDIT =====

@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Audit'],
        summary='List audit logs',
        parameters=[
            OpenApiParameter('action', OpenApiTypes.STR, description='Filter by action'),
            OpenApiParameter('target_type', OpenApiTypes.STR, description='Filter by target type'),
        ],
        responses={200: AuditLogSerializer(many=True)},
    )
)
class AuditLogListView(APIView):
    permission_classes = [HasPermissions]
    required_permissions = ['rbac:audit:view']

    def get(self, request):
        logs = AuditLog.objects.select_related('user').filter(company_id=request.user.company_id)
        if request.query_params.get('action'):
            logs = logs.filter(action=request.query_params['action'])
        if request.query_params.get('target_type'):
            logs = logs.filter(target_type=request.query_params['target_type'])

        paginator = StandardResultsSetPagination()
        page = paginator.paginate_queryset(logs, request, view=self)
        return paginator.get_paginated_response(AuditLogSerializer(page, many=True).data)
