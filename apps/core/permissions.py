"""
DRF permission classes and decorators for RBAC enforcement.

This module provides:
- HasPermissions: DRF permission class that asks the access decision engine
- @requires_permissions: Decorator to declare required permission keys on views

Neither reimplements the decision chain; both delegate to
AccessService.check_user_permission.
"""
import logging
from functools import wraps
from rest_framework.permissions import BasePermission

from apps.core.exceptions import AuthorizationError, EntitlementError
from apps.core.logging import SecurityLogger

logger = logging.getLogger(__name__)


class HasPermissions(BasePermission):
    """
    Enforce `required_permissions` declared on a view.

    Usage in views:
        class MyView(APIView):
            permission_classes = [HasPermissions]
            required_permissions = ['rbac:overrides:manage']

    A denial caused by a missing company entitlement raises EntitlementError
    so the client can render an upsell message; any other denial raises
    AuthorizationError carrying the decision reason.
    """

    def has_permission(self, request, view):
        user = getattr(request, 'user', None)
        if not user or not user.is_authenticated:
            return False

        required = getattr(view, 'required_permissions', None)
        if not required:
            return True
        if isinstance(required, str):
            required = [required]

        from apps.rbac.services import AccessService

        for permission_key in required:
            decision = AccessService.check_user_permission(user.id, permission_key)
            if decision.has_access:
                continue

            SecurityLogger.log_permission_denied(
                user.id, permission_key, decision.reason, path=request.path
            )
            logger.warning(
                f"Permission denied: {permission_key}",
                extra={
                    'user_id': str(user.id),
                    'permission_key': permission_key,
                    'reason': decision.reason,
                    'view': view.__class__.__name__,
                    'method': request.method,
                    'request_id': getattr(request, 'request_id', None),
                }
            )
            details = {'permission': permission_key, 'reason': decision.reason, **decision.details}
            if decision.no_entitlement:
                raise EntitlementError(decision.reason, details=details)
            raise AuthorizationError(f"Access denied: {decision.reason}", details=details)

        return True

    def has_object_permission(self, request, view, obj):
        """
        Verify that the object belongs to the requesting user's company.

        Objects without a company attribute are not restricted here.
        """
        user = request.user
        object_company_id = getattr(obj, 'company_id', None)
        if object_company_id is None:
            return True

        if object_company_id != user.company_id:
            logger.warning(
                "Object permission denied: object belongs to different company",
                extra={
                    'user_id': str(user.id),
                    'object_type': obj.__class__.__name__,
                    'object_id': str(getattr(obj, 'id', '')),
                    'view': view.__class__.__name__,
                }
            )
            return False
        return True


def requires_permissions(*permission_keys):
    """
    Decorator to declare required permission keys on view classes or methods.

    Usage:
        @requires_permissions('companies:subscriptions:view')
        class SubscriptionView(APIView):
            permission_classes = [HasPermissions]

    Or on individual methods:
        class SubscriptionView(APIView):
            permission_classes = [HasPermissions]

            @requires_permissions('companies:subscriptions:manage')
            def post(self, request):
                pass

    Method-level declarations are checked when the method runs, since DRF
    evaluates permission classes before dispatching to the handler.
    """
    def decorator(view_or_method):
        if isinstance(view_or_method, type):
            view_or_method.required_permissions = list(permission_keys)
            return view_or_method

        @wraps(view_or_method)
        def wrapped(self, request, *args, **kwargs):
            self.required_permissions = list(permission_keys)
            if not HasPermissions().has_permission(request, self):
                self.permission_denied(request)
            return view_or_method(self, request, *args, **kwargs)

        wrapped.required_permissions = list(permission_keys)
        return wrapped

    return decorator
