"""
RBAC services.

- AccessService: the access decision chain (single, batch, snapshot)
- OverrideService: per-user allow/deny overrides
- RoleService: roles, role permissions and role assignment
"""
from apps.rbac.services.access_service import (
    AccessDecision,
    AccessService,
    AccessSnapshot,
    DecisionReason,
)
from apps.rbac.services.override_service import (
    BulkOverrideResult,
    OverrideRequest,
    OverrideService,
)
from apps.rbac.services.role_service import RoleService

__all__ = [
    'AccessDecision',
    'AccessService',
    'AccessSnapshot',
    'BulkOverrideResult',
    'DecisionReason',
    'OverrideRequest',
    'OverrideService',
    'RoleService',
]
