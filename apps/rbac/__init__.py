"""
RBAC (Role-Based Access Control) application.

Provides company-scoped access control with:
- Roles ranked by priority (lower = more authority)
- Per-user allow/deny overrides with expiry and hierarchical cascade
- A single access decision engine combining entitlements, overrides and roles
- Audit logging of every mutation
"""
