"""
Permission hierarchy.

Actions are ranked by a static table: a broader action implies every action
listed under it, transitively. Two permissions are related when they belong
to the same module and share the same resource (the code without its action
segment, wherever it sits), e.g. `billing:invoices:manage` is broader than
`billing:invoices:view` and `manage:billing` is broader than `view:billing`.

PermissionHierarchy turns the table into id lookups once per permission
catalogue version. The version token lives in the Django cache so that a
permission change in one process invalidates the tables in every other.
"""
import logging
import threading
import uuid
from typing import Dict, Iterable, List, Tuple

from django.core.cache import cache

logger = logging.getLogger(__name__)

ACTION_HIERARCHY: Dict[str, Tuple[str, ...]] = {
    'manage': ('create', 'update', 'delete', 'view'),
    'update': ('view',),
    'create': (),
    'delete': (),
    'view': (),
    'approve': ('view',),
    'export': ('view',),
}

HIERARCHY_VERSION_CACHE_KEY = 'rbac:permission_hierarchy:version'


def expand_action(action: str) -> List[str]:
    """The action itself followed by every action it implies."""
    expanded = [action]
    for child in ACTION_HIERARCHY.get(action, ()):
        for implied in expand_action(child):
            if implied not in expanded:
                expanded.append(implied)
    return expanded


def action_satisfies(granted_action: str, required_action: str) -> bool:
    return required_action in expand_action(granted_action)


def actions_granting(required_action: str) -> List[str]:
    """Broader actions that imply `required_action`, in table order."""
    return [
        action for action in ACTION_HIERARCHY
        if action != required_action and action_satisfies(action, required_action)
    ]


def actions_implied_by(action: str) -> List[str]:
    """Narrower actions implied by `action`, excluding itself."""
    return expand_action(action)[1:]


def action_of(code: str) -> str:
    """The last known action segment of `code`, else its last segment."""
    segments = code.split(':')
    for segment in reversed(segments):
        if segment in ACTION_HIERARCHY:
            return segment
    return segments[-1]


def resource_of(code: str, action: str) -> str:
    """
    The code with its action segment removed, wherever the segment sits.

    `crm:leads:view` and `view:billing` give `crm:leads` and `billing`.
    """
    segments = code.split(':')
    for index in range(len(segments) - 1, -1, -1):
        if segments[index] == action:
            del segments[index]
            return ':'.join(segments)
    return code


class PermissionHierarchy:
    """
    Id tables of broader and narrower permissions.

    Built from permission rows (anything with id, code, action, module_id and
    resource); never consults names at lookup time.
    """

    def __init__(self, broader: Dict, narrower: Dict, codes: Dict):
        self._broader = broader
        self._narrower = narrower
        self._codes = codes

    @classmethod
    def build(cls, permissions: Iterable) -> 'PermissionHierarchy':
        families = {}
        codes = {}
        for permission in permissions:
            codes[permission.id] = permission.code
            family = families.setdefault((permission.module_id, permission.resource), {})
            family[permission.action] = permission.id

        broader = {}
        narrower = {}
        for family in families.values():
            for action, permission_id in family.items():
                broader[permission_id] = tuple(
                    family[a] for a in actions_granting(action) if a in family
                )
                narrower[permission_id] = tuple(
                    family[a] for a in actions_implied_by(action) if a in family
                )
        return cls(broader, narrower, codes)

    def broader(self, permission_id) -> Tuple:
        """Ordered ids of permissions whose grant implies this one."""
        return self._broader.get(permission_id, ())

    def narrower(self, permission_id) -> Tuple:
        """Ordered ids of permissions implied by this one."""
        return self._narrower.get(permission_id, ())

    def code(self, permission_id):
        return self._codes.get(permission_id)

    def __len__(self):
        return len(self._codes)


_lock = threading.Lock()
_state = {'version': None, 'hierarchy': None}


def _current_version():
    version = cache.get(HIERARCHY_VERSION_CACHE_KEY)
    if version is None:
        cache.add(HIERARCHY_VERSION_CACHE_KEY, uuid.uuid4().hex, timeout=None)
        version = cache.get(HIERARCHY_VERSION_CACHE_KEY)
    return version


def get_permission_hierarchy() -> PermissionHierarchy:
    """
    Return the hierarchy for the current permission catalogue.

    Built on first use and reused until a Permission row changes.
    """
    from apps.rbac.models import Permission

    version = _current_version()
    hierarchy = _state['hierarchy']
    if hierarchy is not None and _state['version'] == version:
        return hierarchy

    with _lock:
        if _state['hierarchy'] is None or _state['version'] != version:
            permissions = Permission.objects.active().only('id', 'code', 'action', 'module_id')
            _state['hierarchy'] = PermissionHierarchy.build(permissions)
            _state['version'] = version
            logger.info(
                "Permission hierarchy built",
                extra={'permission_count': len(_state['hierarchy'])}
            )
        return _state['hierarchy']


def invalidate_permission_hierarchy():
    """Force every process to rebuild its hierarchy on next use."""
    cache.set(HIERARCHY_VERSION_CACHE_KEY, uuid.uuid4().hex, timeout=None)
    _state['hierarchy'] = None
