"""
Management command to seed the default platform system roles.

Creates Super Admin, Company Admin, Manager, Employee and Client, and grants
them their default permissions from the canonical set. Run seed_permissions
first. Idempotent.
"""
from django.core.management.base import BaseCommand

from apps.rbac.models import Permission
from apps.rbac.services import RoleService

DEFAULT_ROLE_PERMISSIONS = {
    'Super Admin': '__all__',
    'Company Admin': '__all__',
    'Manager': ['rbac:roles:view', 'handovers:view'],
    'Employee': [],
    'Client': [],
}


class Command(BaseCommand):
    help = 'Seed default platform system roles and their permissions (idempotent)'

    def handle(self, *args, **options):
        roles = RoleService.initialize_system_roles()
        all_permissions = list(Permission.objects.active())
        by_code = {p.code: p for p in all_permissions}

        for role in roles:
            wanted = DEFAULT_ROLE_PERMISSIONS.get(role.name, [])
            if wanted == '__all__':
                permissions = all_permissions
            else:
                permissions = [by_code[code] for code in wanted if code in by_code]

            granted = 0
            for permission in permissions:
                _, created = RoleService.grant_permission(role, permission)
                granted += int(created)

            self.stdout.write(
                self.style.SUCCESS(
                    f'✓ {role.name} (priority {role.priority}): {granted} permission(s) granted'
                )
            )
