"""
Management command to seed canonical permissions.

Creates the modules and Permission records the back office itself needs to
guard its API. This command is idempotent and safe to re-run.
"""
from django.core.management.base import BaseCommand
from django.db import transaction

from apps.rbac.models import Module, Permission


class Command(BaseCommand):
    help = 'Seed canonical modules and permissions (idempotent)'

    CANONICAL_MODULES = [
        {
            'name': 'administration',
            'description': 'Roles, overrides, audit trail and handovers',
            'is_free_for_all': True,
        },
        {
            'name': 'billing',
            'description': 'Subscriptions and add-on purchases',
            'is_free_for_all': False,
        },
    ]

    CANONICAL_PERMISSIONS = [
        # Administration
        {'code': 'rbac:roles:view', 'label': 'View Roles', 'module': 'administration'},
        {'code': 'rbac:roles:manage', 'label': 'Manage Roles', 'module': 'administration'},
        {'code': 'rbac:overrides:view', 'label': 'View Permission Overrides', 'module': 'administration'},
        {'code': 'rbac:overrides:manage', 'label': 'Manage Permission Overrides', 'module': 'administration'},
        {'code': 'rbac:audit:view', 'label': 'View Audit Logs', 'module': 'administration'},
        {'code': 'handovers:view', 'label': 'View Handovers', 'module': 'administration'},
        {'code': 'handovers:manage', 'label': 'Manage Handovers', 'module': 'administration'},

        # Billing stays reachable when a subscription lapses
        {
            'code': 'companies:subscriptions:view',
            'label': 'View Subscription',
            'module': 'billing',
            'is_subscription_exempt': True,
        },
        {
            'code': 'companies:subscriptions:manage',
            'label': 'Manage Subscription',
            'module': 'billing',
            'is_subscription_exempt': True,
        },
    ]

    def handle(self, *args, **options):
        """Create or update all canonical modules and permissions."""
        created_count = 0
        updated_count = 0

        self.stdout.write('Seeding canonical permissions...\n')

        with transaction.atomic():
            modules = {}
            for module_data in self.CANONICAL_MODULES:
                module, _ = Module.objects.update_or_create(
                    name=module_data['name'],
                    defaults={
                        'description': module_data['description'],
                        'is_free_for_all': module_data['is_free_for_all'],
                    },
                )
                modules[module.name] = module

            for perm_data in self.CANONICAL_PERMISSIONS:
                permission, created = Permission.objects.update_or_create(
                    code=perm_data['code'],
                    defaults={
                        'label': perm_data['label'],
                        'module': modules[perm_data['module']],
                        'is_subscription_exempt': perm_data.get('is_subscription_exempt', False),
                    },
                )
                if created:
                    created_count += 1
                    self.stdout.write(self.style.SUCCESS(f'✓ Created: {permission.code}'))
                else:
                    updated_count += 1
                    self.stdout.write(self.style.HTTP_INFO(f'  Exists: {permission.code}'))

        self.stdout.write(
            self.style.SUCCESS(
                f'\n✓ Seeding complete: {created_count} created, {updated_count} refreshed'
            )
        )
