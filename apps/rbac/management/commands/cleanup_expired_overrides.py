"""
Management command to delete expired permission overrides.

Expired overrides never affect access decisions; this only keeps the table
small.
"""
from django.core.management.base import BaseCommand, CommandError

from apps.rbac.models import User
from apps.rbac.services import OverrideService


class Command(BaseCommand):
    help = 'Delete expired user permission overrides'

    def add_arguments(self, parser):
        parser.add_argument(
            '--user',
            type=str,
            help='Only clean up overrides of the user with this email',
        )

    def handle(self, *args, **options):
        user = None
        if options.get('user'):
            user = User.objects.filter(email__iexact=options['user']).first()
            if user is None:
                raise CommandError(f"User not found: {options['user']}")

        removed = OverrideService.cleanup_expired_overrides(user=user)
        self.stdout.write(self.style.SUCCESS(f'✓ Removed {removed} expired override(s)'))
