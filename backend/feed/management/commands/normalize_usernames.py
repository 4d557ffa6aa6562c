"""
Management command to fill Profile.username_lower for legacy profiles.

Usage: python manage.py normalize_usernames [--batch-size N]
"""

from django.core.management.base import BaseCommand

from feed.backfill import normalize_usernames


class Command(BaseCommand):
    help = 'Populate the lowercase username on profiles that lack it'

    def add_arguments(self, parser):
        parser.add_argument(
            '--batch-size',
            type=int,
            default=None,
            help='Profiles per batch commit (defaults to BACKFILL_BATCH_SIZE)'
        )

    def handle(self, *args, **options):
        updated_count = normalize_usernames(batch_size=options['batch_size'])
        if updated_count:
            self.stdout.write(self.style.SUCCESS(f'Updated {updated_count} users.'))
        else:
            self.stdout.write('No users to migrate.')
