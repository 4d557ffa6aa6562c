"""
Management command to project historical shared entries into the
community feed.

Usage: python manage.py backfill_community_feed [--batch-size N] [--restart]
"""

from django.core.management.base import BaseCommand

from feed.backfill import backfill_community_feed


class Command(BaseCommand):
    help = 'Create missing community posts for entries shared to the feed'

    def add_arguments(self, parser):
        parser.add_argument(
            '--batch-size',
            type=int,
            default=None,
            help='Entries per page (defaults to BACKFILL_BATCH_SIZE)'
        )
        parser.add_argument(
            '--restart',
            action='store_true',
            help='Discard the checkpoint of an interrupted run and start over'
        )

    def handle(self, *args, **options):
        self.stdout.write('Backfilling community feed...')
        report = backfill_community_feed(
            batch_size=options['batch_size'],
            restart=options['restart']
        )
        self.stdout.write(self.style.SUCCESS(
            f'Migration complete:\n'
            f'  - {report.processed_count} entries processed\n'
            f'  - {report.shared_count} entries shared to community'
        ))
