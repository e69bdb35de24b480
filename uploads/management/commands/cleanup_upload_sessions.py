"""
Management command to cleanup abandoned upload sessions.
"""

from django.conf import settings
from django.core.management.base import BaseCommand

from uploads.services import destroy_session, stale_sessions


class Command(BaseCommand):
    help = 'Delete abandoned upload sessions idle for longer than the given time'

    def add_arguments(self, parser):
        parser.add_argument(
            '--hours',
            type=int,
            default=None,
            help='Clean sessions idle for more than this many hours (default: UPLOAD_SESSION_TTL_HOURS)',
        )
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Show what would be deleted without actually deleting',
        )

    def handle(self, *args, **options):
        hours = options['hours']
        if hours is None:
            hours = settings.UPLOAD_SESSION_TTL_HOURS
        dry_run = options['dry_run']

        sessions = stale_sessions(hours)

        if not sessions.exists():
            self.stdout.write(
                self.style.SUCCESS(f'No upload sessions idle for more than {hours} hours found.')
            )
            return

        deleted_count = 0
        error_count = 0

        for session in sessions:
            parts = session.parts.count()
            try:
                if dry_run:
                    self.stdout.write(f'Would delete: {session.id} ({parts} parts)')
                else:
                    destroy_session(session)
                    self.stdout.write(f'Deleted: {session.id} ({parts} parts)')

                deleted_count += 1

            except Exception as e:
                error_count += 1
                self.stdout.write(
                    self.style.ERROR(f'Error deleting {session.id}: {e}')
                )

        if dry_run:
            self.stdout.write(
                self.style.SUCCESS(f'Dry run complete. Would delete {deleted_count} sessions.')
            )
        else:
            self.stdout.write(
                self.style.SUCCESS(
                    f'Cleanup complete. Deleted {deleted_count} sessions, {error_count} errors.'
                )
            )
