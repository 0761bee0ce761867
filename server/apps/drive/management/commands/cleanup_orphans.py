"""Management command to clean up blobs without a File row."""

import logging
from datetime import timedelta
from typing import Any

from django.conf import settings
from django.core.files.storage import default_storage
from django.core.management.base import BaseCommand
from django.utils import timezone

from server.apps.drive.infrastructure.metadata_store import DjangoMetadataStore
from server.apps.drive.logic.maintenance import (
    find_orphaned_blobs,
    purge_orphaned_blobs,
)

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    """Delete blobs that no File row references anymore."""

    help = 'Clean up orphaned blobs left by failed deletes and uploads'

    def add_arguments(self, parser: Any) -> None:
        """Add command line arguments.

        Args:
            parser: Argument parser.
        """
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Show what would be deleted without deleting',
        )
        parser.add_argument(
            '--min-age-hours',
            type=int,
            default=settings.DRIVE_TEMP_RETENTION_HOURS,
            help=(
                'Only touch blobs older than this many hours '
                f'(default: {settings.DRIVE_TEMP_RETENTION_HOURS})'
            ),
        )

    def handle(self, *args: Any, **options: Any) -> None:
        """Execute the cleanup command.

        Args:
            args: Positional arguments (unused).
            options: Command options.
        """
        dry_run = options['dry_run']
        cutoff = timezone.now() - timedelta(hours=options['min_age_hours'])
        metadata = DjangoMetadataStore()

        self.stdout.write(
            f'Looking for orphaned blobs modified before {cutoff}',
        )

        if dry_run:
            orphans = list(
                find_orphaned_blobs(metadata, default_storage, cutoff),
            )
            for storage_path in orphans:
                self.stdout.write(f'Would delete: {storage_path}')
            self.stdout.write(
                self.style.SUCCESS(
                    f'Would purge {len(orphans)} orphaned blobs',
                ),
            )
            return

        deleted, failed = purge_orphaned_blobs(
            metadata,
            default_storage,
            cutoff,
        )
        if failed:
            logger.warning('%d orphaned blobs could not be deleted', failed)
        self.stdout.write(
            self.style.SUCCESS(
                f'Purged {deleted} orphaned blobs, {failed} failed',
            ),
        )
