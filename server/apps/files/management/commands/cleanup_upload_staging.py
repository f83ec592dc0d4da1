"""Management command to clean up abandoned staged uploads."""

import logging
from datetime import UTC, datetime, timedelta
from typing import Any, Final

from django.conf import settings
from django.core.management.base import BaseCommand

from server.apps.files.logic.upload_operations import get_staging_dir

_DEFAULT_RETENTION_HOURS: Final = 24

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    """Delete staged upload files left behind by crashed processes."""

    help = 'Clean up abandoned staged uploads'

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
            '--max-age-hours',
            type=int,
            default=None,
            help=(
                'Delete staged files older than this '
                '(default: UPLOAD_STAGING_RETENTION_HOURS)'
            ),
        )

    def handle(self, *args: Any, **options: Any) -> None:
        """Execute the cleanup command.

        Args:
            args: Positional arguments (unused).
            options: Command options.
        """
        dry_run = options['dry_run']
        max_age_hours = options['max_age_hours']
        if max_age_hours is None:
            max_age_hours = getattr(
                settings,
                'UPLOAD_STAGING_RETENTION_HOURS',
                _DEFAULT_RETENTION_HOURS,
            )

        staging_dir = get_staging_dir()
        cutoff = datetime.now(tz=UTC) - timedelta(hours=max_age_hours)

        self.stdout.write(
            f'Looking for staged uploads in {staging_dir} '
            f'modified before {cutoff} (older than {max_age_hours} hours)',
        )

        if not staging_dir.is_dir():
            self.stdout.write(
                self.style.SUCCESS('Staging directory does not exist'),
            )
            return

        count = 0
        failed = 0

        for staged_path in sorted(staging_dir.iterdir()):
            if not staged_path.is_file():
                continue
            modified = datetime.fromtimestamp(
                staged_path.stat().st_mtime,
                tz=UTC,
            )
            if modified > cutoff:
                continue

            if dry_run:
                self.stdout.write(
                    f'Would delete: {staged_path.name} (modified: {modified})',
                )
                count += 1
                continue

            try:
                staged_path.unlink()
            except OSError as exc:
                self.stderr.write(f'Failed to delete {staged_path.name}: {exc}')
                logger.exception(
                    'Failed to remove staged upload: %s',
                    staged_path,
                )
                failed += 1
                continue

            count += 1
            logger.info('Removed staged upload: %s', staged_path)

        if dry_run:
            self.stdout.write(
                self.style.SUCCESS(f'Would remove {count} staged uploads'),
            )
        else:
            self.stdout.write(
                self.style.SUCCESS(
                    f'Removed {count} staged uploads, {failed} failed',
                ),
            )
