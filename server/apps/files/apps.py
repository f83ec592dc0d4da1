"""Django app configuration for files app."""

from datetime import timedelta
from typing import Final, override

from django.apps import AppConfig
from django.conf import settings

_DEFAULT_MAX_WORKERS: Final = 4
_DEFAULT_TASK_TTL_SECONDS: Final = 3600


class FilesConfig(AppConfig):
    """Configuration for files app.

    Owns the per-process upload task registry and upload worker pool.
    """

    default_auto_field = 'django.db.models.BigAutoField'
    name = 'server.apps.files'
    verbose_name = 'Files'

    @override
    def ready(self) -> None:
        """Build the upload task registry and worker pool."""
        from server.apps.files.infrastructure.workers import (  # noqa: WPS433
            UploadWorkerPool,
        )
        from server.apps.files.logic.upload_tasks import (  # noqa: WPS433
            UploadTaskRegistry,
        )

        ttl_seconds = getattr(
            settings,
            'UPLOAD_TASK_TTL',
            _DEFAULT_TASK_TTL_SECONDS,
        )
        self.upload_tasks = UploadTaskRegistry(
            ttl=timedelta(seconds=ttl_seconds),
        )
        self.upload_executor = UploadWorkerPool(
            max_workers=getattr(settings, 'UPLOAD_MAX_WORKERS', _DEFAULT_MAX_WORKERS),
            thread_name_prefix='file-upload',
        )
