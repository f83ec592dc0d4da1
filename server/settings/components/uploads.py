"""Upload pipeline settings."""

import tempfile
from pathlib import Path

from server.settings.components import config

# Concurrent asynchronous uploads per process
UPLOAD_MAX_WORKERS = config('UPLOAD_MAX_WORKERS', cast=int, default=4)

# Seconds a finished upload task stays visible to progress polling
UPLOAD_TASK_TTL = config('UPLOAD_TASK_TTL', cast=int, default=3600)

# Largest accepted upload, 1 GiB by default
UPLOAD_MAX_SIZE_BYTES = config(
    'UPLOAD_MAX_SIZE_BYTES',
    cast=int,
    default=1024 * 1024 * 1024,
)

# Staged copies of asynchronous uploads
UPLOAD_STAGING_DIR = config(
    'UPLOAD_STAGING_DIR',
    cast=Path,
    default=str(Path(tempfile.gettempdir()) / 'cloud-drive-staging'),
)
UPLOAD_STAGING_RETENTION_HOURS = config(
    'UPLOAD_STAGING_RETENTION_HOURS',
    cast=int,
    default=24,
)
