"""Django storage configuration for user file content.

``STORAGE_BACKEND`` selects the default storage:
- ``s3``: any S3-compatible store (AWS S3, MinIO, Cloudflare R2)
- ``local``: the local filesystem, for development and single-host setups

``STORAGE_ENABLED=False`` keeps the backend configured but makes every
operation fail fast without touching the store.
"""

from typing import Any, Final

from server.settings.components import BASE_DIR, config

STORAGE_BACKEND = config('STORAGE_BACKEND', default='s3')
STORAGE_ENABLED = config('STORAGE_ENABLED', cast=bool, default=True)

_S3_STORAGE: Final[dict[str, Any]] = {
    'BACKEND': 'server.apps.files.infrastructure.storage.FileStorage',
    'OPTIONS': {
        'enabled': STORAGE_ENABLED,
        'bucket_name': config('AWS_STORAGE_BUCKET_NAME', default='cloud-drive'),
        'access_key': config('AWS_ACCESS_KEY_ID', default=''),
        'secret_key': config('AWS_SECRET_ACCESS_KEY', default=''),
        'endpoint_url': config(
            'AWS_S3_ENDPOINT_URL',
            default=None,
        ),
        'region_name': config(
            'AWS_S3_REGION_NAME',
            default='auto',
        ),
        'file_overwrite': False,  # Prevent accidental overwrites
        'default_acl': None,  # Inherit bucket ACL
    },
}

_LOCAL_STORAGE: Final[dict[str, Any]] = {
    'BACKEND': 'server.apps.files.infrastructure.storage.LocalFileStorage',
    'OPTIONS': {
        'enabled': STORAGE_ENABLED,
        'location': config(
            'LOCAL_STORAGE_ROOT',
            default=str(BASE_DIR.joinpath('media')),
        ),
    },
}

# Storage configuration dictionary
# User files go to the selected backend, static files stay local
STORAGES: Final[dict[str, dict[str, Any]]] = {
    'default': _LOCAL_STORAGE if STORAGE_BACKEND == 'local' else _S3_STORAGE,
    'staticfiles': {
        # Keep static files separate from user files
        'BACKEND': 'django.contrib.staticfiles.storage.StaticFilesStorage',
    },
}
