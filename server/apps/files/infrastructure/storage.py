"""Storage backends for uploaded file content.

Every backend implements :class:`StorageBackend`, so the upload
orchestrator never depends on a concrete object store.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterator
from pathlib import Path
from typing import Any, BinaryIO, final, override

from boto3.exceptions import S3UploadFailedError
from botocore.exceptions import BotoCoreError, ClientError
from django.core.files.base import File as DjangoFile
from django.core.files.storage import FileSystemStorage
from storages.backends.s3 import S3Storage
from storages.utils import clean_name

from server.apps.files.exceptions import (
    BackendDisabledError,
    DeleteFailedError,
    DownloadFailedError,
    FileMissingError,
    ObjectNotFoundError,
    UploadFailedError,
)
from server.apps.files.infrastructure.metadata import build_object_key
from server.apps.files.infrastructure.progress import (
    ProgressEvent,
    ProgressListener,
)

logger = logging.getLogger(__name__)

UploadContent = BinaryIO | DjangoFile

_MISSING_OBJECT_CODES = frozenset(('404', 'NoSuchKey', 'NotFound'))


class StorageBackend(ABC):
    """Contract shared by every object store the upload pipeline can target.

    All four operations fail fast with BackendDisabledError, without any
    network call, while the backend is disabled.
    """

    enabled: bool = True

    def check_enabled(self) -> None:
        """Fail fast if the backend is switched off.

        Raises:
            BackendDisabledError: If storage is disabled in configuration.
        """
        if not self.enabled:
            logger.error('Storage backend %s is disabled', type(self).__name__)
            raise BackendDisabledError()

    @abstractmethod
    def store(self, content: UploadContent, destination: str) -> str:
        """Upload content under a new key below ``destination``.

        Args:
            content: File-like object positioned at the start.
            destination: Owner root or folder path.

        Returns:
            Object key reported by the backend.

        Raises:
            BackendDisabledError: If storage is disabled.
            UploadFailedError: On transport or auth errors.
        """

    @abstractmethod
    def store_with_progress(  # noqa: WPS211
        self,
        local_path: str | Path,
        destination: str,
        task_id: str,
        declared_size: int,
        listener: ProgressListener,
    ) -> str:
        """Upload a local file while reporting progress to ``listener``.

        Emits CONTENT_LENGTH_KNOWN before the transfer, BYTES_TRANSFERRED
        deltas in the order the transport reports them, then COMPLETED or
        FAILED before returning or raising.

        Args:
            local_path: Staged copy of the upload.
            destination: Owner root or folder path.
            task_id: Upload task the events belong to.
            declared_size: Size announced by the client.
            listener: Receiver of progress events.

        Returns:
            Object key reported by the backend.

        Raises:
            BackendDisabledError: If storage is disabled.
            FileMissingError: If ``local_path`` is gone.
            UploadFailedError: On transport or auth errors.
        """

    @abstractmethod
    def retrieve(self, object_key: str) -> bytes:
        """Download an object.

        Raises:
            BackendDisabledError: If storage is disabled.
            ObjectNotFoundError: If nothing is stored under the key.
            DownloadFailedError: On transport errors.
        """

    @abstractmethod
    def remove(self, object_key: str) -> None:
        """Delete an object. Removing an absent key is not an error.

        Raises:
            BackendDisabledError: If storage is disabled.
            DeleteFailedError: On genuine backend errors.
        """

    def _check_source(self, local_path: str | Path) -> Path:
        source = Path(local_path)
        if not source.is_file():
            logger.error('Upload source is missing: %s', source)
            raise FileMissingError(str(source))
        return source


@final
class FileStorage(StorageBackend, S3Storage):
    """S3-compatible storage backend for user files.

    Extends django-storages S3Storage with:
    - The StorageBackend contract used by the upload pipeline
    - Progress reporting through boto3 transfer callbacks
    - Enable/disable switch and error translation
    """

    def __init__(self, *, enabled: bool = True, **settings: Any) -> None:
        """Initialize storage.

        Args:
            enabled: Whether operations may reach the object store.
            settings: django-storages S3 options.
        """
        super().__init__(**settings)
        self.enabled = enabled

    @override
    def store(self, content: UploadContent, destination: str) -> str:
        self.check_enabled()
        object_key = build_object_key(destination)

        try:
            logger.info('Uploading file to storage: %s', object_key)
            saved_name = self.save(object_key, content)
        except (BotoCoreError, ClientError, S3UploadFailedError) as error:
            logger.exception('Failed to upload file to storage: %s', object_key)
            raise UploadFailedError(str(error)) from error

        logger.info('Successfully uploaded file: %s', saved_name)
        return saved_name

    @override
    def store_with_progress(  # noqa: WPS211
        self,
        local_path: str | Path,
        destination: str,
        task_id: str,
        declared_size: int,
        listener: ProgressListener,
    ) -> str:
        self.check_enabled()
        source = self._check_source(local_path)
        object_key = clean_name(build_object_key(destination))
        # Same location prefix and object parameters as save()
        stored_name = self._normalize_name(object_key)

        logger.info(
            'Uploading file to storage with progress: %s (task: %s, size: %d)',
            object_key,
            task_id,
            declared_size,
        )
        listener(ProgressEvent.content_length(declared_size))

        try:
            self.bucket.upload_file(
                str(source),
                stored_name,
                ExtraArgs=self._get_write_parameters(stored_name),
                Callback=lambda delta: listener(ProgressEvent.transferred(delta)),
                Config=self.transfer_config,
            )
        except FileNotFoundError as error:
            listener(ProgressEvent.failed('Upload source disappeared'))
            raise FileMissingError(str(source)) from error
        except (BotoCoreError, ClientError, S3UploadFailedError, OSError) as error:
            logger.exception(
                'Failed to upload file to storage: %s (task: %s)',
                object_key,
                task_id,
            )
            listener(ProgressEvent.failed(f'Upload failed: {error}'))
            raise UploadFailedError(str(error)) from error

        listener(ProgressEvent.completed())
        logger.info('Successfully uploaded file: %s (task: %s)', object_key, task_id)
        return object_key

    @override
    def retrieve(self, object_key: str) -> bytes:
        self.check_enabled()

        try:
            with self.open(object_key, 'rb') as stored:
                return stored.read()
        except FileNotFoundError as error:
            logger.warning('Object not found in storage: %s', object_key)
            raise ObjectNotFoundError(object_key) from error
        except ClientError as error:
            if _is_missing_object(error):
                logger.warning('Object not found in storage: %s', object_key)
                raise ObjectNotFoundError(object_key) from error
            logger.exception('Failed to download file: %s', object_key)
            raise DownloadFailedError(str(error)) from error
        except BotoCoreError as error:
            logger.exception('Failed to download file: %s', object_key)
            raise DownloadFailedError(str(error)) from error

    @override
    def remove(self, object_key: str) -> None:
        self.check_enabled()

        try:
            logger.info('Deleting file from storage: %s', object_key)
            self.delete(object_key)
        except (BotoCoreError, ClientError) as error:
            logger.exception('Failed to delete file from storage: %s', object_key)
            raise DeleteFailedError(str(error)) from error

        logger.info('Successfully deleted file: %s', object_key)


@final
class LocalFileStorage(StorageBackend, FileSystemStorage):
    """Filesystem storage backend for development and single-host setups."""

    def __init__(self, *, enabled: bool = True, **settings: Any) -> None:
        """Initialize storage.

        Args:
            enabled: Whether operations may touch the storage root.
            settings: FileSystemStorage options (location, base_url, ...).
        """
        super().__init__(**settings)
        self.enabled = enabled

    @override
    def store(self, content: UploadContent, destination: str) -> str:
        self.check_enabled()
        object_key = build_object_key(destination)

        try:
            saved_name = self.save(object_key, content)
        except OSError as error:
            logger.exception('Failed to write file to storage: %s', object_key)
            raise UploadFailedError(str(error)) from error

        logger.info('Stored file locally: %s', saved_name)
        return saved_name

    @override
    def store_with_progress(  # noqa: WPS211
        self,
        local_path: str | Path,
        destination: str,
        task_id: str,
        declared_size: int,
        listener: ProgressListener,
    ) -> str:
        self.check_enabled()
        source = self._check_source(local_path)
        object_key = build_object_key(destination)

        listener(ProgressEvent.content_length(declared_size))
        try:
            with source.open('rb') as source_file:
                saved_name = self.save(
                    object_key,
                    _ProgressFile(source_file, listener),
                )
        except FileNotFoundError as error:
            listener(ProgressEvent.failed('Upload source disappeared'))
            raise FileMissingError(str(source)) from error
        except OSError as error:
            logger.exception(
                'Failed to write file to storage: %s (task: %s)',
                object_key,
                task_id,
            )
            listener(ProgressEvent.failed(f'Upload failed: {error}'))
            raise UploadFailedError(str(error)) from error

        listener(ProgressEvent.completed())
        logger.info('Stored file locally: %s (task: %s)', saved_name, task_id)
        return saved_name

    @override
    def retrieve(self, object_key: str) -> bytes:
        self.check_enabled()

        try:
            with self.open(object_key, 'rb') as stored:
                return stored.read()
        except FileNotFoundError as error:
            logger.warning('Object not found in storage: %s', object_key)
            raise ObjectNotFoundError(object_key) from error
        except OSError as error:
            logger.exception('Failed to read file: %s', object_key)
            raise DownloadFailedError(str(error)) from error

    @override
    def remove(self, object_key: str) -> None:
        self.check_enabled()

        try:
            self.delete(object_key)
        except OSError as error:
            logger.exception('Failed to delete file: %s', object_key)
            raise DeleteFailedError(str(error)) from error

        logger.info('Deleted local file: %s', object_key)


class _ProgressFile(DjangoFile):
    """File wrapper reporting every chunk handed to the storage."""

    def __init__(self, file_obj: BinaryIO, listener: ProgressListener) -> None:
        super().__init__(file_obj)
        self._listener = listener

    @override
    def chunks(self, chunk_size: int | None = None) -> Iterator[bytes]:
        for chunk in super().chunks(chunk_size):
            yield chunk
            self._listener(ProgressEvent.transferred(len(chunk)))


def _is_missing_object(error: ClientError) -> bool:
    code = error.response.get('Error', {}).get('Code', '')
    return str(code) in _MISSING_OBJECT_CODES
