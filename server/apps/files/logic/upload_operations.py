"""Business logic for uploads: hashing, deduplication and storing.

Every upload walks the same stages::

    RECEIVED -> HASHING -> DEDUP_HIT  -> RECORD_LINKED    -> COMPLETE
                        -> DEDUP_MISS -> STORING -> RECORD_PERSISTED -> COMPLETE

and any failure moves it to ERROR. A dedup hit creates a new record
pointing at the already stored object, so identical content uploaded
twice by the same user is transferred only once.

Synchronous uploads (:func:`upload_file`) run in the caller's thread.
Asynchronous uploads (:func:`submit_upload`) stage the content to a
local file and hand it to the upload worker pool; their progress is
polled from the :class:`UploadTaskRegistry`.
"""

import enum
import logging
import os
import shutil
import tempfile
import uuid
from concurrent.futures import Executor, Future
from functools import partial
from pathlib import Path
from typing import Any, BinaryIO, Final, cast

from django.apps import apps
from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.files.base import File as DjangoFile
from django.db import transaction

from server.apps.files.exceptions import (
    EmptyFileError,
    FileTooLargeError,
    OwnerNotFoundError,
    UploadFailedError,
)
from server.apps.files.infrastructure.metadata import (
    build_owner_root,
    calculate_checksum,
    clean_filename,
    detect_mime_type,
)
from server.apps.files.infrastructure.storage import StorageBackend
from server.apps.files.logic.dedup_operations import find_duplicate
from server.apps.files.logic.file_operations import (
    get_storage,
    resolve_parent_folder,
)
from server.apps.files.logic.upload_tasks import (
    UPLOAD_FAILED_MESSAGE,
    UploadTaskRegistry,
)
from server.apps.files.models import File

# User type for Django's dynamic user model
_User = Any

logger = logging.getLogger(__name__)

FAST_UPLOAD_MESSAGE: Final = 'Fast upload complete'
UPLOAD_CANCELLED_MESSAGE: Final = 'Upload cancelled'

_DEFAULT_MAX_SIZE_BYTES: Final = 1024 * 1024 * 1024  # 1 GiB
_STAGED_SUFFIX: Final = '.part'


class UploadStage(enum.StrEnum):
    """Stages an upload passes through."""

    RECEIVED = 'received'
    HASHING = 'hashing'
    DEDUP_HIT = 'dedup_hit'
    DEDUP_MISS = 'dedup_miss'
    RECORD_LINKED = 'record_linked'
    STORING = 'storing'
    RECORD_PERSISTED = 'record_persisted'
    COMPLETE = 'complete'
    ERROR = 'error'


def get_upload_tasks() -> UploadTaskRegistry:
    """Registry built for this process by ``FilesConfig.ready``."""
    app_config = apps.get_app_config('files')
    return cast(UploadTaskRegistry, app_config.upload_tasks)


def get_upload_executor() -> Executor:
    """Worker pool built for this process by ``FilesConfig.ready``."""
    app_config = apps.get_app_config('files')
    return cast(Executor, app_config.upload_executor)


def get_max_upload_size() -> int:
    """Configured upload size limit in bytes."""
    return int(getattr(settings, 'UPLOAD_MAX_SIZE_BYTES', _DEFAULT_MAX_SIZE_BYTES))


def get_staging_dir() -> Path:
    """Directory holding staged copies of asynchronous uploads."""
    default = Path(tempfile.gettempdir()) / 'cloud-drive-staging'
    return Path(getattr(settings, 'UPLOAD_STAGING_DIR', default))


def resolve_upload_destination(owner: _User, parent: File | None) -> str:
    """Storage prefix new content is uploaded under.

    Args:
        owner: Uploading user.
        parent: Target folder, or None for the owner's root.

    Returns:
        The folder's stored path, or ``files/{owner_id}``.
    """
    if parent is None:
        return build_owner_root(owner.id)
    return parent.path


def upload_file(  # noqa: WPS211
    owner: _User,
    file_obj: BinaryIO | DjangoFile,
    filename: str,
    parent_id: int | None = None,
    content_type: str | None = None,
    storage: StorageBackend | None = None,
) -> File:
    """Upload content synchronously and create its database record.

    Args:
        owner: Uploading user.
        file_obj: Content, read from its start.
        filename: Name supplied by the client.
        parent_id: Target folder ID, or None for the owner's root.
        content_type: Declared MIME type, detected from the name if None.
        storage: Backend to use instead of the configured default.

    Returns:
        Created File instance (new object or dedup link).

    Raises:
        BackendDisabledError: If storage is disabled.
        FileTooLargeError: If the content exceeds the size limit.
        FileRecordNotFoundError: If the parent folder is not available.
        NotAFolderError: If the parent is a plain file.
        HashComputationError: If the content cannot be read.
        UploadFailedError: If the backend rejects the upload.
    """
    if storage is None:
        storage = get_storage()
    name = clean_filename(filename)
    _enter_stage(UploadStage.RECEIVED, name)

    try:
        storage.check_enabled()
        file_size = _get_file_size(file_obj)
        _check_size(file_size)
        parent = resolve_parent_folder(owner, parent_id)

        _enter_stage(UploadStage.HASHING, name)
        checksum = calculate_checksum(file_obj)

        duplicate = find_duplicate(checksum, owner.id)
        if duplicate is not None:
            return _link_duplicate(owner, duplicate, name, parent, checksum)

        _enter_stage(UploadStage.DEDUP_MISS, name)
        destination = resolve_upload_destination(owner, parent)

        _enter_stage(UploadStage.STORING, name)
        object_key = storage.store(file_obj, destination)

        file_instance = _persist_record(
            owner,
            name,
            parent,
            object_key,
            file_size,
            content_type or detect_mime_type(name),
            checksum,
        )
    except Exception:
        _enter_stage(UploadStage.ERROR, name)
        raise

    _enter_stage(UploadStage.COMPLETE, name)
    return file_instance


def submit_upload(  # noqa: WPS211
    owner: _User,
    file_obj: BinaryIO | DjangoFile,
    filename: str,
    size: int,
    registry: UploadTaskRegistry,
    executor: Executor,
    parent_id: int | None = None,
    storage: StorageBackend | None = None,
    task_id: str | None = None,
) -> str:
    """Start an asynchronous upload and return its task id immediately.

    The content is copied to the staging directory before this returns,
    so the caller may close ``file_obj`` right away. The task is
    registered before any check runs; a rejected upload leaves a failed
    task behind and raises.

    Args:
        owner: Uploading user.
        file_obj: Content, read from its start.
        filename: Name supplied by the client.
        size: Size announced by the client. Limits and progress use the
            size of the staged copy.
        registry: Task registry progress is reported to.
        executor: Pool the upload runs on.
        parent_id: Target folder ID, or None for the owner's root.
        storage: Backend to use instead of the configured default.
        task_id: Caller-chosen task id, generated if None.

    Returns:
        Task id to poll the registry with.

    Raises:
        EmptyFileError: If the content is empty.
        FileTooLargeError: If the content exceeds the limit.
        BackendDisabledError: If storage is disabled.
        FileRecordNotFoundError: If the parent folder is not available.
        NotAFolderError: If the parent is a plain file.
        UploadFailedError: If the content cannot be staged.
    """
    if task_id is None:
        task_id = uuid.uuid4().hex
    name = clean_filename(filename)
    registry.create(task_id, name, size)
    _enter_stage(UploadStage.RECEIVED, name, task_id)

    staged_path = None
    try:
        _check_upload_size(_get_file_size(file_obj), name)
        backend = storage if storage is not None else get_storage()
        backend.check_enabled()
        resolve_parent_folder(owner, parent_id)
        staged_path = _stage_upload(file_obj, task_id)
        staged_size = staged_path.stat().st_size
        _check_upload_size(staged_size, name)
    except Exception as error:
        _enter_stage(UploadStage.ERROR, name, task_id)
        registry.complete(task_id, False, str(error) or UPLOAD_FAILED_MESSAGE)
        if staged_path is not None:
            _discard_staged_file(staged_path)
        raise

    if staged_size != size:
        logger.warning(
            'Upload task %s declared %d bytes, staged %d',
            task_id,
            size,
            staged_size,
        )
        registry.update_progress(task_id, 0, staged_size)

    future = executor.submit(
        run_upload_task,
        staged_path,
        name,
        staged_size,
        owner.id,
        task_id,
        registry,
        parent_id,
        storage,
    )
    future.add_done_callback(
        partial(_on_task_done, task_id, registry, staged_path),
    )
    logger.info('Upload task %s submitted: %s', task_id, name)
    return task_id


def run_upload_task(  # noqa: WPS211
    staged_path: str | Path,
    filename: str,
    declared_size: int,
    owner_id: int,
    task_id: str,
    registry: UploadTaskRegistry,
    parent_id: int | None = None,
    storage: StorageBackend | None = None,
) -> File:
    """Worker body of an asynchronous upload.

    The staged copy is removed on every exit path. Failures are recorded
    into the task and re-raised, so the future carries them.

    Returns:
        Created File instance.
    """
    try:
        owner = _load_owner(owner_id)
        return upload_file_from_path(
            owner,
            staged_path,
            filename,
            declared_size,
            task_id,
            registry,
            parent_id,
            storage,
        )
    except Exception as error:
        logger.exception('Upload task %s failed', task_id)
        registry.complete(task_id, False, str(error) or UPLOAD_FAILED_MESSAGE)
        raise
    finally:
        _discard_staged_file(staged_path)


def upload_file_from_path(  # noqa: WPS211
    owner: _User,
    local_path: str | Path,
    filename: str,
    declared_size: int,
    task_id: str,
    registry: UploadTaskRegistry,
    parent_id: int | None = None,
    storage: StorageBackend | None = None,
) -> File:
    """Upload a local file with progress reported to ``registry``.

    On a dedup hit the task jumps straight to 100% with the fast upload
    message. On a miss the backend reports progress while transferring.
    Any failure completes the task as failed before propagating.

    Returns:
        Created File instance.
    """
    if storage is None:
        storage = get_storage()
    name = clean_filename(filename)

    try:
        storage.check_enabled()
        parent = resolve_parent_folder(owner, parent_id)

        _enter_stage(UploadStage.HASHING, name, task_id)
        checksum = calculate_checksum(local_path)

        duplicate = find_duplicate(checksum, owner.id)
        if duplicate is not None:
            file_instance = _link_duplicate(
                owner,
                duplicate,
                name,
                parent,
                checksum,
                task_id,
            )
            registry.update_progress(task_id, declared_size, declared_size)
            registry.complete(task_id, True, FAST_UPLOAD_MESSAGE)
            return file_instance

        _enter_stage(UploadStage.DEDUP_MISS, name, task_id)
        destination = resolve_upload_destination(owner, parent)
        file_size = Path(local_path).stat().st_size

        _enter_stage(UploadStage.STORING, name, task_id)
        object_key = storage.store_with_progress(
            local_path,
            destination,
            task_id,
            declared_size,
            registry.listener_for(task_id),
        )

        file_instance = _persist_record(
            owner,
            name,
            parent,
            object_key,
            file_size,
            detect_mime_type(name),
            checksum,
            task_id,
        )
    except Exception as error:
        _enter_stage(UploadStage.ERROR, name, task_id)
        registry.complete(task_id, False, str(error) or UPLOAD_FAILED_MESSAGE)
        raise

    _enter_stage(UploadStage.COMPLETE, name, task_id)
    return file_instance


def _link_duplicate(  # noqa: WPS211
    owner: _User,
    duplicate: File,
    name: str,
    parent: File | None,
    checksum: str,
    task_id: str = '-',
) -> File:
    _enter_stage(UploadStage.DEDUP_HIT, name, task_id)

    with transaction.atomic():
        file_instance = File.objects.create(
            user=owner,
            parent=parent,
            filename=name,
            original_filename=name,
            path=duplicate.path,
            size_bytes=duplicate.size_bytes,
            mime_type=duplicate.mime_type,
            checksum_sha256=checksum,
        )

    logger.info(
        'Linked %s to existing content of file ID %d (ID: %d)',
        name,
        duplicate.id,
        file_instance.id,
    )
    _enter_stage(UploadStage.RECORD_LINKED, name, task_id)
    _enter_stage(UploadStage.COMPLETE, name, task_id)
    return file_instance


def _persist_record(  # noqa: WPS211
    owner: _User,
    name: str,
    parent: File | None,
    object_key: str,
    file_size: int,
    mime_type: str,
    checksum: str,
    task_id: str = '-',
) -> File:
    with transaction.atomic():
        file_instance = File.objects.create(
            user=owner,
            parent=parent,
            filename=name,
            original_filename=name,
            path=object_key,
            size_bytes=file_size,
            mime_type=mime_type,
            checksum_sha256=checksum,
        )

    logger.info(
        'File record created in database: %s (ID: %d)',
        object_key,
        file_instance.id,
    )
    _enter_stage(UploadStage.RECORD_PERSISTED, name, task_id)
    return file_instance


def _enter_stage(stage: UploadStage, name: str, task_id: str = '-') -> None:
    logger.info('Upload %s [task: %s]: %s', stage, task_id, name)


def _check_size(size: int) -> None:
    limit = get_max_upload_size()
    if size > limit:
        raise FileTooLargeError(size, limit)


def _check_upload_size(size: int, name: str) -> None:
    if size <= 0:
        raise EmptyFileError(name)
    _check_size(size)


def _get_file_size(file_obj: BinaryIO | DjangoFile) -> int:
    """Get file size from file object.

    Args:
        file_obj: File-like object.

    Returns:
        File size in bytes.

    Raises:
        UploadFailedError: If the stream cannot be measured.
    """
    if hasattr(file_obj, 'size'):
        return file_obj.size
    try:
        file_obj.seek(0, os.SEEK_END)
        file_size = file_obj.tell()
        file_obj.seek(0)
    except (OSError, ValueError) as error:
        raise UploadFailedError(f'could not measure upload: {error}') from error
    return file_size


def _load_owner(owner_id: int) -> _User:
    user_model = get_user_model()
    try:
        return user_model.objects.get(pk=owner_id)
    except user_model.DoesNotExist as error:
        raise OwnerNotFoundError(str(owner_id)) from error


def _stage_upload(file_obj: BinaryIO | DjangoFile, task_id: str) -> Path:
    staging_dir = get_staging_dir()
    staged_path = staging_dir / f'{task_id}{_STAGED_SUFFIX}'

    try:
        staging_dir.mkdir(parents=True, exist_ok=True)
        with staged_path.open('wb') as staged:
            if isinstance(file_obj, DjangoFile):
                for chunk in file_obj.chunks():
                    staged.write(chunk)
            else:
                file_obj.seek(0)
                shutil.copyfileobj(file_obj, staged)
    except OSError as error:
        logger.exception('Failed to stage upload: %s', staged_path)
        _discard_staged_file(staged_path)
        raise UploadFailedError(f'could not stage upload: {error}') from error

    logger.debug('Upload staged: %s', staged_path)
    return staged_path


def _discard_staged_file(staged_path: str | Path) -> None:
    try:
        Path(staged_path).unlink(missing_ok=True)
    except OSError:
        # Leftovers are swept by cleanup_upload_staging
        logger.exception('Failed to remove staged upload: %s', staged_path)


def _on_task_done(
    task_id: str,
    registry: UploadTaskRegistry,
    staged_path: Path,
    future: Future[File],
) -> None:
    if future.cancelled():
        logger.warning('Upload task %s was cancelled before it started', task_id)
        registry.complete(task_id, False, UPLOAD_CANCELLED_MESSAGE)
        _discard_staged_file(staged_path)
        return

    error = future.exception()
    if error is not None:
        logger.error('Upload task %s ended with error: %s', task_id, error)
