"""Business logic for file operations."""

import logging
from typing import Any, cast

from django.core.files.storage import default_storage
from django.db import transaction
from django.db.models import QuerySet

from server.apps.files.exceptions import (
    CannotDownloadFolderError,
    FileRecordNotFoundError,
    FolderNotEmptyError,
    NoPermissionError,
    NotAFolderError,
)
from server.apps.files.infrastructure.metadata import (
    build_folder_path,
    clean_filename,
)
from server.apps.files.infrastructure.storage import StorageBackend
from server.apps.files.models import FOLDER_MIME_TYPE, File

# User type for Django's dynamic user model
_User = Any

logger = logging.getLogger(__name__)


def get_storage() -> StorageBackend:
    """Get the configured default storage backend.

    Returns:
        Backend built from ``STORAGES['default']``.
    """
    return cast(StorageBackend, default_storage)


def get_owned_file(file_id: int, owner: _User) -> File:
    """Load a live record and check it belongs to ``owner``.

    Args:
        file_id: ID of the record.
        owner: Requesting user.

    Returns:
        File instance.

    Raises:
        FileRecordNotFoundError: If no such record exists or it is deleted.
        NoPermissionError: If the record belongs to another user.
    """
    try:
        file_instance = File.all_objects.get(id=file_id)
    except File.DoesNotExist as error:
        raise FileRecordNotFoundError(f'ID={file_id}') from error

    if file_instance.user_id != owner.id:
        logger.warning(
            'User %d denied access to file ID %d',
            owner.id,
            file_id,
        )
        raise NoPermissionError(f'ID={file_id}')

    if file_instance.is_deleted:
        raise FileRecordNotFoundError(f'ID={file_id}')

    return file_instance


def resolve_parent_folder(owner: _User, parent_id: int | None) -> File | None:
    """Load the folder new records are placed in.

    Args:
        owner: Requesting user.
        parent_id: Folder ID, or None for the owner's root.

    Returns:
        Folder record, or None for the root.

    Raises:
        FileRecordNotFoundError: If the folder is missing, deleted or
            owned by someone else.
        NotAFolderError: If the record is a plain file.
    """
    if parent_id is None:
        return None

    parent = File.objects.filter(id=parent_id, user=owner).first()
    if parent is None:
        raise FileRecordNotFoundError(f'parent ID={parent_id}')
    if not parent.is_folder:
        raise NotAFolderError(f'ID={parent_id}')
    return parent


def delete_file(
    file_id: int,
    owner: _User,
    storage: StorageBackend | None = None,
) -> File:
    """Soft delete a file or an empty folder.

    The stored object is removed only when this record is its last live
    reference; deduplicated copies keep it alive. Rows sharing the path
    are locked so two concurrent deletes cannot both skip the removal.

    Args:
        file_id: ID of record to delete.
        owner: Requesting user.
        storage: Backend to use instead of the configured default.

    Returns:
        Updated File instance.

    Raises:
        FileRecordNotFoundError: If the record is missing or deleted.
        NoPermissionError: If the record belongs to another user.
        FolderNotEmptyError: If the folder still has live children.
        BackendDisabledError: If the object must be removed but storage
            is disabled.
        DeleteFailedError: If the backend fails to remove the object.
    """
    if storage is None:
        storage = get_storage()

    with transaction.atomic():
        file_instance = get_owned_file(file_id, owner)

        if file_instance.is_folder:
            if File.objects.filter(parent_id=file_instance.id).exists():
                raise FolderNotEmptyError(file_instance.filename)
        else:
            references = File.objects.select_for_update().filter(
                path=file_instance.path,
            ).values_list('id', flat=True)
            reference_count = len(references)
            if reference_count <= 1:
                storage.remove(file_instance.path)
            else:
                logger.info(
                    'Keeping stored object %s, %d other references',
                    file_instance.path,
                    reference_count - 1,
                )

        file_instance.is_deleted = True
        file_instance.save(update_fields=['is_deleted', 'updated_at'])

    logger.info(
        'File deleted: %s (ID: %d)',
        file_instance.path,
        file_id,
    )
    return file_instance


def download_file(
    file_id: int,
    owner: _User,
    storage: StorageBackend | None = None,
) -> bytes:
    """Read the content of an owned file.

    Raises:
        FileRecordNotFoundError: If the record is missing or deleted.
        NoPermissionError: If the record belongs to another user.
        CannotDownloadFolderError: If the record is a folder.
        ObjectNotFoundError: If the stored object is gone.
    """
    if storage is None:
        storage = get_storage()

    file_instance = get_owned_file(file_id, owner)
    if file_instance.is_folder:
        raise CannotDownloadFolderError(file_instance.filename)

    logger.debug('Downloading file: %s (ID: %d)', file_instance.path, file_id)
    return storage.retrieve(file_instance.path)


def list_files(owner: _User, parent_id: int | None = None) -> QuerySet[File]:
    """List live records directly inside a folder.

    Args:
        owner: Owner of files.
        parent_id: Folder ID, or None for the owner's root.

    Returns:
        QuerySet of File objects, folders first.
    """
    resolve_parent_folder(owner, parent_id)
    return File.objects.filter(user=owner, parent_id=parent_id)


def search_files(owner: _User, keyword: str) -> QuerySet[File]:
    """Find live records whose name contains ``keyword``, ignoring case."""
    keyword = keyword.strip()
    if not keyword:
        return File.objects.none()
    return File.objects.filter(user=owner, filename__icontains=keyword)


def rename_file(file_id: int, owner: _User, new_filename: str) -> File:
    """Change the display name of a record.

    The stored object and its key are left untouched.

    Raises:
        InvalidFilenameError: If the new name is blank.
        FileRecordNotFoundError: If the record is missing or deleted.
        NoPermissionError: If the record belongs to another user.
    """
    name = clean_filename(new_filename)
    file_instance = get_owned_file(file_id, owner)

    old_name = file_instance.filename
    file_instance.filename = name
    file_instance.save(update_fields=['filename', 'updated_at'])

    logger.info('File renamed: %s -> %s (ID: %d)', old_name, name, file_id)
    return file_instance


def create_folder(owner: _User, name: str, parent_id: int | None = None) -> File:
    """Create a folder record.

    Folders have no stored object; their ``path`` is the prefix content
    uploaded into them is stored under.

    Raises:
        InvalidFilenameError: If the name is blank.
        FileRecordNotFoundError: If the parent folder is not available.
        NotAFolderError: If the parent is a plain file.
    """
    from server.apps.files.logic.upload_operations import (  # noqa: WPS433
        resolve_upload_destination,
    )

    folder_name = clean_filename(name)
    parent = resolve_parent_folder(owner, parent_id)
    destination = resolve_upload_destination(owner, parent)

    folder = File.objects.create(
        user=owner,
        parent=parent,
        filename=folder_name,
        original_filename=folder_name,
        path=build_folder_path(destination, folder_name),
        size_bytes=0,
        mime_type=FOLDER_MIME_TYPE,
        is_folder=True,
        checksum_sha256=None,
    )

    logger.info('Folder created: %s (ID: %d)', folder.path, folder.id)
    return folder
