"""Database models for files app."""

from typing import Final, final, override

from django.contrib.auth import get_user_model
from django.db import models

User = get_user_model()

# Constants for field max lengths
_FILENAME_MAX_LENGTH: Final = 255
_PATH_MAX_LENGTH: Final = 1024
_MIME_TYPE_MAX_LENGTH: Final = 255
_CHECKSUM_MAX_LENGTH: Final = 64  # SHA256 hex length

FOLDER_MIME_TYPE: Final = 'inode/directory'


class ActiveFileManager(models.Manager['File']):
    """Default manager hiding soft-deleted records."""

    @override
    def get_queryset(self) -> models.QuerySet['File']:
        return super().get_queryset().filter(is_deleted=False)


@final
class File(models.Model):
    """File or folder record owned by a user.

    ``path`` is the storage object key for files and the storage prefix
    for folders. Several records may share one ``path`` when identical
    content was deduplicated; the stored object lives until the last
    non-deleted record pointing at it is deleted.

    Records are never removed from the table: deletion sets
    ``is_deleted``. ``objects`` hides deleted records, ``all_objects``
    sees every row.
    """

    # Owner relationship
    user = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='files',
        db_index=True,
    )

    parent = models.ForeignKey(
        'self',
        on_delete=models.CASCADE,
        related_name='children',
        null=True,
        blank=True,
        help_text='Containing folder, empty for the owner root',
    )

    filename = models.CharField(
        max_length=_FILENAME_MAX_LENGTH,
        help_text='Display name',
    )

    original_filename = models.CharField(
        max_length=_FILENAME_MAX_LENGTH,
        help_text='Name the file was uploaded with',
    )

    path = models.CharField(
        max_length=_PATH_MAX_LENGTH,
        db_index=True,
        help_text='Object key in storage: files/{user_id}/.../{uuid}',
    )

    # File metadata
    size_bytes = models.BigIntegerField(
        default=0,
        help_text='File size in bytes',
    )

    mime_type = models.CharField(
        max_length=_MIME_TYPE_MAX_LENGTH,
        help_text='MIME type detected from the filename extension',
    )

    is_folder = models.BooleanField(default=False)

    checksum_sha256 = models.CharField(
        max_length=_CHECKSUM_MAX_LENGTH,
        null=True,
        blank=True,
        db_index=True,
        help_text='SHA256 of the content, used for deduplication',
    )

    is_deleted = models.BooleanField(default=False, db_index=True)

    # Timestamps
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = ActiveFileManager()
    all_objects = models.Manager()

    class Meta:
        """Model metadata."""

        verbose_name = 'File'  # type: ignore[mutable-override]
        verbose_name_plural = 'Files'  # type: ignore[mutable-override]
        ordering = ['-is_folder', 'filename']

        indexes = [
            # Dedup lookup: checksum within an owner
            models.Index(
                fields=['user', 'checksum_sha256'],
                name='files_user_checksum_idx',
            ),
            # Directory listing
            models.Index(
                fields=['user', 'parent', 'is_deleted'],
                name='files_user_parent_idx',
            ),
        ]

    @override
    def __str__(self) -> str:
        """String representation."""
        return f'{self.user.username}:{self.filename}'
