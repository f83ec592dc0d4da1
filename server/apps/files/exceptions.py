"""Exceptions for files app.

Every error raised by the upload pipeline carries an :class:`ErrorCode`.
The member name is the stable machine-readable code, the value holds the
HTTP status an outer layer should answer with and a default message.
"""

import enum
from http import HTTPStatus
from typing import ClassVar


@enum.unique
class ErrorCode(enum.Enum):
    """Machine-readable error codes with HTTP status and default message."""

    FILE_NOT_FOUND = (HTTPStatus.NOT_FOUND, 'File not found')
    OBJECT_NOT_FOUND = (HTTPStatus.NOT_FOUND, 'Object not found in storage')
    OWNER_NOT_FOUND = (HTTPStatus.NOT_FOUND, 'User not found')
    FILE_MISSING = (HTTPStatus.NOT_FOUND, 'Upload source file is missing')
    NO_PERMISSION = (HTTPStatus.FORBIDDEN, 'No permission to access this file')
    FOLDER_NOT_EMPTY = (HTTPStatus.BAD_REQUEST, 'Folder is not empty')
    CANNOT_DOWNLOAD_FOLDER = (HTTPStatus.BAD_REQUEST, 'Folders cannot be downloaded')
    NOT_A_FOLDER = (HTTPStatus.BAD_REQUEST, 'Parent is not a folder')
    INVALID_FILENAME = (HTTPStatus.BAD_REQUEST, 'Filename cannot be empty')
    EMPTY_FILE = (HTTPStatus.BAD_REQUEST, 'File is empty')
    FILE_TOO_LARGE = (
        HTTPStatus.REQUEST_ENTITY_TOO_LARGE,
        'File exceeds the upload size limit',
    )
    STORAGE_DISABLED = (
        HTTPStatus.SERVICE_UNAVAILABLE,
        'Storage backend is not enabled',
    )
    UPLOAD_FAILED = (HTTPStatus.INTERNAL_SERVER_ERROR, 'Upload to storage failed')
    DOWNLOAD_FAILED = (
        HTTPStatus.INTERNAL_SERVER_ERROR,
        'Download from storage failed',
    )
    DELETE_FAILED = (
        HTTPStatus.INTERNAL_SERVER_ERROR,
        'Delete from storage failed',
    )
    HASH_COMPUTATION_FAILED = (
        HTTPStatus.INTERNAL_SERVER_ERROR,
        'Could not compute file checksum',
    )

    @property
    def http_status(self) -> HTTPStatus:
        """HTTP status matching this error."""
        return self.value[0]

    @property
    def message(self) -> str:
        """Default human-readable message."""
        return self.value[1]


class FileServiceError(Exception):
    """Base class for all errors raised by the files app."""

    error_code: ClassVar[ErrorCode]

    def __init__(self, detail: str | None = None) -> None:
        """Initialize error.

        Args:
            detail: Optional detail appended to the default message.
        """
        self.detail = detail
        message = self.error_code.message
        if detail:
            message = f'{message}: {detail}'
        super().__init__(message)

    @property
    def code(self) -> str:
        """Stable machine-readable code."""
        return self.error_code.name

    @property
    def http_status(self) -> HTTPStatus:
        """HTTP status for outer layers."""
        return self.error_code.http_status

    @property
    def message(self) -> str:
        """Human-readable message including the detail."""
        return str(self)


# Categories

class NotFoundError(FileServiceError):
    """A file record, stored object, owner or source file is absent."""


class PermissionDeniedError(FileServiceError):
    """The requesting owner does not own the record."""


class InvalidStateError(FileServiceError):
    """The operation is not valid for the record in its current state."""


class BackendUnavailableError(FileServiceError):
    """The storage backend is disabled or misconfigured."""


class TransferFailureError(FileServiceError):
    """Network or backend I/O failed during store, retrieve or delete."""


class HashComputationError(FileServiceError):
    """Raised when the upload source cannot be read to completion."""

    error_code = ErrorCode.HASH_COMPUTATION_FAILED


# Not found

class FileRecordNotFoundError(NotFoundError):
    """Raised when a file record is absent, deleted or not visible."""

    error_code = ErrorCode.FILE_NOT_FOUND


class ObjectNotFoundError(NotFoundError):
    """Raised when the backend has no object under the requested key."""

    error_code = ErrorCode.OBJECT_NOT_FOUND


class OwnerNotFoundError(NotFoundError):
    """Raised when an upload worker cannot load its owner."""

    error_code = ErrorCode.OWNER_NOT_FOUND


class FileMissingError(NotFoundError):
    """Raised when a local upload source vanished before transfer."""

    error_code = ErrorCode.FILE_MISSING


# Permission

class NoPermissionError(PermissionDeniedError):
    """Raised when a record belongs to another user."""

    error_code = ErrorCode.NO_PERMISSION


# Invalid state

class FolderNotEmptyError(InvalidStateError):
    """Raised when deleting a folder that still has live children."""

    error_code = ErrorCode.FOLDER_NOT_EMPTY


class CannotDownloadFolderError(InvalidStateError):
    """Raised when content is requested for a folder record."""

    error_code = ErrorCode.CANNOT_DOWNLOAD_FOLDER


class NotAFolderError(InvalidStateError):
    """Raised when an upload targets a parent that is a plain file."""

    error_code = ErrorCode.NOT_A_FOLDER


class InvalidFilenameError(InvalidStateError):
    """Raised for blank file or folder names."""

    error_code = ErrorCode.INVALID_FILENAME


class EmptyFileError(InvalidStateError):
    """Raised when an asynchronous upload carries no bytes."""

    error_code = ErrorCode.EMPTY_FILE


class FileTooLargeError(InvalidStateError):
    """Raised when an upload exceeds the configured size limit."""

    error_code = ErrorCode.FILE_TOO_LARGE

    def __init__(self, size_bytes: int, limit_bytes: int) -> None:
        """Initialize FileTooLargeError.

        Args:
            size_bytes: Size of the rejected upload.
            limit_bytes: Configured maximum upload size.
        """
        self.size_bytes = size_bytes
        self.limit_bytes = limit_bytes
        super().__init__(f'{size_bytes} bytes (limit: {limit_bytes})')


# Backend

class BackendDisabledError(BackendUnavailableError):
    """Raised by every backend operation while storage is disabled."""

    error_code = ErrorCode.STORAGE_DISABLED


class UploadFailedError(TransferFailureError):
    """Raised when the backend rejects or drops an upload."""

    error_code = ErrorCode.UPLOAD_FAILED


class DownloadFailedError(TransferFailureError):
    """Raised when an object cannot be fetched from the backend."""

    error_code = ErrorCode.DOWNLOAD_FAILED


class DeleteFailedError(TransferFailureError):
    """Raised when the backend fails to remove an object."""

    error_code = ErrorCode.DELETE_FAILED
