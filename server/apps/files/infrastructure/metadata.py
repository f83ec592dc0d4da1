"""Metadata extraction utilities for files."""

import hashlib
import mimetypes
import os
import uuid
from pathlib import Path
from typing import BinaryIO, Final

from server.apps.files.exceptions import (
    HashComputationError,
    InvalidFilenameError,
)

_CHUNK_SIZE: Final = 64 * 1024
_DEFAULT_MIME_TYPE: Final = 'application/octet-stream'
_ROOT_PREFIX: Final = 'files'

HashSource = BinaryIO | str | os.PathLike[str]


def detect_mime_type(filename: str) -> str:
    """Detect MIME type from filename extension.

    Args:
        filename: Filename with extension.

    Returns:
        MIME type string (e.g., 'image/jpeg', 'application/pdf').
        Returns 'application/octet-stream' if type cannot be determined.
    """
    mime_type, _ = mimetypes.guess_type(filename)
    if mime_type is None:
        return _DEFAULT_MIME_TYPE
    return mime_type


def calculate_checksum(source: HashSource) -> str:
    """Calculate SHA256 checksum of a stream or a local file.

    Reads in chunks so large files are never held in memory. Streams
    are rewound before and after hashing so the same object can be
    uploaded afterwards.

    Args:
        source: File-like object, or path to a local file.

    Returns:
        Hex-encoded SHA256 hash string.

    Raises:
        HashComputationError: If the source cannot be read to completion
            or a stream cannot be rewound.
    """
    sha256_hash = hashlib.sha256()

    try:
        if isinstance(source, (str, os.PathLike)):
            with Path(source).open('rb') as file_obj:
                _update_from_stream(sha256_hash, file_obj)
        else:
            _rewind(source)
            _update_from_stream(sha256_hash, source)
            _rewind(source)
    except (OSError, ValueError) as error:
        raise HashComputationError(str(error)) from error

    return sha256_hash.hexdigest()


def _update_from_stream(sha256_hash: 'hashlib._Hash', file_obj: BinaryIO) -> None:
    for chunk in iter(lambda: file_obj.read(_CHUNK_SIZE), b''):
        sha256_hash.update(chunk)


def _rewind(file_obj: BinaryIO) -> None:
    seekable = getattr(file_obj, 'seekable', None)
    if seekable is not None and not seekable():
        # The same stream is uploaded after hashing
        raise HashComputationError('stream is not seekable')
    file_obj.seek(0)


def clean_filename(filename: str | None) -> str:
    """Strip directory components and surrounding whitespace.

    Args:
        filename: Name supplied by the client.

    Returns:
        Bare filename.

    Raises:
        InvalidFilenameError: If nothing usable is left.
    """
    name = Path((filename or '').strip()).name.strip()
    if not name or name in {'.', '..'}:
        raise InvalidFilenameError()
    return name


def build_owner_root(user_id: int) -> str:
    """Storage prefix holding everything a user uploads outside folders.

    Example: 42 -> 'files/42'
    """
    return f'{_ROOT_PREFIX}/{user_id}'


def build_object_key(destination: str) -> str:
    """Generate a unique object key under a destination prefix.

    Example: 'files/42/photos' -> 'files/42/photos/3f2c...e1'

    Args:
        destination: Owner root or folder path.

    Returns:
        Object key with a random 32 hex char name.
    """
    return f'{destination.rstrip("/")}/{uuid.uuid4().hex}'


def build_folder_path(destination: str, folder_name: str) -> str:
    """Storage path recorded for a folder.

    Example: ('files/42', 'photos') -> 'files/42/photos'
    """
    return f'{destination.rstrip("/")}/{folder_name}'
