"""Typed progress events emitted by storage backends during uploads."""

import enum
from collections.abc import Callable
from dataclasses import dataclass
from typing import final


class ProgressEventType(enum.StrEnum):
    """Kinds of progress observations a backend reports."""

    CONTENT_LENGTH_KNOWN = 'content_length_known'
    BYTES_TRANSFERRED = 'bytes_transferred'
    COMPLETED = 'completed'
    FAILED = 'failed'


@final
@dataclass(frozen=True, slots=True)
class ProgressEvent:
    """Single progress observation for one upload task.

    Attributes:
        event_type: What happened.
        bytes_transferred: Delta for BYTES_TRANSFERRED events.
        total_bytes: Total size for CONTENT_LENGTH_KNOWN events.
        message: Reason for FAILED events.
    """

    event_type: ProgressEventType
    bytes_transferred: int = 0
    total_bytes: int = 0
    message: str = ''

    @classmethod
    def content_length(cls, total_bytes: int) -> 'ProgressEvent':
        """Total size became known, transfer is about to start."""
        return cls(ProgressEventType.CONTENT_LENGTH_KNOWN, total_bytes=total_bytes)

    @classmethod
    def transferred(cls, delta: int) -> 'ProgressEvent':
        """Another chunk of ``delta`` bytes went out."""
        return cls(ProgressEventType.BYTES_TRANSFERRED, bytes_transferred=delta)

    @classmethod
    def completed(cls) -> 'ProgressEvent':
        """Transfer finished successfully."""
        return cls(ProgressEventType.COMPLETED)

    @classmethod
    def failed(cls, message: str) -> 'ProgressEvent':
        """Transfer failed."""
        return cls(ProgressEventType.FAILED, message=message)


ProgressListener = Callable[[ProgressEvent], None]
