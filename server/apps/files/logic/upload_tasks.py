"""In-process registry of asynchronous upload tasks.

One registry is built at startup (see ``FilesConfig.ready``) and handed
to every orchestrator call. Upload workers and storage progress
callbacks mutate it, progress-polling callers read it.
"""

import dataclasses
import logging
import threading
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Final, final

from django.utils import timezone

from server.apps.files.infrastructure.progress import (
    ProgressEvent,
    ProgressEventType,
    ProgressListener,
)

logger = logging.getLogger(__name__)

# Progress shown while bytes are all out but the task has not completed
_IN_FLIGHT_PROGRESS_CAP: Final = 99.9
_COMPLETE_PROGRESS: Final = 100.0

UPLOAD_COMPLETE_MESSAGE: Final = 'Upload complete'
UPLOAD_FAILED_MESSAGE: Final = 'Upload failed'


@final
@dataclasses.dataclass(frozen=True, slots=True)
class UploadTask:
    """Snapshot of one asynchronous upload.

    Instances are immutable; the registry swaps in a new snapshot on
    every change, so a reader never sees a half-applied update.
    """

    task_id: str
    filename: str
    total_size: int
    bytes_transferred: int = 0
    completed: bool = False
    success: bool = False
    message: str = ''
    updated_at: datetime = dataclasses.field(default_factory=timezone.now)

    @property
    def progress(self) -> float:
        """Percentage of bytes transferred.

        Exactly 100 only after a successful completion.
        """
        if self.completed and self.success:
            return _COMPLETE_PROGRESS
        if self.total_size <= 0:
            return 0.0
        ratio = self.bytes_transferred / self.total_size * 100
        return min(_IN_FLIGHT_PROGRESS_CAP, ratio)


class UploadTaskRegistry:
    """Thread-safe map of task id to :class:`UploadTask`.

    Mutations are serialized per task; reads take no lock. Completed
    tasks are kept for ``ttl`` after their last update and then evicted
    on the next ``create`` or ``evict_expired`` call.
    """

    def __init__(
        self,
        ttl: timedelta | None = None,
        clock: Callable[[], datetime] = timezone.now,
    ) -> None:
        """Initialize registry.

        Args:
            ttl: How long completed tasks stay visible. None keeps them
                for the life of the process.
            clock: Source of the current time.
        """
        self._ttl = ttl
        self._clock = clock
        self._tasks: dict[str, UploadTask] = {}
        self._task_locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._tasks)

    def create(self, task_id: str, filename: str, total_size: int) -> UploadTask:
        """Register a new task with nothing transferred yet.

        Raises:
            ValueError: If the task id is already registered.
        """
        self.evict_expired()
        task = UploadTask(
            task_id=task_id,
            filename=filename,
            total_size=max(0, total_size),
            updated_at=self._clock(),
        )
        with self._registry_lock:
            if task_id in self._tasks:
                raise ValueError(f'Upload task already exists: {task_id}')
            self._task_locks[task_id] = threading.Lock()
            self._tasks[task_id] = task

        logger.info(
            'Upload task created: %s (%s, %d bytes)',
            task_id,
            filename,
            total_size,
        )
        return task

    def get(self, task_id: str) -> UploadTask | None:
        """Current snapshot of a task, or None if unknown or evicted."""
        return self._tasks.get(task_id)

    def update_progress(
        self,
        task_id: str,
        bytes_transferred: int,
        total_size: int,
    ) -> UploadTask | None:
        """Set absolute progress. Transferred bytes never move backwards.

        A total below the bytes already transferred is raised to match.
        """

        def change(task: UploadTask) -> UploadTask:
            total = max(0, total_size, task.bytes_transferred)
            transferred = max(task.bytes_transferred, bytes_transferred)
            return self._replace(
                task,
                total_size=total,
                bytes_transferred=min(transferred, total),
            )

        return self._mutate(task_id, change)

    def add_bytes_transferred(self, task_id: str, delta: int) -> UploadTask | None:
        """Add a transfer delta reported by a backend callback thread.

        Non-positive deltas (transport retries rewinding) are ignored.
        """
        if delta <= 0:
            return self.get(task_id)

        def change(task: UploadTask) -> UploadTask:
            transferred = min(task.bytes_transferred + delta, task.total_size)
            return self._replace(task, bytes_transferred=transferred)

        return self._mutate(task_id, change)

    def complete(
        self,
        task_id: str,
        success: bool,
        message: str,
    ) -> UploadTask | None:
        """Move a task to its terminal state.

        Only the first call has an effect; later calls are no-ops.
        """

        def change(task: UploadTask) -> UploadTask:
            transferred = task.bytes_transferred
            if success:
                transferred = task.total_size
            return self._replace(
                task,
                bytes_transferred=transferred,
                completed=True,
                success=success,
                message=message,
            )

        task = self._mutate(task_id, change)
        if task is not None:
            logger.info(
                'Upload task %s finished: success=%s, message=%s',
                task_id,
                task.success,
                task.message,
            )
        return task

    def listener_for(self, task_id: str) -> ProgressListener:
        """Progress listener feeding backend events into ``task_id``."""

        def listener(event: ProgressEvent) -> None:
            match event.event_type:
                case ProgressEventType.CONTENT_LENGTH_KNOWN:
                    self.update_progress(task_id, 0, event.total_bytes)
                case ProgressEventType.BYTES_TRANSFERRED:
                    self.add_bytes_transferred(task_id, event.bytes_transferred)
                case ProgressEventType.COMPLETED:
                    self.complete(task_id, True, UPLOAD_COMPLETE_MESSAGE)
                case ProgressEventType.FAILED:
                    self.complete(
                        task_id,
                        False,
                        event.message or UPLOAD_FAILED_MESSAGE,
                    )

        return listener

    def evict_expired(self) -> int:
        """Drop completed tasks older than the TTL.

        Returns:
            Number of tasks evicted.
        """
        if self._ttl is None:
            return 0

        cutoff = self._clock() - self._ttl
        with self._registry_lock:
            expired = [
                task_id
                for task_id, task in self._tasks.items()
                if task.completed and task.updated_at <= cutoff
            ]
            for task_id in expired:
                del self._tasks[task_id]
                del self._task_locks[task_id]

        if expired:
            logger.info('Evicted %d expired upload tasks', len(expired))
        return len(expired)

    def _replace(self, task: UploadTask, **changes: object) -> UploadTask:
        return dataclasses.replace(task, updated_at=self._clock(), **changes)

    def _mutate(
        self,
        task_id: str,
        change: Callable[[UploadTask], UploadTask],
    ) -> UploadTask | None:
        task_lock = self._task_locks.get(task_id)
        if task_lock is None:
            logger.warning('Ignoring update for unknown upload task: %s', task_id)
            return None

        with task_lock:
            task = self._tasks.get(task_id)
            if task is None or task.completed:
                return task
            updated = change(task)
            self._tasks[task_id] = updated
            return updated
