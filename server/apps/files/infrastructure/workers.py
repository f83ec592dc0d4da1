"""Bounded worker pool for asynchronous uploads."""

import logging
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, ParamSpec, TypeVar, final, override

from django.db import close_old_connections

logger = logging.getLogger(__name__)

_Params = ParamSpec('_Params')
_Result = TypeVar('_Result')


@final
class UploadWorkerPool(ThreadPoolExecutor):
    """Thread pool whose jobs run with fresh Django DB connections.

    Worker threads outlive requests, so every job closes connections
    that went stale while the thread was idle, and closes its own again
    once it is done.
    """

    def __init__(self, max_workers: int, thread_name_prefix: str = '') -> None:
        """Initialize pool.

        Args:
            max_workers: Upper bound on concurrent uploads.
            thread_name_prefix: Prefix for worker thread names.
        """
        super().__init__(
            max_workers=max_workers,
            thread_name_prefix=thread_name_prefix,
        )
        self.max_workers = max_workers
        logger.info('Upload worker pool started with %d workers', max_workers)

    @override
    def submit(
        self,
        fn: Callable[_Params, _Result],
        /,
        *args: _Params.args,
        **kwargs: _Params.kwargs,
    ) -> Future[_Result]:
        return super().submit(_run_with_connections, fn, *args, **kwargs)


def _run_with_connections(
    fn: Callable[..., _Result],
    *args: Any,
    **kwargs: Any,
) -> _Result:
    close_old_connections()
    try:
        return fn(*args, **kwargs)
    finally:
        close_old_connections()
