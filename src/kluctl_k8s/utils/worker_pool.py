"""Bounded fan-out with fail-fast dispatch."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from types import TracebackType

logger = logging.getLogger(__name__)


class WorkerPool:
    """Run independent units of work on a bounded number of threads.

    The first unit that raises stops dispatch: units still queued are
    cancelled and later submissions are ignored. Units already running are
    left to finish, since an in-flight API request cannot be aborted safely.
    :meth:`stop_wait` then re-raises that first error.

    Usage:
        with WorkerPool(8) as wp:
            for gvk in kinds:
                wp.submit(partial(list_kind, gvk))
            wp.stop_wait()
    """

    def __init__(self, max_workers: int, name: str = "k8s-worker") -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=name)
        self._lock = threading.Lock()
        self._futures: list[Future[None]] = []
        self._error: BaseException | None = None
        self._closed = False

    def submit(self, fn: Callable[[], None]) -> bool:
        """Queue a unit of work.

        Returns:
            False if the pool already stopped accepting work.
        """
        with self._lock:
            if self._closed or self._error is not None:
                return False
            self._futures.append(self._executor.submit(self._run, fn))
            return True

    def _run(self, fn: Callable[[], None]) -> None:
        with self._lock:
            if self._error is not None:
                return
        try:
            fn()
        except Exception as e:
            with self._lock:
                if self._error is not None:
                    return
                self._error = e
                pending = [f for f in self._futures if f.cancel()]
            logger.debug(f"Worker failed, cancelled {len(pending)} queued units: {e}")

    def stop_wait(self) -> None:
        """Stop accepting work, wait for running units, re-raise the first error."""
        with self._lock:
            self._closed = True
        self._executor.shutdown(wait=True)
        if self._error is not None:
            raise self._error

    def __enter__(self) -> WorkerPool:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        with self._lock:
            self._closed = True
        self._executor.shutdown(wait=True, cancel_futures=True)
