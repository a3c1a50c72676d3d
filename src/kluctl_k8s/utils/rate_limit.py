"""Client-side request throttling."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable

from kluctl_k8s.cancel import CancelToken
from kluctl_k8s.utils.errors import OperationCancelledError


class RateLimiter:
    """Token bucket shared by every pooled client of a cluster.

    Allows bursts of up to ``burst`` requests and refills at ``qps`` tokens
    per second.
    """

    def __init__(
        self,
        qps: float,
        burst: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if qps <= 0:
            raise ValueError("qps must be positive")
        self._qps = qps
        self._burst = max(burst, 1)
        self._clock = clock
        self._tokens = float(self._burst)
        self._updated = clock()
        self._lock = threading.Lock()

    def _reserve(self) -> float:
        """Take a token, returning how long the caller must wait for it."""
        with self._lock:
            now = self._clock()
            self._tokens = min(self._burst, self._tokens + (now - self._updated) * self._qps)
            self._updated = now
            self._tokens -= 1
            if self._tokens >= 0:
                return 0.0
            return -self._tokens / self._qps

    def acquire(self, cancel: CancelToken | None = None) -> None:
        """Block until a request may be sent.

        Raises:
            OperationCancelledError: If ``cancel`` fires while throttled.
        """
        delay = self._reserve()
        if delay <= 0:
            return
        if cancel is None:
            time.sleep(delay)
        elif cancel.wait(delay):
            raise OperationCancelledError(f"request throttling interrupted: {cancel.reason}")
