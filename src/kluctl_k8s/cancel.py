"""Cooperative cancellation for blocking cluster operations."""

from __future__ import annotations

import threading
import time


class CancelToken:
    """Cancellation signal with an optional deadline.

    A token fires either when :meth:`cancel` is called or once its deadline
    passes. Blocking operations check :attr:`cancelled` between attempts and
    sleep through :meth:`wait`, which returns early as soon as the token fires.

    Usage:
        token = CancelToken(timeout=30)
        cluster = cluster.with_cancel(token)
        cluster.delete_single_object(ref)  # gives up waiting after 30s
    """

    def __init__(self, timeout: float | None = None) -> None:
        self._event = threading.Event()
        self._deadline = time.monotonic() + timeout if timeout is not None else None
        self._reason: str | None = None

    def cancel(self, reason: str = "operation cancelled") -> None:
        """Fire the token. Subsequent calls keep the first reason."""
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            self.cancel("deadline exceeded")
            return True
        return False

    @property
    def reason(self) -> str | None:
        """Why the token fired, or None while it is still live."""
        return self._reason if self.cancelled else None

    def remaining(self) -> float | None:
        """Seconds until the deadline, or None without one."""
        if self._deadline is None:
            return None
        return max(self._deadline - time.monotonic(), 0.0)

    def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds.

        Returns:
            True if the token fired before or during the wait.
        """
        remaining = self.remaining()
        if remaining is not None:
            timeout = min(timeout, remaining)
        self._event.wait(max(timeout, 0.0))
        return self.cancelled

    def __repr__(self) -> str:
        state = f"cancelled: {self._reason}" if self.cancelled else "live"
        return f"CancelToken({state})"
