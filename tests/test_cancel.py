"""Tests for CancelToken."""

import threading
import time

from kluctl_k8s.cancel import CancelToken


class TestCancelToken:
    """Tests for cancellation and deadlines."""

    def test_live_token(self) -> None:
        """Test a fresh token without deadline."""
        token = CancelToken()

        assert not token.cancelled
        assert token.reason is None
        assert token.remaining() is None

    def test_cancel_keeps_first_reason(self) -> None:
        """Test that the first reason wins."""
        token = CancelToken()
        token.cancel("first")
        token.cancel("second")

        assert token.cancelled
        assert token.reason == "first"

    def test_deadline(self) -> None:
        """Test that a token fires once its deadline passes."""
        token = CancelToken(timeout=0.01)
        time.sleep(0.02)

        assert token.cancelled
        assert token.reason == "deadline exceeded"
        assert token.remaining() == 0.0

    def test_wait_returns_early_on_cancel(self) -> None:
        """Test that wait wakes up as soon as the token fires."""
        token = CancelToken()
        threading.Timer(0.02, token.cancel).start()

        start = time.monotonic()
        assert token.wait(5) is True
        assert time.monotonic() - start < 2

    def test_wait_times_out(self) -> None:
        """Test that wait returns False when nothing happened."""
        assert CancelToken().wait(0.01) is False

    def test_wait_capped_by_deadline(self) -> None:
        """Test that wait never sleeps past the deadline."""
        token = CancelToken(timeout=0.02)

        start = time.monotonic()
        assert token.wait(5) is True
        assert time.monotonic() - start < 2

    def test_repr(self) -> None:
        """Test the debug representation."""
        token = CancelToken()
        assert repr(token) == "CancelToken(live)"
        token.cancel("done")
        assert repr(token) == "CancelToken(cancelled: done)"
