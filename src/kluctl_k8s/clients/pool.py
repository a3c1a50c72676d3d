"""Fixed-size pool of Kubernetes API clients.

Building a client parses TLS material and runs API discovery, which is too
expensive to repeat per request. The pool builds N clients up front and
hands each to exactly one caller at a time; callers beyond N block until a
client is returned or their cancel token fires.
"""

from __future__ import annotations

import json
import logging
import queue
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any, TypeVar

from kubernetes import client  # type: ignore[import-untyped]
from kubernetes.client import ApiException
from kubernetes.dynamic import DynamicClient  # type: ignore[import-untyped]

from kluctl_k8s.cancel import CancelToken
from kluctl_k8s.models import ApiWarning, parse_warning_headers
from kluctl_k8s.utils.errors import ClientPoolClosedError, ClientUnavailableError, K8sAccessError
from kluctl_k8s.utils.rate_limit import RateLimiter

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_POOL_SIZE = 16

# Content negotiation for metadata-only lists
METADATA_ACCEPT = "application/json;as=PartialObjectMetadataList;g=meta.k8s.io;v=v1,application/json"

# How often a blocked checkout re-checks its cancel token
_ACQUIRE_POLL_INTERVAL = 0.05


class PooledClient:
    """One pool slot: dynamic and metadata-only access over one transport.

    Server warnings from every request are collected in :attr:`warnings`.
    The pool resets them on checkout, so they only ever belong to the
    current holder.
    """

    def __init__(
        self,
        api_client: client.ApiClient,
        *,
        dynamic: Any = None,
        rate_limiter: RateLimiter | None = None,
        request_timeout: float | None = None,
    ) -> None:
        self.api_client = api_client
        self.dynamic = dynamic if dynamic is not None else DynamicClient(api_client)
        self.warnings: list[ApiWarning] = []
        self.cancel: CancelToken | None = None
        self._rate_limiter = rate_limiter
        self._request_timeout = request_timeout

    def request(
        self,
        method: str,
        path: str,
        body: Any = None,
        *,
        metadata_only: bool = False,
        **params: Any,
    ) -> dict[str, Any]:
        """Send a request and return the decoded JSON body.

        ``params`` are passed through to the dynamic client (label_selector,
        dry_run, field_manager, force_conflicts, propagation_policy, ...).

        Raises:
            ApiException: On non-2xx responses, untranslated.
        """
        resp = self._send(method, path, body, metadata_only=metadata_only, **params)
        data = resp.data
        if not data:
            return {}
        if isinstance(data, bytes):
            data = data.decode("utf-8")
        result = json.loads(data)
        return result if isinstance(result, dict) else {}

    def stream(self, method: str, path: str, **params: Any) -> Any:
        """Send a request and return the raw, unread response."""
        return self._send(method, path, None, metadata_only=False, **params)

    def _send(
        self, method: str, path: str, body: Any, *, metadata_only: bool, **params: Any
    ) -> Any:
        if self._rate_limiter is not None:
            self._rate_limiter.acquire(self.cancel)
        header_params = {"Accept": METADATA_ACCEPT} if metadata_only else {}
        try:
            resp = self.dynamic.request(
                method,
                path,
                body=body,
                serialize=False,
                header_params=header_params,
                _request_timeout=self._request_timeout,
                **params,
            )
        except ApiException as e:
            self._collect_warnings(getattr(e, "headers", None))
            raise
        self._collect_warnings(getattr(resp, "headers", None))
        return resp

    def _collect_warnings(self, headers: Any) -> None:
        if not headers:
            return
        if hasattr(headers, "getlist"):
            values = headers.getlist("Warning")
        else:
            value = headers.get("Warning") or headers.get("warning")
            values = [value] if value else []
        self.warnings.extend(parse_warning_headers(values))

    def close(self) -> None:
        """Close idle connections and release the client's resources."""
        rest_client = getattr(self.api_client, "rest_client", None)
        pool_manager = getattr(rest_client, "pool_manager", None)
        if pool_manager is not None:
            pool_manager.clear()
        self.api_client.close()


class ClientPool:
    """Bounded pool of :class:`PooledClient` entries.

    Usage:
        pool = ClientPool(lambda: PooledClient(ApiClient(configuration)), size=16)
        result, warnings = pool.with_client(lambda c: c.request("get", "/version"))
    """

    def __init__(self, factory: Callable[[], PooledClient], size: int = DEFAULT_POOL_SIZE) -> None:
        if size < 1:
            raise ValueError("pool size must be at least 1")
        self._factory = factory
        self._size = size
        self._idle: queue.Queue[PooledClient] = queue.Queue(maxsize=size)
        self._reinit_lock = threading.Lock()
        # Set while the queue is empty for good, until a rebuild succeeds
        self._closed_reason: str | None = None
        self._fill()

    @property
    def size(self) -> int:
        return self._size

    @property
    def idle(self) -> int:
        """Number of entries currently available for checkout."""
        return self._idle.qsize()

    def _fill(self) -> None:
        entries: list[PooledClient] = []
        try:
            for _ in range(self._size):
                entries.append(self._factory())
        except Exception:
            for entry in entries:
                entry.close()
            raise
        for entry in entries:
            self._idle.put_nowait(entry)

    def _acquire(self, cancel: CancelToken | None) -> PooledClient:
        while True:
            if self._closed_reason is not None:
                raise ClientPoolClosedError(self._closed_reason)
            if cancel is not None and cancel.cancelled:
                raise ClientUnavailableError(f"failed waiting for free client: {cancel.reason}")
            try:
                return self._idle.get(timeout=_ACQUIRE_POLL_INTERVAL)
            except queue.Empty:
                continue

    @contextmanager
    def checkout(self, cancel: CancelToken | None = None) -> Iterator[PooledClient]:
        """Hold one entry exclusively for the duration of the block.

        Raises:
            ClientUnavailableError: If ``cancel`` fires before an entry frees up.
            ClientPoolClosedError: If the pool was closed or its last rebuild
                failed.
        """
        entry = self._acquire(cancel)
        entry.warnings = []
        entry.cancel = cancel
        try:
            yield entry
        finally:
            entry.cancel = None
            self._idle.put_nowait(entry)

    def with_client(
        self,
        fn: Callable[[PooledClient], T],
        cancel: CancelToken | None = None,
    ) -> tuple[T, list[ApiWarning]]:
        """Run ``fn`` with a checked-out entry.

        Returns:
            ``fn``'s result and the warnings collected during this call only.
            If ``fn`` raises a K8sAccessError, the warnings are attached to it
            as ``api_warnings``.
        """
        with self.checkout(cancel) as entry:
            try:
                result = fn(entry)
            except K8sAccessError as e:
                e.api_warnings = list(entry.warnings)
                raise
            return result, list(entry.warnings)

    def _drain(self) -> list[PooledClient]:
        if self._closed_reason is not None:
            return []
        # Waits for entries that are checked out right now
        return [self._idle.get() for _ in range(self._size)]

    def reinitialize(self) -> None:
        """Replace every entry, e.g. after credentials rotated.

        All N entries are taken back first and their idle connections
        closed, so no connection is reused across the change. If building
        the new entries fails, the pool is left closed and every checkout
        raises :class:`ClientPoolClosedError` until a later call succeeds.
        """
        with self._reinit_lock:
            old = self._drain()
            for entry in old:
                entry.close()
            logger.info(f"Closed {len(old)} pooled clients, rebuilding")
            try:
                self._fill()
            except Exception as e:
                self._closed_reason = f"client pool rebuild failed: {e}"
                logger.error(f"Failed to rebuild client pool: {e}")
                raise
            self._closed_reason = None

    def close(self) -> None:
        """Drain the pool and close every entry."""
        with self._reinit_lock:
            for entry in self._drain():
                entry.close()
            self._closed_reason = "client pool is closed"
