"""Error taxonomy for cluster access.

Every failure surfaced by the access layer is a :class:`K8sAccessError`.
Callers can tell apart resolution failures (skip the kind), absent objects,
conflicts, cancellation (retry with backoff or give up) and everything else
(transport/auth problems that should abort the current batch).
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from kubernetes.client import ApiException  # type: ignore[import-untyped]
from urllib3.exceptions import HTTPError

if TYPE_CHECKING:
    from kluctl_k8s.models import ApiWarning, GroupVersionKind, ObjectRef


class K8sAccessError(Exception):
    """Base exception for cluster access errors."""

    def __init__(self, message: str) -> None:
        self.message = message
        # Warnings the server sent along with the failed call, if any
        self.api_warnings: list[ApiWarning] = []
        super().__init__(message)


class KindNotFoundError(K8sAccessError):
    """The cluster does not serve the requested kind."""

    def __init__(self, gvk: GroupVersionKind) -> None:
        self.gvk = gvk
        super().__init__(f"no matches for kind {gvk}")


class ApiRequestError(K8sAccessError):
    """A request failed on the transport or was rejected by the server."""

    def __init__(self, message: str, status: int | None = None, reason: str | None = None) -> None:
        self.status = status
        self.reason = reason
        super().__init__(message)


class AuthenticationError(ApiRequestError):
    """The server rejected our credentials or permissions (401/403)."""


class ObjectNotFoundError(K8sAccessError):
    """The addressed object (or resource collection) does not exist."""

    def __init__(self, message: str, ref: ObjectRef | None = None) -> None:
        self.ref = ref
        super().__init__(message)


class ConflictError(K8sAccessError):
    """A write conflicted with another field manager or a newer resourceVersion."""

    def __init__(self, message: str, ref: ObjectRef | None = None) -> None:
        self.ref = ref
        super().__init__(message)


class OperationCancelledError(K8sAccessError):
    """A blocking operation was abandoned because its cancel token fired."""


class ClientUnavailableError(OperationCancelledError):
    """No pooled client became free before cancellation."""


class ClientPoolClosedError(K8sAccessError):
    """The pool holds no clients: it was closed or its last rebuild failed."""


class DeletionTimeoutError(OperationCancelledError):
    """The object was still present when waiting for its deletion was cancelled."""

    def __init__(self, message: str, ref: ObjectRef) -> None:
        self.ref = ref
        super().__init__(message)


class ConfigurationError(K8sAccessError):
    """Connection settings are missing or unusable."""


def _server_message(exc: ApiException) -> str:
    """Pull the human readable message out of a Status body."""
    body: Any = getattr(exc, "body", None)
    if isinstance(body, bytes):
        body = body.decode("utf-8", errors="replace")
    if isinstance(body, str) and body:
        try:
            status = json.loads(body)
        except ValueError:
            return body.strip()
        if isinstance(status, dict) and status.get("message"):
            return str(status["message"])
    return str(exc.reason or "unknown error")


def translate_api_error(
    exc: Exception,
    ref: ObjectRef | None = None,
    operation: str | None = None,
) -> K8sAccessError:
    """Map a kubernetes/urllib3 exception onto the access error taxonomy.

    Args:
        exc: The exception raised by the kubernetes client.
        ref: Object the failed call addressed, used for context.
        operation: Verb of the failed call ("get", "patch", ...).

    Returns:
        The translated exception. Callers raise it ``from exc``.
    """
    if isinstance(exc, K8sAccessError):
        return exc

    context = " ".join(part for part in (operation, str(ref) if ref else None) if part)
    prefix = f"failed to {context}: " if context else ""

    if isinstance(exc, ApiException):
        status = exc.status
        message = f"{prefix}{_server_message(exc)}"
        if status == 404:
            return ObjectNotFoundError(message, ref=ref)
        if status == 409:
            return ConflictError(message, ref=ref)
        if status in (401, 403):
            return AuthenticationError(message, status=status, reason=exc.reason)
        return ApiRequestError(message, status=status, reason=exc.reason)

    if isinstance(exc, HTTPError):
        return ApiRequestError(f"{prefix}{exc}")

    raise TypeError(f"cannot translate {type(exc).__name__} into an access error") from exc
