"""Utility functions and helpers for the access layer."""

from kluctl_k8s.utils.errors import (
    ApiRequestError,
    AuthenticationError,
    ClientPoolClosedError,
    ClientUnavailableError,
    ConfigurationError,
    ConflictError,
    DeletionTimeoutError,
    K8sAccessError,
    KindNotFoundError,
    ObjectNotFoundError,
    OperationCancelledError,
    translate_api_error,
)
from kluctl_k8s.utils.labels import build_label_selector
from kluctl_k8s.utils.version import ServerVersion

__all__ = [
    # Errors
    "K8sAccessError",
    "KindNotFoundError",
    "ApiRequestError",
    "AuthenticationError",
    "ObjectNotFoundError",
    "ConflictError",
    "OperationCancelledError",
    "ClientUnavailableError",
    "ClientPoolClosedError",
    "DeletionTimeoutError",
    "ConfigurationError",
    "translate_api_error",
    # Selectors
    "build_label_selector",
    # Versions
    "ServerVersion",
]
