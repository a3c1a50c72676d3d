"""Kubernetes resource access layer for kluctl.

Provides a concurrency-safe handle to a single cluster: pooled API clients,
cached kind discovery, parallel read fan-out and a write/delete pipeline with
dry-run support.
"""

__version__ = "0.1.0"

from kluctl_k8s.cancel import CancelToken
from kluctl_k8s.clients.cluster import K8sCluster
from kluctl_k8s.models import (
    ApiWarning,
    DeleteOptions,
    GroupVersionKind,
    ListOptions,
    ObjectRef,
    PatchOptions,
    UpdateOptions,
)

__all__ = [
    "__version__",
    "ApiWarning",
    "CancelToken",
    "DeleteOptions",
    "GroupVersionKind",
    "K8sCluster",
    "ListOptions",
    "ObjectRef",
    "PatchOptions",
    "UpdateOptions",
]
