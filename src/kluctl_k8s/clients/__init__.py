"""Cluster clients: resolver, client pool, write fixups and the cluster handle."""

from kluctl_k8s.clients.cluster import K8sCluster
from kluctl_k8s.clients.fixups import PATCH_FIXUPS, PatchFixup, fix_object_for_patch
from kluctl_k8s.clients.pool import ClientPool, PooledClient
from kluctl_k8s.clients.resolver import (
    DEPRECATED_KINDS,
    DiscoverySnapshot,
    ResourceMapping,
    ResourceResolver,
    discover_resources,
)

__all__ = [
    "DEPRECATED_KINDS",
    "PATCH_FIXUPS",
    "ClientPool",
    "DiscoverySnapshot",
    "K8sCluster",
    "PatchFixup",
    "PooledClient",
    "ResourceMapping",
    "ResourceResolver",
    "discover_resources",
    "fix_object_for_patch",
]
