"""Kind discovery and resolution.

The resolver maps a GroupVersionKind to the plural resource name used in
request paths. The mapping comes from cluster discovery and is held in an
immutable snapshot. Refreshing builds a complete new snapshot and swaps the
reference, so readers never see a half-updated mapping and never need to
lock.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from kubernetes.client import ApiException  # type: ignore[import-untyped]

from kluctl_k8s.models import GroupKind, GroupVersionKind
from kluctl_k8s.utils.errors import KindNotFoundError

if TYPE_CHECKING:
    from kubernetes.client import ApiClient  # type: ignore[import-untyped]

logger = logging.getLogger(__name__)

# Deprecated aliases of a canonical kind. Scanning them as well would return
# every object twice.
DEPRECATED_KINDS: frozenset[GroupKind] = frozenset(
    {
        GroupKind("extensions", "Ingress"),
    }
)


@dataclass(frozen=True)
class ResourceMapping:
    """How one kind is served by the API."""

    gvk: GroupVersionKind
    resource: str
    namespaced: bool
    verbs: frozenset[str] = field(default_factory=frozenset)
    preferred: bool = True

    def supports(self, *verbs: str) -> bool:
        """True if the resource supports any of ``verbs``."""
        return any(v in self.verbs for v in verbs)

    def path(self, namespace: str | None = None, name: str | None = None) -> str:
        """Build the request path for the collection or a single object."""
        if self.gvk.group:
            parts = ["/apis", self.gvk.group, self.gvk.version]
        else:
            parts = ["/api", self.gvk.version]
        if self.namespaced and namespace:
            parts += ["namespaces", namespace]
        parts.append(self.resource)
        if name:
            parts.append(name)
        return "/".join(parts)


@dataclass(frozen=True)
class DiscoverySnapshot:
    """One immutable discovery result."""

    mappings: Mapping[GroupVersionKind, ResourceMapping]
    preferred: tuple[GroupVersionKind, ...]
    created_at: float

    @classmethod
    def build(cls, mappings: Iterable[ResourceMapping]) -> DiscoverySnapshot:
        """Index mappings and pick one preferred version per group/kind.

        The group's preferred version wins; kinds that only exist in other
        versions fall back to the first version discovery listed.
        """
        by_gvk: dict[GroupVersionKind, ResourceMapping] = {}
        preferred: dict[GroupKind, ResourceMapping] = {}
        for m in mappings:
            by_gvk.setdefault(m.gvk, m)
            current = preferred.get(m.gvk.group_kind)
            if current is None or (m.preferred and not current.preferred):
                preferred[m.gvk.group_kind] = m
        return cls(
            mappings=MappingProxyType(by_gvk),
            preferred=tuple(m.gvk for m in preferred.values()),
            created_at=time.monotonic(),
        )


class ResourceResolver:
    """Thread-safe, refreshable view of the cluster's kinds."""

    def __init__(
        self,
        discover: Callable[[], Iterable[ResourceMapping]],
        ttl: float = 300.0,
        deprecated: frozenset[GroupKind] = DEPRECATED_KINDS,
    ) -> None:
        """Run discovery once and build the initial snapshot.

        Args:
            discover: Returns every resource mapping the cluster serves.
            ttl: Age after which a non-forced refresh rediscovers.
            deprecated: Group/kinds excluded from verb-filtered scans.
        """
        self._discover = discover
        self._ttl = ttl
        self._deprecated = deprecated
        self._refresh_lock = threading.Lock()
        self._snapshot = DiscoverySnapshot.build(discover())
        logger.debug(f"Discovered {len(self._snapshot.mappings)} kinds")

    @property
    def snapshot(self) -> DiscoverySnapshot:
        """The current snapshot. Hold on to it for consistent multi-step reads."""
        return self._snapshot

    def resolve_kind(self, gvk: GroupVersionKind) -> ResourceMapping:
        """Look up the resource serving ``gvk``.

        Raises:
            KindNotFoundError: If the cluster does not serve the kind.
        """
        mapping = self._snapshot.mappings.get(gvk)
        if mapping is None:
            raise KindNotFoundError(gvk)
        return mapping

    def list_kinds_supporting_verb(self, *verbs: str) -> list[GroupVersionKind]:
        """Preferred kinds that support any of ``verbs``, minus deprecated aliases."""
        snapshot = self._snapshot
        return [
            gvk
            for gvk in snapshot.preferred
            if gvk.group_kind not in self._deprecated and snapshot.mappings[gvk].supports(*verbs)
        ]

    def refresh(self, force: bool = False) -> bool:
        """Rediscover kinds, e.g. after CRDs were installed.

        Without ``force`` this is a no-op while the snapshot is younger than
        the TTL. Concurrent refreshes are serialized; readers keep using the
        old snapshot until the new one is complete.

        Returns:
            True if a new snapshot was installed.
        """
        with self._refresh_lock:
            if not force and time.monotonic() - self._snapshot.created_at < self._ttl:
                return False
            snapshot = DiscoverySnapshot.build(self._discover())
            self._snapshot = snapshot
        logger.info(f"Refreshed discovery: {len(snapshot.mappings)} kinds")
        return True


def _get_json(api_client: ApiClient, path: str) -> dict[str, Any]:
    result = api_client.call_api(
        path,
        "GET",
        header_params={"Accept": "application/json"},
        auth_settings=["BearerToken"],
        response_type="object",
        _return_http_data_only=True,
    )
    return result if isinstance(result, dict) else {}


def _parse_resource_list(
    resource_list: dict[str, Any],
    group: str,
    version: str,
    preferred: bool,
) -> list[ResourceMapping]:
    mappings = []
    for r in resource_list.get("resources") or []:
        name = r.get("name", "")
        if not name or "/" in name:
            # Subresources (pods/log, deployments/scale) are not kinds of their own
            continue
        gvk = GroupVersionKind(
            group=r.get("group") or group,
            version=r.get("version") or version,
            kind=r["kind"],
        )
        mappings.append(
            ResourceMapping(
                gvk=gvk,
                resource=name,
                namespaced=bool(r.get("namespaced")),
                verbs=frozenset(r.get("verbs") or []),
                preferred=preferred,
            )
        )
    return mappings


def discover_resources(api_client: ApiClient) -> list[ResourceMapping]:
    """Walk /api and /apis and return every served resource mapping.

    Group versions whose discovery endpoint is unavailable (typically an
    aggregated API whose backing service is down) are skipped with a
    warning instead of failing the whole discovery.
    """
    mappings: list[ResourceMapping] = []

    core = _get_json(api_client, "/api")
    for i, version in enumerate(core.get("versions") or []):
        resource_list = _get_json(api_client, f"/api/{version}")
        mappings.extend(_parse_resource_list(resource_list, "", version, preferred=i == 0))

    groups = _get_json(api_client, "/apis")
    for group in groups.get("groups") or []:
        group_name = group["name"]
        preferred_version = (group.get("preferredVersion") or {}).get("version")
        for v in group.get("versions") or []:
            try:
                resource_list = _get_json(api_client, f"/apis/{v['groupVersion']}")
            except ApiException as e:
                if e.status in (404, 503):
                    logger.warning(f"Skipping unavailable API {v['groupVersion']}: {e.reason}")
                    continue
                raise
            mappings.extend(
                _parse_resource_list(
                    resource_list,
                    group_name,
                    v["version"],
                    preferred=v["version"] == preferred_version,
                )
            )

    return mappings
