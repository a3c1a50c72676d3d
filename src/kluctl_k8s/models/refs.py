"""Identity types for Kubernetes kinds and objects."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class GroupKind:
    """A kind independent of its API version."""

    group: str
    kind: str

    def __str__(self) -> str:
        return f"{self.kind}.{self.group}" if self.group else self.kind


@dataclass(frozen=True)
class GroupVersionKind:
    """A resource type identifier, e.g. apps/v1 Deployment."""

    group: str
    version: str
    kind: str

    @property
    def api_version(self) -> str:
        """The apiVersion field value for objects of this kind."""
        return f"{self.group}/{self.version}" if self.group else self.version

    @property
    def group_kind(self) -> GroupKind:
        return GroupKind(self.group, self.kind)

    @classmethod
    def from_api_version(cls, api_version: str, kind: str) -> GroupVersionKind:
        """Build from an apiVersion string ("v1" or "apps/v1") and a kind."""
        group, _, version = api_version.rpartition("/")
        return cls(group=group, version=version, kind=kind)

    def __str__(self) -> str:
        return f"{self.api_version}, Kind={self.kind}"


@dataclass(frozen=True)
class ObjectRef:
    """Identity of a single object in the cluster.

    Used for get/patch/update/delete addressing and as the key for
    per-object warning maps.
    """

    group: str
    version: str
    kind: str
    namespace: str
    name: str

    @property
    def gvk(self) -> GroupVersionKind:
        return GroupVersionKind(self.group, self.version, self.kind)

    @property
    def api_version(self) -> str:
        return self.gvk.api_version

    @classmethod
    def for_kind(cls, gvk: GroupVersionKind, name: str, namespace: str = "") -> ObjectRef:
        return cls(gvk.group, gvk.version, gvk.kind, namespace or "", name)

    @classmethod
    def from_object(cls, obj: Mapping[str, Any]) -> ObjectRef:
        """Extract the reference of an object tree.

        Raises:
            ValueError: If apiVersion, kind or metadata.name is missing.
        """
        api_version = obj.get("apiVersion")
        kind = obj.get("kind")
        metadata = obj.get("metadata") or {}
        name = metadata.get("name")
        if not api_version or not kind or not name:
            raise ValueError("object needs apiVersion, kind and metadata.name to be addressed")
        gvk = GroupVersionKind.from_api_version(api_version, kind)
        return cls.for_kind(gvk, name, metadata.get("namespace") or "")

    def __str__(self) -> str:
        if self.namespace:
            return f"{self.namespace}/{self.gvk.group_kind}/{self.name}"
        return f"{self.gvk.group_kind}/{self.name}"
