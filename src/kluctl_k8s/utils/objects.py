"""Helpers for untyped object trees (decoded JSON)."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from kluctl_k8s.models.refs import GroupVersionKind

Path = Sequence[str | int]


def get_path(obj: Any, path: Path) -> Any | None:
    """Walk ``path`` through nested dicts/lists, returning None if any step is missing."""
    node = obj
    for step in path:
        if isinstance(step, int):
            if not isinstance(node, list) or not -len(node) <= step < len(node):
                return None
        elif not isinstance(node, dict) or step not in node:
            return None
        node = node[step]
    return node


def get_map(obj: Any, path: Path) -> dict[str, Any] | None:
    node = get_path(obj, path)
    return node if isinstance(node, dict) else None


def get_list_of_maps(obj: Any, path: Path) -> list[dict[str, Any]]:
    """Return the dict entries of the list at ``path`` (empty if absent)."""
    node = get_path(obj, path)
    if not isinstance(node, list):
        return []
    return [item for item in node if isinstance(item, dict)]


def set_gvk(obj: dict[str, Any], gvk: GroupVersionKind, overwrite: bool = True) -> dict[str, Any]:
    """Stamp apiVersion/kind onto an object, in place."""
    if overwrite or "apiVersion" not in obj:
        obj["apiVersion"] = gvk.api_version
    if overwrite or "kind" not in obj:
        obj["kind"] = gvk.kind
    return obj
