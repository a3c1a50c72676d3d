"""Per-call option records for cluster operations."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field

from kluctl_k8s.utils.labels import build_label_selector


@dataclass(frozen=True)
class ListOptions:
    """Options for list calls."""

    labels: Mapping[str, str] = field(default_factory=dict)
    metadata_only: bool = False

    @property
    def label_selector(self) -> str | None:
        return build_label_selector(self.labels) or None


@dataclass(frozen=True)
class PatchOptions:
    """Options for server-side apply patches.

    Attributes:
        force_dry_run: Send the patch as dry-run even on a read-write handle.
        force_apply: Take over ownership of conflicting fields.
    """

    force_dry_run: bool = False
    force_apply: bool = False


@dataclass(frozen=True)
class UpdateOptions:
    """Options for full-replace updates."""

    force_dry_run: bool = False


@dataclass(frozen=True)
class DeleteOptions:
    """Options for deletes.

    Attributes:
        force_dry_run: Issue the delete as dry-run.
        no_wait: Return right after the delete call instead of polling
            until the object is gone.
        ignore_not_found: Treat an already-absent object as deleted.
    """

    force_dry_run: bool = False
    no_wait: bool = False
    ignore_not_found: bool = False
