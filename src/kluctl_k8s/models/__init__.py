"""Value types shared across the access layer."""

from kluctl_k8s.models.options import DeleteOptions, ListOptions, PatchOptions, UpdateOptions
from kluctl_k8s.models.refs import GroupKind, GroupVersionKind, ObjectRef
from kluctl_k8s.models.warnings import ApiWarning, parse_warning_headers

__all__ = [
    "ApiWarning",
    "DeleteOptions",
    "GroupKind",
    "GroupVersionKind",
    "ListOptions",
    "ObjectRef",
    "PatchOptions",
    "UpdateOptions",
    "parse_warning_headers",
]
