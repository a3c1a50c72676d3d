"""Label selector helpers."""

from collections.abc import Mapping


def build_label_selector(labels: Mapping[str, str] | None) -> str:
    """Build an equality-based label selector ("a=b,c=d").

    Keys are sorted so identical label maps always produce identical
    selectors.
    """
    if not labels:
        return ""
    return ",".join(f"{key}={value}" for key, value in sorted(labels.items()))
