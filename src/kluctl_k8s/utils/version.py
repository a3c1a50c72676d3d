"""Kubernetes server version parsing."""

from __future__ import annotations

import re
from typing import NamedTuple

_VERSION_RE = re.compile(r"^v?(\d+)\.(\d+)(?:\.(\d+))?")


class ServerVersion(NamedTuple):
    """Comparable major.minor.patch triple of an API server."""

    major: int
    minor: int
    patch: int = 0

    @classmethod
    def parse(cls, value: str) -> ServerVersion:
        """Parse a git version such as "v1.27.3", "v1.28.2+k3s1" or "1.26.5-gke.100".

        Raises:
            ValueError: If no major.minor prefix can be found.
        """
        m = _VERSION_RE.match(value.strip())
        if not m:
            raise ValueError(f"invalid server version: {value!r}")
        return cls(int(m.group(1)), int(m.group(2)), int(m.group(3) or 0))

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"
