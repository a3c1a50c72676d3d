"""Server-side API warnings."""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass

# <code> <agent> "<text>" [ "<date>" ], possibly several per header line
_WARNING_RE = re.compile(r'(\d{3})\s+(\S+)\s+"((?:[^"\\]|\\.)*)"(?:\s+"[^"]*")?')


@dataclass(frozen=True)
class ApiWarning:
    """A deprecation or compatibility notice returned by the API server.

    Warnings are informational and never turn a call into a failure.
    """

    code: int
    agent: str
    text: str

    def __str__(self) -> str:
        return self.text


def parse_warning_headers(values: Iterable[str]) -> list[ApiWarning]:
    """Parse raw ``Warning`` header values into ApiWarning records.

    Values that don't follow the ``<code> <agent> "<text>"`` format are kept
    verbatim with code 299 and agent "-".
    """
    warnings: list[ApiWarning] = []
    for value in values:
        matches = list(_WARNING_RE.finditer(value))
        if not matches:
            if value.strip():
                warnings.append(ApiWarning(code=299, agent="-", text=value.strip()))
            continue
        for m in matches:
            text = re.sub(r"\\(.)", r"\1", m.group(3))
            warnings.append(ApiWarning(code=int(m.group(1)), agent=m.group(2), text=text))
    return warnings
