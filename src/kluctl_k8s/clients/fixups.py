"""Pre-patch normalization of desired-state objects.

Some API server versions disagree with their own schema when round-tripping
server-side apply patches: defaulted fields that are omitted cause errors
and numeric CPU quantities are rejected where strings are expected. The
fixups below work around this. Each one is gated on the server version and
they run in table order on a deep copy, so the caller's object is never
modified.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from kluctl_k8s.utils.objects import get_list_of_maps, get_map
from kluctl_k8s.utils.version import ServerVersion

logger = logging.getLogger(__name__)

DEFAULT_PORT_PROTOCOL = "TCP"

V1_21 = ServerVersion(1, 21)
# No released server has fixed the quantity typing yet (kubernetes#94275)
V1_1000 = ServerVersion(1, 1000)

_CONTAINERS = ("spec", "template", "spec", "containers")


@dataclass(frozen=True)
class PatchFixup:
    """A structural fix applied when ``applies_to(server_version)`` holds."""

    name: str
    applies_to: Callable[[ServerVersion], bool]
    apply: Callable[[dict[str, Any]], None]


def needs_defaults_fix(version: ServerVersion) -> bool:
    # structured-merge-diff#130 is reported fixed for 1.21 but omitted
    # defaulted fields still break apply on newer servers, so stay on.
    return version < V1_21 or True


def needs_type_conversion_fix(version: ServerVersion) -> bool:
    return version < V1_1000


def _format_quantity(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        return format(value, "g")
    return str(value)


def _default_port_protocols(ports: list[dict[str, Any]]) -> None:
    for port in ports:
        if "protocol" not in port:
            port["protocol"] = DEFAULT_PORT_PROTOCOL


def _stringify(d: dict[str, Any] | None, key: str) -> None:
    if d is None or key not in d:
        return
    if not isinstance(d[key], str):
        d[key] = _format_quantity(d[key])


def fix_port_protocols(obj: dict[str, Any]) -> None:
    """Default missing ``protocol`` on workload container ports and service ports."""
    for container in get_list_of_maps(obj, _CONTAINERS):
        _default_port_protocols(get_list_of_maps(container, ("ports",)))
    _default_port_protocols(get_list_of_maps(obj, ("spec", "ports")))


def fix_cpu_quantities(obj: dict[str, Any]) -> None:
    """Coerce numeric CPU quantities in container resources and LimitRanges to strings."""
    for container in get_list_of_maps(obj, _CONTAINERS):
        _stringify(get_map(container, ("resources", "limits")), "cpu")
        _stringify(get_map(container, ("resources", "requests")), "cpu")
    for limit in get_list_of_maps(obj, ("spec", "limits")):
        _stringify(get_map(limit, ("default",)), "cpu")
        _stringify(get_map(limit, ("defaultRequest",)), "cpu")


PATCH_FIXUPS: tuple[PatchFixup, ...] = (
    PatchFixup("port-protocol-defaults", needs_defaults_fix, fix_port_protocols),
    PatchFixup("cpu-quantity-strings", needs_type_conversion_fix, fix_cpu_quantities),
)


def fix_object_for_patch(
    obj: dict[str, Any],
    server_version: ServerVersion,
    fixups: tuple[PatchFixup, ...] = PATCH_FIXUPS,
) -> dict[str, Any]:
    """Return ``obj`` normalized for a server-side apply patch.

    If no fixup applies to ``server_version``, ``obj`` itself is returned.
    Otherwise the result is a deep copy and ``obj`` is left untouched.
    """
    applicable = [f for f in fixups if f.applies_to(server_version)]
    if not applicable:
        return obj

    fixed = copy.deepcopy(obj)
    for fixup in applicable:
        fixup.apply(fixed)
    logger.debug(f"Applied patch fixups {[f.name for f in applicable]} for server {server_version}")
    return fixed
