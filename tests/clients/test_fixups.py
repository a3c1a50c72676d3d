"""Tests for pre-patch object normalization."""

import copy

import pytest

from kluctl_k8s.clients.fixups import (
    PATCH_FIXUPS,
    PatchFixup,
    fix_cpu_quantities,
    fix_object_for_patch,
    fix_port_protocols,
    needs_defaults_fix,
    needs_type_conversion_fix,
)
from kluctl_k8s.utils.version import ServerVersion


@pytest.fixture
def deployment() -> dict:
    """A deployment with unset protocols and numeric CPU quantities."""
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {"name": "web", "namespace": "default"},
        "spec": {
            "template": {
                "spec": {
                    "containers": [
                        {
                            "name": "app",
                            "ports": [{"containerPort": 8080}, {"containerPort": 53, "protocol": "UDP"}],
                            "resources": {"limits": {"cpu": 1, "memory": "1Gi"}, "requests": {"cpu": 0.5}},
                        },
                        {"name": "sidecar", "resources": {"requests": {"cpu": "100m"}}},
                    ]
                }
            }
        },
    }


class TestVersionGates:
    """Tests for fixup applicability."""

    @pytest.mark.parametrize("version", [ServerVersion(1, 18), ServerVersion(1, 21), ServerVersion(1, 30)])
    def test_defaults_fix_stays_on(self, version: ServerVersion) -> None:
        """Test that protocol defaulting applies on old and new servers."""
        assert needs_defaults_fix(version)

    def test_type_conversion_gate(self) -> None:
        """Test that quantity conversion applies to every realistic version."""
        assert needs_type_conversion_fix(ServerVersion(1, 30, 2))
        assert not needs_type_conversion_fix(ServerVersion(1, 1000))


class TestPortProtocols:
    """Tests for protocol defaulting."""

    def test_container_ports(self, deployment: dict) -> None:
        """Test that missing protocols become TCP and set ones are kept."""
        fix_port_protocols(deployment)

        ports = deployment["spec"]["template"]["spec"]["containers"][0]["ports"]
        assert ports == [
            {"containerPort": 8080, "protocol": "TCP"},
            {"containerPort": 53, "protocol": "UDP"},
        ]

    def test_service_ports(self) -> None:
        """Test service-level ports."""
        service = {"kind": "Service", "spec": {"ports": [{"port": 80}, {"port": 443, "protocol": "TCP"}]}}

        fix_port_protocols(service)

        assert [p["protocol"] for p in service["spec"]["ports"]] == ["TCP", "TCP"]

    def test_ignores_malformed_trees(self) -> None:
        """Test that unexpected shapes are left alone."""
        obj = {"spec": {"template": {"spec": {"containers": "oops"}}, "ports": None}}
        before = copy.deepcopy(obj)

        fix_port_protocols(obj)

        assert obj == before


class TestCpuQuantities:
    """Tests for CPU quantity coercion."""

    def test_container_resources(self, deployment: dict) -> None:
        """Test limits and requests in containers."""
        fix_cpu_quantities(deployment)

        containers = deployment["spec"]["template"]["spec"]["containers"]
        assert containers[0]["resources"]["limits"] == {"cpu": "1", "memory": "1Gi"}
        assert containers[0]["resources"]["requests"] == {"cpu": "0.5"}
        assert containers[1]["resources"]["requests"] == {"cpu": "100m"}

    def test_limit_range(self) -> None:
        """Test LimitRange defaults."""
        limit_range = {
            "kind": "LimitRange",
            "spec": {"limits": [{"type": "Container", "default": {"cpu": 2}, "defaultRequest": {"cpu": 0.25}}]},
        }

        fix_cpu_quantities(limit_range)

        limit = limit_range["spec"]["limits"][0]
        assert limit["default"] == {"cpu": "2"}
        assert limit["defaultRequest"] == {"cpu": "0.25"}


class TestFixObjectForPatch:
    """Tests for the fixup pipeline."""

    def test_does_not_modify_input(self, deployment: dict) -> None:
        """Test that the caller's object is untouched."""
        before = copy.deepcopy(deployment)

        fixed = fix_object_for_patch(deployment, ServerVersion(1, 27, 0))

        assert deployment == before
        assert fixed is not deployment
        assert fixed["spec"]["template"]["spec"]["containers"][0]["resources"]["limits"]["cpu"] == "1"

    def test_same_object_when_nothing_applies(self, deployment: dict) -> None:
        """Test that no copy is made when no fixup applies."""
        never = (PatchFixup("never", lambda v: False, lambda o: None),)

        assert fix_object_for_patch(deployment, ServerVersion(1, 27, 0), never) is deployment

    def test_fixups_run_in_table_order(self, deployment: dict) -> None:
        """Test ordered application of a custom table."""
        calls: list[str] = []
        table = (
            PatchFixup("first", lambda v: True, lambda o: calls.append("first")),
            PatchFixup("skipped", lambda v: v < ServerVersion(1, 10), lambda o: calls.append("skipped")),
            PatchFixup("second", lambda v: True, lambda o: calls.append("second")),
        )

        fix_object_for_patch(deployment, ServerVersion(1, 27, 0), table)

        assert calls == ["first", "second"]

    def test_default_table(self) -> None:
        """Test the registered fixups."""
        assert [f.name for f in PATCH_FIXUPS] == ["port-protocol-defaults", "cpu-quantity-strings"]
