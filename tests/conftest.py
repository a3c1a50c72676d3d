"""Shared fixtures: an in-memory API server behind real pooled clients."""

from __future__ import annotations

import copy
import json
import threading
import time
from collections.abc import Callable, Iterable
from typing import Any
from unittest.mock import MagicMock

import pytest
from kubernetes.client import ApiException  # type: ignore[import-untyped]

from kluctl_k8s.cancel import CancelToken
from kluctl_k8s.clients.cluster import K8sCluster
from kluctl_k8s.clients.pool import ClientPool, PooledClient
from kluctl_k8s.clients.resolver import ResourceMapping, ResourceResolver
from kluctl_k8s.config import ClusterConfig
from kluctl_k8s.models import GroupVersionKind
from kluctl_k8s.utils.version import ServerVersion

ALL_VERBS = ("create", "delete", "get", "list", "patch", "update", "watch")


def make_mapping(
    api_version: str,
    kind: str,
    resource: str,
    namespaced: bool = True,
    verbs: Iterable[str] = ALL_VERBS,
    preferred: bool = True,
) -> ResourceMapping:
    return ResourceMapping(
        gvk=GroupVersionKind.from_api_version(api_version, kind),
        resource=resource,
        namespaced=namespaced,
        verbs=frozenset(verbs),
        preferred=preferred,
    )


DEFAULT_MAPPINGS = [
    make_mapping("v1", "ConfigMap", "configmaps"),
    make_mapping("v1", "Service", "services"),
    make_mapping("v1", "Namespace", "namespaces", namespaced=False),
    make_mapping("apps/v1", "Deployment", "deployments"),
    make_mapping("networking.k8s.io/v1", "Ingress", "ingresses"),
    make_mapping("extensions/v1beta1", "Ingress", "ingresses"),
]


class FakeHeaders(dict):  # type: ignore[type-arg]
    """Header dict with urllib3's getlist()."""

    def getlist(self, name: str) -> list[str]:
        value = self.get(name)
        if value is None:
            return []
        return list(value) if isinstance(value, list) else [value]


class FakeResponse:
    def __init__(self, payload: Any, warnings: list[str] | None = None) -> None:
        self.data = json.dumps(payload).encode("utf-8")
        self.headers = FakeHeaders({"Warning": warnings} if warnings else {})
        self.status = 200


class FakeApiServer:
    """Tiny in-memory API server speaking the dynamic client's request() protocol.

    Objects are keyed by (apiVersion, resource, namespace, name). Tests can
    inject failures per resource or per object name, attach warning headers,
    add latency and delay the disappearance of deleted objects.
    """

    def __init__(self, mappings: Iterable[ResourceMapping] = DEFAULT_MAPPINGS) -> None:
        self.mappings = list(mappings)
        self.objects: dict[tuple[str, str, str, str], dict[str, Any]] = {}
        self.requests: list[dict[str, Any]] = []
        self.failures: dict[str, int | Exception] = {}
        self.warnings: dict[str, list[str]] = {}
        self.latency = 0.0
        self.delete_delay = 0
        self._terminating: dict[tuple[str, str, str, str], int] = {}
        self._lock = threading.Lock()

    def _mapping_for(self, api_version: str, kind: str) -> ResourceMapping:
        for m in self.mappings:
            if m.gvk.api_version == api_version and m.gvk.kind == kind:
                return m
        raise KeyError(f"{api_version} {kind}")

    def add(self, obj: dict[str, Any]) -> dict[str, Any]:
        m = self._mapping_for(obj["apiVersion"], obj["kind"])
        ns = obj["metadata"].get("namespace", "") if m.namespaced else ""
        self.objects[(obj["apiVersion"], m.resource, ns, obj["metadata"]["name"])] = obj
        return obj

    def fail(self, key: str, error: int | Exception) -> None:
        """Fail requests for a resource plural or an object name."""
        self.failures[key] = error

    def requests_for(self, resource: str, method: str | None = None) -> list[dict[str, Any]]:
        return [
            r
            for r in self.requests
            if r["resource"] == resource and (method is None or r["method"] == method)
        ]

    @staticmethod
    def _parse(path: str) -> tuple[str, str, str, str | None, bool]:
        segs = [s for s in path.split("/") if s]
        if segs[0] == "api":
            api_version, rest = segs[1], segs[2:]
        else:
            api_version, rest = f"{segs[1]}/{segs[2]}", segs[3:]
        ns = ""
        if rest[0] == "namespaces" and len(rest) >= 3:
            ns, rest = rest[1], rest[2:]
        proxy = "proxy" in rest
        return api_version, rest[0], ns, rest[1] if len(rest) > 1 else None, proxy

    def _error(self, status: int, message: str, warnings: list[str] | None) -> ApiException:
        e = ApiException(status=status, reason=message)
        e.body = json.dumps({"kind": "Status", "message": message, "code": status})
        e.headers = FakeHeaders({"Warning": warnings} if warnings else {})
        return e

    def handle(
        self,
        method: str,
        path: str,
        body: Any,
        header_params: dict[str, str],
        params: dict[str, Any],
    ) -> FakeResponse:
        if self.latency:
            time.sleep(self.latency)
        api_version, resource, ns, name, proxy = self._parse(path)
        metadata_only = "PartialObjectMetadataList" in header_params.get("Accept", "")
        with self._lock:
            self.requests.append(
                {
                    "method": method,
                    "path": path,
                    "resource": resource,
                    "name": name,
                    "body": copy.deepcopy(body),
                    "params": dict(params),
                    "metadata_only": metadata_only,
                }
            )
            warnings = self.warnings.get(name or "") or self.warnings.get(resource)
            failure = self.failures.get(name or "") or self.failures.get(resource)
            if failure is not None:
                if isinstance(failure, Exception):
                    raise failure
                raise self._error(failure, f"injected failure for {resource}", warnings)

            if proxy:
                return FakeResponse({"proxied": path}, warnings)
            if method == "get" and name is None:
                return FakeResponse(self._list(api_version, resource, ns, params, metadata_only), warnings)

            key = (api_version, resource, ns, name or "")
            if method == "get":
                return FakeResponse(self._get(key, resource, warnings), warnings)
            if method in ("patch", "put"):
                if params.get("dry_run") is None:
                    self.objects[key] = copy.deepcopy(body)
                return FakeResponse(body, warnings)
            if method == "delete":
                if key not in self.objects:
                    raise self._error(404, f'{resource} "{name}" not found', warnings)
                if params.get("dry_run") is None:
                    if self.delete_delay:
                        self._terminating[key] = self.delete_delay
                    else:
                        del self.objects[key]
                return FakeResponse({"kind": "Status", "status": "Success"}, warnings)
        raise AssertionError(f"unexpected request {method} {path}")

    def _get(self, key: tuple[str, str, str, str], resource: str, warnings: list[str] | None) -> Any:
        if key not in self.objects:
            raise self._error(404, f'{resource} "{key[3]}" not found', warnings)
        obj = self.objects[key]
        if key in self._terminating:
            self._terminating[key] -= 1
            if self._terminating[key] <= 0:
                del self._terminating[key]
                del self.objects[key]
        return copy.deepcopy(obj)

    def _list(
        self,
        api_version: str,
        resource: str,
        ns: str,
        params: dict[str, Any],
        metadata_only: bool,
    ) -> dict[str, Any]:
        wanted = dict(
            pair.split("=", 1) for pair in (params.get("label_selector") or "").split(",") if pair
        )
        items = []
        for (av, res, obj_ns, _), obj in self.objects.items():
            if av != api_version or res != resource or (ns and obj_ns != ns):
                continue
            labels = obj["metadata"].get("labels") or {}
            if any(labels.get(k) != v for k, v in wanted.items()):
                continue
            if metadata_only:
                item = {
                    "apiVersion": "meta.k8s.io/v1",
                    "kind": "PartialObjectMetadata",
                    "metadata": copy.deepcopy(obj["metadata"]),
                }
            else:
                item = {k: copy.deepcopy(v) for k, v in obj.items() if k not in ("apiVersion", "kind")}
            items.append(item)
        return {"kind": "List", "items": items}


class FakeDynamicClient:
    """Stands in for kubernetes.dynamic.DynamicClient.request()."""

    def __init__(self, server: FakeApiServer) -> None:
        self.server = server

    def request(
        self,
        method: str,
        path: str,
        body: Any = None,
        serialize: bool = True,
        header_params: dict[str, str] | None = None,
        _request_timeout: float | None = None,
        **params: Any,
    ) -> FakeResponse:
        return self.server.handle(method, path, body, header_params or {}, params)


def configmap(name: str, namespace: str = "default", **labels: str) -> dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {"name": name, "namespace": namespace, "labels": dict(labels)},
        "data": {"key": name},
    }


@pytest.fixture
def api_server() -> FakeApiServer:
    """An empty fake API server serving DEFAULT_MAPPINGS."""
    return FakeApiServer()


@pytest.fixture
def make_configmap() -> Callable[..., dict[str, Any]]:
    return configmap


@pytest.fixture
def pooled_client_factory(api_server: FakeApiServer) -> Callable[[], PooledClient]:
    def factory() -> PooledClient:
        return PooledClient(
            MagicMock(name="ApiClient"),
            dynamic=FakeDynamicClient(api_server),
        )

    return factory


@pytest.fixture
def make_cluster(
    api_server: FakeApiServer, pooled_client_factory: Callable[[], PooledClient]
) -> Callable[..., K8sCluster]:
    """Build a K8sCluster wired to the fake API server."""

    def factory(
        *,
        dry_run: bool = False,
        pool_size: int = 4,
        server_version: ServerVersion = ServerVersion(1, 28, 0),
        cancel: CancelToken | None = None,
        **settings: Any,
    ) -> K8sCluster:
        settings.setdefault("delete_poll_interval", 0.01)
        resolver = ResourceResolver(lambda: api_server.mappings)
        pool = ClientPool(pooled_client_factory, size=pool_size)
        return K8sCluster(
            resolver,
            pool,
            server_version,
            dry_run=dry_run,
            cancel=cancel,
            settings=ClusterConfig(pool_size=pool_size, **settings),
        )

    return factory
