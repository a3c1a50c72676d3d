"""Cluster handle: the access layer's public surface.

A :class:`K8sCluster` ties together the resource resolver, the client pool,
the detected server version and the dry-run flag. Every method may be
called from many threads at once.
"""

from __future__ import annotations

import copy
import logging
import threading
from collections.abc import Callable, Iterable, Mapping
from functools import partial
from pathlib import Path
from typing import Any, TypeVar

from kubernetes import client  # type: ignore[import-untyped]
from kubernetes.client import ApiException
from urllib3.exceptions import HTTPError

from kluctl_k8s.cancel import CancelToken
from kluctl_k8s.clients.fixups import fix_object_for_patch
from kluctl_k8s.clients.pool import ClientPool, PooledClient
from kluctl_k8s.clients.resolver import ResourceMapping, ResourceResolver, discover_resources
from kluctl_k8s.config import ClusterConfig
from kluctl_k8s.models import (
    ApiWarning,
    DeleteOptions,
    GroupVersionKind,
    ListOptions,
    ObjectRef,
    PatchOptions,
    UpdateOptions,
)
from kluctl_k8s.utils.errors import (
    ConfigurationError,
    DeletionTimeoutError,
    KindNotFoundError,
    ObjectNotFoundError,
    OperationCancelledError,
    translate_api_error,
)
from kluctl_k8s.utils.objects import set_gvk
from kluctl_k8s.utils.rate_limit import RateLimiter
from kluctl_k8s.utils.version import ServerVersion
from kluctl_k8s.utils.worker_pool import WorkerPool

logger = logging.getLogger(__name__)

T = TypeVar("T")

APPLY_PATCH_CONTENT_TYPE = "application/apply-patch+yaml"
DRY_RUN_ALL = "All"

Object = dict[str, Any]


class K8sCluster:
    """Concurrency-safe access to one Kubernetes cluster.

    Clones made by :meth:`read_write` and :meth:`with_cancel` share the
    resolver and the client pool with their origin; only the dry-run flag
    or cancel token differs.
    """

    def __init__(
        self,
        resolver: ResourceResolver,
        pool: ClientPool,
        server_version: ServerVersion,
        *,
        dry_run: bool = False,
        cancel: CancelToken | None = None,
        settings: ClusterConfig | None = None,
        ca_data: bytes | None = None,
        discovery_client: client.ApiClient | None = None,
    ) -> None:
        self._resolver = resolver
        self._pool = pool
        self._settings = settings or ClusterConfig()
        self._cancel = cancel or CancelToken()
        self._ca_data = ca_data
        self._discovery_client = discovery_client
        self.server_version = server_version
        self.dry_run = dry_run

    # -------------------------------------------------------------------------
    # Construction
    # -------------------------------------------------------------------------

    @classmethod
    def connect(
        cls,
        settings: ClusterConfig | None = None,
        *,
        cancel: CancelToken | None = None,
    ) -> K8sCluster:
        """Connect using kubeconfig, in-cluster or token settings."""
        settings = settings or ClusterConfig()
        configuration = settings.build_configuration()
        return cls.from_configuration(
            configuration, dry_run=settings.dry_run, cancel=cancel, settings=settings
        )

    @classmethod
    def from_configuration(
        cls,
        configuration: client.Configuration,
        *,
        dry_run: bool = False,
        cancel: CancelToken | None = None,
        settings: ClusterConfig | None = None,
    ) -> K8sCluster:
        """Build a handle for ``configuration``.

        Runs discovery, builds the client pool and detects the server
        version, so this does several round trips to the API server.
        """
        settings = settings or ClusterConfig()
        rate_limiter = RateLimiter(settings.qps, settings.burst) if settings.qps > 0 else None
        ca_data = _read_ca(configuration)

        def new_client() -> PooledClient:
            return PooledClient(
                client.ApiClient(configuration),
                rate_limiter=rate_limiter,
                request_timeout=settings.request_timeout,
            )

        # Stays open for discovery refreshes until close()
        discovery_client = client.ApiClient(configuration)
        pool: ClientPool | None = None
        try:
            resolver = ResourceResolver(
                partial(discover_resources, discovery_client), ttl=settings.discovery_ttl
            )
            pool = ClientPool(new_client, size=settings.pool_size)
            version_info = client.VersionApi(discovery_client).get_code()
            server_version = ServerVersion.parse(version_info.git_version)
        except Exception as e:
            if pool is not None:
                pool.close()
            discovery_client.close()
            if isinstance(e, (ApiException, HTTPError)):
                raise translate_api_error(e, operation="connect to cluster") from e
            raise

        logger.info(
            f"Connected to {configuration.host} (server {server_version}, "
            f"{pool.size} pooled clients, dry_run={dry_run})"
        )
        return cls(
            resolver,
            pool,
            server_version,
            dry_run=dry_run,
            cancel=cancel,
            settings=settings,
            ca_data=ca_data,
            discovery_client=discovery_client,
        )

    def read_write(self) -> K8sCluster:
        """A clone with dry-run forced off, sharing pool and resolver."""
        clone = copy.copy(self)
        clone.dry_run = False
        return clone

    def with_cancel(self, cancel: CancelToken) -> K8sCluster:
        """A clone whose blocking operations observe ``cancel``."""
        clone = copy.copy(self)
        clone._cancel = cancel
        return clone

    @property
    def resolver(self) -> ResourceResolver:
        return self._resolver

    @property
    def pool(self) -> ClientPool:
        return self._pool

    @property
    def cancel(self) -> CancelToken:
        return self._cancel

    def get_ca(self) -> bytes | None:
        """The cluster CA bundle, if the connection configured one."""
        return self._ca_data

    def reinit_client_pool(self) -> None:
        """Rebuild all pooled clients, e.g. after credentials rotated."""
        self._pool.reinitialize()

    def close(self) -> None:
        """Close the pooled clients and the discovery client.

        Clones share both, so this ends every clone of the handle too.
        """
        self._pool.close()
        if self._discovery_client is not None:
            self._discovery_client.close()
        logger.info("Closed cluster handle")

    # -------------------------------------------------------------------------
    # Plumbing
    # -------------------------------------------------------------------------

    def _with_resource(
        self,
        gvk: GroupVersionKind,
        namespace: str | None,
        fn: Callable[[PooledClient, ResourceMapping, str | None], T],
        *,
        operation: str,
        ref: ObjectRef | None = None,
    ) -> tuple[T, list[ApiWarning]]:
        def run(entry: PooledClient) -> T:
            mapping = self._resolver.resolve_kind(gvk)
            ns = namespace if mapping.namespaced and namespace else None
            try:
                return fn(entry, mapping, ns)
            except (ApiException, HTTPError) as e:
                raise translate_api_error(e, ref=ref, operation=operation) from e

        return self._pool.with_client(run, cancel=self._cancel)

    def _dry_run_param(self, force_dry_run: bool) -> str | None:
        return DRY_RUN_ALL if self.dry_run or force_dry_run else None

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def _list(
        self, gvk: GroupVersionKind, namespace: str | None, options: ListOptions
    ) -> tuple[list[Object], list[ApiWarning]]:
        def do_list(entry: PooledClient, mapping: ResourceMapping, ns: str | None) -> list[Object]:
            result = entry.request(
                "get",
                mapping.path(namespace=ns),
                metadata_only=options.metadata_only,
                label_selector=options.label_selector,
            )
            # Metadata-only items come back as PartialObjectMetadata
            overwrite = options.metadata_only
            return [set_gvk(item, gvk, overwrite=overwrite) for item in result.get("items") or []]

        return self._with_resource(gvk, namespace, do_list, operation=f"list {gvk}")

    def list_objects(
        self,
        gvk: GroupVersionKind,
        namespace: str | None = None,
        labels: Mapping[str, str] | None = None,
    ) -> tuple[list[Object], list[ApiWarning]]:
        """List objects of one kind, optionally namespaced and label-filtered."""
        return self._list(gvk, namespace, ListOptions(labels=dict(labels or {})))

    def list_objects_metadata_only(
        self,
        gvk: GroupVersionKind,
        namespace: str | None = None,
        labels: Mapping[str, str] | None = None,
    ) -> tuple[list[Object], list[ApiWarning]]:
        """Like :meth:`list_objects` but only metadata is transferred."""
        return self._list(gvk, namespace, ListOptions(labels=dict(labels or {}), metadata_only=True))

    def list_all_objects(
        self,
        verbs: Iterable[str] = ("list",),
        namespace: str | None = None,
        labels: Mapping[str, str] | None = None,
        metadata_only: bool = False,
    ) -> tuple[list[Object], dict[GroupVersionKind, list[ApiWarning]]]:
        """List every kind supporting any of ``verbs`` in parallel.

        Kinds that turn out to be absent are skipped. Any other failure
        aborts the whole call and is raised; partial results are dropped.

        Returns:
            All objects (unordered) and the warnings per kind.
        """
        lister = self.list_objects_metadata_only if metadata_only else self.list_objects
        results: list[Object] = []
        warnings_by_kind: dict[GroupVersionKind, list[ApiWarning]] = {}
        lock = threading.Lock()

        def list_kind(gvk: GroupVersionKind) -> None:
            try:
                objects, warnings = lister(gvk, namespace, labels)
            except (ObjectNotFoundError, KindNotFoundError) as e:
                logger.debug(f"Skipping {gvk}: {e}")
                return
            with lock:
                results.extend(objects)
                if warnings:
                    warnings_by_kind[gvk] = warnings

        with WorkerPool(self._settings.list_workers, name="list-all") as wp:
            for gvk in self._resolver.list_kinds_supporting_verb(*verbs):
                wp.submit(partial(list_kind, gvk))
            wp.stop_wait()

        return results, warnings_by_kind

    def get_single_object(self, ref: ObjectRef) -> tuple[Object, list[ApiWarning]]:
        """Fetch one object.

        Raises:
            ObjectNotFoundError: If it does not exist.
            KindNotFoundError: If its kind is not served.
        """

        def do_get(entry: PooledClient, mapping: ResourceMapping, ns: str | None) -> Object:
            return entry.request("get", mapping.path(namespace=ns, name=ref.name))

        return self._with_resource(ref.gvk, ref.namespace, do_get, operation="get", ref=ref)

    def get_objects_by_refs(
        self, refs: Iterable[ObjectRef]
    ) -> tuple[list[Object], dict[ObjectRef, list[ApiWarning]]]:
        """Fetch many objects in parallel.

        Absent objects and kinds are left out of both results and warnings.
        Any other failure aborts the call and is raised.
        """
        results: list[Object] = []
        warnings_by_ref: dict[ObjectRef, list[ApiWarning]] = {}
        lock = threading.Lock()

        def get_ref(ref: ObjectRef) -> None:
            try:
                obj, warnings = self.get_single_object(ref)
            except (ObjectNotFoundError, KindNotFoundError):
                return
            with lock:
                results.append(obj)
                if warnings:
                    warnings_by_ref[ref] = warnings

        with WorkerPool(self._settings.get_workers, name="get-refs") as wp:
            for ref in refs:
                wp.submit(partial(get_ref, ref))
            wp.stop_wait()

        return results, warnings_by_ref

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def fix_object_for_patch(self, obj: Object) -> Object:
        """Normalize ``obj`` for this server's apply quirks (see clients.fixups)."""
        return fix_object_for_patch(obj, self.server_version)

    def patch_object(
        self, obj: Object, options: PatchOptions | None = None
    ) -> tuple[Object, list[ApiWarning]]:
        """Server-side apply ``obj`` under the configured field manager.

        Dry-run is sent to the server rather than short-circuited, so the
        request is still validated.

        Raises:
            ConflictError: On field ownership conflicts without ``force_apply``.
        """
        options = options or PatchOptions()
        ref = ObjectRef.from_object(obj)
        body = self.fix_object_for_patch(obj)
        dry_run = self._dry_run_param(options.force_dry_run)
        logger.debug(f"Patching {ref} (dry_run={dry_run is not None})")

        def do_patch(entry: PooledClient, mapping: ResourceMapping, ns: str | None) -> Object:
            return entry.request(
                "patch",
                mapping.path(namespace=ns, name=ref.name),
                body=body,
                content_type=APPLY_PATCH_CONTENT_TYPE,
                field_manager=self._settings.field_manager,
                dry_run=dry_run,
                force_conflicts=True if options.force_apply else None,
            )

        return self._with_resource(ref.gvk, ref.namespace, do_patch, operation="patch", ref=ref)

    def update_object(
        self, obj: Object, options: UpdateOptions | None = None
    ) -> tuple[Object, list[ApiWarning]]:
        """Replace ``obj`` in full."""
        options = options or UpdateOptions()
        ref = ObjectRef.from_object(obj)
        dry_run = self._dry_run_param(options.force_dry_run)
        logger.debug(f"Updating {ref} (dry_run={dry_run is not None})")

        def do_update(entry: PooledClient, mapping: ResourceMapping, ns: str | None) -> Object:
            return entry.request(
                "put",
                mapping.path(namespace=ns, name=ref.name),
                body=obj,
                field_manager=self._settings.field_manager,
                dry_run=dry_run,
            )

        return self._with_resource(ref.gvk, ref.namespace, do_update, operation="update", ref=ref)

    def delete_single_object(
        self, ref: ObjectRef, options: DeleteOptions | None = None
    ) -> list[ApiWarning]:
        """Delete one object with foreground cascading.

        Unless running dry-run or with ``no_wait``, blocks until the object
        is gone.

        Raises:
            ObjectNotFoundError: If absent and ``ignore_not_found`` is unset.
            DeletionTimeoutError: If the cancel token fires while waiting.
        """
        options = options or DeleteOptions()
        dry_run = self._dry_run_param(options.force_dry_run)
        logger.debug(f"Deleting {ref} (dry_run={dry_run is not None})")

        def do_delete(entry: PooledClient, mapping: ResourceMapping, ns: str | None) -> None:
            entry.request(
                "delete",
                mapping.path(namespace=ns, name=ref.name),
                propagation_policy="Foreground",
                dry_run=dry_run,
            )

        try:
            _, warnings = self._with_resource(
                ref.gvk, ref.namespace, do_delete, operation="delete", ref=ref
            )
        except ObjectNotFoundError as e:
            if not options.ignore_not_found:
                raise
            warnings = e.api_warnings

        if dry_run is None and not options.no_wait:
            self._wait_for_deleted_object(ref)
        return warnings

    def _wait_for_deleted_object(self, ref: ObjectRef) -> None:
        interval = self._settings.delete_poll_interval
        while True:
            try:
                self.get_single_object(ref)
            except ObjectNotFoundError:
                return
            except OperationCancelledError as e:
                # Token fired while checking out a client for the poll
                raise DeletionTimeoutError(
                    f"failed waiting for deletion of {ref}: {self._cancel.reason}", ref
                ) from e
            if self._cancel.wait(interval):
                raise DeletionTimeoutError(
                    f"failed waiting for deletion of {ref}: {self._cancel.reason}", ref
                )

    # -------------------------------------------------------------------------
    # Proxy
    # -------------------------------------------------------------------------

    def proxy_get(
        self,
        scheme: str,
        namespace: str,
        name: str,
        port: str,
        path: str,
        params: Mapping[str, str] | None = None,
    ) -> Any:
        """GET through the API server's service proxy.

        Returns:
            The unread streaming response. Read it with ``.read()`` or
            ``.stream()`` and call ``.release_conn()`` when done.
        """
        service = _join_scheme_name_port(scheme, name, port)
        url = f"/api/v1/namespaces/{namespace}/services/{service}/proxy/{path.lstrip('/')}"

        def do_proxy(entry: PooledClient) -> Any:
            try:
                return entry.stream("get", url, query_params=list((params or {}).items()))
            except (ApiException, HTTPError) as e:
                raise translate_api_error(e, operation=f"proxy to service {namespace}/{name}") from e

        response, _ = self._pool.with_client(do_proxy, cancel=self._cancel)
        return response


def _join_scheme_name_port(scheme: str, name: str, port: str) -> str:
    """Build the service segment of a proxy URL.

    A scheme always produces three parts, even with an empty port, since
    ``https:name`` would read as service ``https`` on port ``name``.
    """
    if scheme:
        return f"{scheme}:{name}:{port}"
    if port:
        return f"{name}:{port}"
    return name


def _read_ca(configuration: client.Configuration) -> bytes | None:
    ca_path = getattr(configuration, "ssl_ca_cert", None)
    if not ca_path:
        return None
    try:
        return Path(ca_path).read_bytes()
    except OSError as e:
        raise ConfigurationError(f"Cannot read CA bundle {ca_path}: {e}") from e
