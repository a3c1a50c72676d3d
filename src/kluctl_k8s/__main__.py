"""Inspection CLI for the cluster access layer."""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Any

import yaml

from kluctl_k8s import __version__
from kluctl_k8s.cancel import CancelToken
from kluctl_k8s.clients.cluster import K8sCluster
from kluctl_k8s.config import AuthMode, ClusterConfig, LogLevel
from kluctl_k8s.models import ApiWarning, DeleteOptions, GroupVersionKind, ObjectRef
from kluctl_k8s.utils.errors import K8sAccessError

logger = logging.getLogger(__name__)


def setup_logging(level: LogLevel) -> None:
    """Configure logging for the CLI."""
    logging.basicConfig(
        level=level.value,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )


def _parse_label(value: str) -> tuple[str, str]:
    key, sep, val = value.partition("=")
    if not sep or not key:
        raise argparse.ArgumentTypeError(f"expected key=value, got {value!r}")
    return key, val


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="kluctl-k8s",
        description="Inspect a Kubernetes cluster through the kluctl access layer",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    # Connection options
    parser.add_argument(
        "--auth-mode",
        choices=[m.value for m in AuthMode],
        default=None,
        help="Authentication mode (default: auto)",
    )
    parser.add_argument("--kubeconfig", default=None, help="Path to kubeconfig file")
    parser.add_argument("--context", default=None, help="Kubeconfig context to use")
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Give up on blocking operations after this many seconds",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Send writes as dry-run requests",
    )
    parser.add_argument(
        "--log-level",
        choices=[level.value for level in LogLevel],
        default=None,
        help="Logging level (default: INFO)",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("server-version", help="Print the API server version")

    kinds = sub.add_parser("kinds", help="List preferred kinds supporting a verb")
    kinds.add_argument("--verb", action="append", default=None, help="Verb filter (repeatable)")

    def add_kind_args(p: argparse.ArgumentParser) -> None:
        p.add_argument("api_version", help='API version, e.g. "v1" or "apps/v1"')
        p.add_argument("kind", help='Kind, e.g. "Deployment"')

    list_cmd = sub.add_parser("list", help="List objects of one kind")
    add_kind_args(list_cmd)
    list_cmd.add_argument("-n", "--namespace", default=None)
    list_cmd.add_argument("-l", "--label", type=_parse_label, action="append", default=[])
    list_cmd.add_argument("--metadata-only", action="store_true")

    list_all = sub.add_parser("list-all", help="List objects of every listable kind")
    list_all.add_argument("-n", "--namespace", default=None)
    list_all.add_argument("-l", "--label", type=_parse_label, action="append", default=[])
    list_all.add_argument("--metadata-only", action="store_true")

    get = sub.add_parser("get", help="Get a single object")
    add_kind_args(get)
    get.add_argument("name")
    get.add_argument("-n", "--namespace", default="")

    delete = sub.add_parser("delete", help="Delete a single object")
    add_kind_args(delete)
    delete.add_argument("name")
    delete.add_argument("-n", "--namespace", default="")
    delete.add_argument("--no-wait", action="store_true", help="Don't wait for the object to go")
    delete.add_argument("--ignore-not-found", action="store_true")

    return parser.parse_args(argv)


def _print_warnings(warnings: list[ApiWarning], context: str = "") -> None:
    prefix = f"{context}: " if context else ""
    for w in warnings:
        logger.warning(f"{prefix}{w.text}")


def _dump(objects: Any) -> None:
    yaml.safe_dump(objects, sys.stdout, default_flow_style=False, sort_keys=False)


def run_command(cluster: K8sCluster, args: argparse.Namespace) -> None:
    """Execute the selected subcommand against ``cluster``."""
    if args.command == "server-version":
        print(cluster.server_version)
        return

    if args.command == "kinds":
        for gvk in cluster.resolver.list_kinds_supporting_verb(*(args.verb or ["list"])):
            print(f"{gvk.api_version}\t{gvk.kind}")
        return

    if args.command == "list-all":
        objects, warnings_by_kind = cluster.list_all_objects(
            namespace=args.namespace,
            labels=dict(args.label),
            metadata_only=args.metadata_only,
        )
        for gvk, warnings in warnings_by_kind.items():
            _print_warnings(warnings, str(gvk))
        _dump(objects)
        return

    gvk = GroupVersionKind.from_api_version(args.api_version, args.kind)

    if args.command == "list":
        lister = cluster.list_objects_metadata_only if args.metadata_only else cluster.list_objects
        objects, warnings = lister(gvk, args.namespace, dict(args.label))
        _print_warnings(warnings)
        _dump(objects)
    elif args.command == "get":
        obj, warnings = cluster.get_single_object(ObjectRef.for_kind(gvk, args.name, args.namespace))
        _print_warnings(warnings)
        _dump(obj)
    elif args.command == "delete":
        ref = ObjectRef.for_kind(gvk, args.name, args.namespace)
        warnings = cluster.delete_single_object(
            ref, DeleteOptions(no_wait=args.no_wait, ignore_not_found=args.ignore_not_found)
        )
        _print_warnings(warnings)
        logger.info(f"Deleted {ref}{' (dry-run)' if cluster.dry_run else ''}")


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    # Build config from args, falling back to environment/defaults
    config_kwargs: dict[str, Any] = {}
    if args.auth_mode:
        config_kwargs["auth_mode"] = AuthMode(args.auth_mode)
    if args.kubeconfig:
        config_kwargs["kubeconfig_path"] = args.kubeconfig
    if args.context:
        config_kwargs["kubeconfig_context"] = args.context
    if args.dry_run:
        config_kwargs["dry_run"] = True
    if args.log_level:
        config_kwargs["log_level"] = LogLevel(args.log_level)

    config = ClusterConfig(**config_kwargs)
    setup_logging(config.log_level)

    try:
        for warning in config.validate_auth_config():
            logger.warning(warning)
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        return 1

    cancel = CancelToken(timeout=args.timeout)
    try:
        cluster = K8sCluster.connect(config, cancel=cancel)
        try:
            run_command(cluster, args)
        finally:
            cluster.close()
    except K8sAccessError as e:
        logger.error(str(e))
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
