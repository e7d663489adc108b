"""CLI entry points for containerdisks."""

from __future__ import annotations

import argparse
from typing import Callable, List, Optional

from containerdisks.artifacts import Artifact
from containerdisks.artifacts.catalog import Catalog
from containerdisks.cluster import KubeVirtClient
from containerdisks.config import load_catalog, parse_options
from containerdisks.exceptions import PipelineError
from containerdisks.models import Options
from containerdisks.publish import publish
from containerdisks.utils import log
from containerdisks.verify import verify
from containerdisks.workers import WorkerPool, select_artifacts


def list_catalog(catalog: Catalog, focus: str = "") -> None:
    """Print the catalog, one artifact per line."""
    if not catalog:
        log("WARN", "Catalog is empty")
        return
    keys = [entry.artifact.metadata().describe() for entry in catalog]
    width = max(len(key) for key in keys)
    for key, entry in zip(keys, catalog):
        description = entry.artifact.metadata().description.strip().splitlines()
        summary = description[0] if description else ""
        marker = "  (only when focused)" if entry.skip_when_not_focused else ""
        active = "*" if focus and focus == key else " "
        print(f" {active}{key:<{width}}  {summary[:80]}{marker}")


def _common_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--registry", default=None, help="Registry to push to and read from (env: REGISTRY)")
    common.add_argument("--dry-run", action="store_true", default=None, help="Do not push anything (env: DRY_RUN)")
    common.add_argument(
        "--insecure-skip-tls-verify",
        action="store_true",
        default=None,
        help="Allow plain HTTP or self-signed registries (env: INSECURE_REGISTRY)",
    )
    common.add_argument("--focus", default=None, help="Only handle the artifact NAME:VERSION (env: FOCUS)")
    common.add_argument("--catalog", default=None, help="YAML file with extra artifacts (env: CATALOG_CONFIG)")
    return common


def build_parser() -> argparse.ArgumentParser:
    common = _common_parser()
    parser = argparse.ArgumentParser(description="Publish and verify KubeVirt containerdisks")
    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
    subparsers.required = True

    push = subparsers.add_parser(
        "push",
        parents=[common],
        help="Rebuild containerdisks whose upstream release changed and push them",
    )
    push.add_argument("--force", action="store_true", default=None, help="Force a rebuild and push (env: FORCE_BUILD)")
    push.add_argument("--workers", type=int, default=None, help="Number of parallel workers (env: WORKERS)")

    verify_cmd = subparsers.add_parser(
        "verify",
        parents=[common],
        help="Boot unverified containerdisks in KubeVirt and mark them verified",
    )
    verify_cmd.add_argument("--workers", type=int, default=None, help="Number of parallel workers (env: WORKERS)")
    verify_cmd.add_argument(
        "--cluster-registry",
        default=None,
        help="Registry address as seen from the cluster (env: CLUSTER_REGISTRY, default: --registry)",
    )
    verify_cmd.add_argument("--namespace", default=None, help="Namespace for test VMIs (env: NAMESPACE)")
    verify_cmd.add_argument("--timeout", type=int, default=None, help="Seconds to wait for a VMI to run (env: VERIFY_TIMEOUT)")
    verify_cmd.add_argument("--kubeconfig", default=None, help="Path to a kubeconfig file (env: KUBECONFIG)")

    subparsers.add_parser("list", parents=[common], help="List the artifact catalog and exit")
    return parser


def run_workers(catalog: Catalog, options: Options, workers: int, worker_fn: Callable[[Artifact], None]) -> int:
    if not select_artifacts(catalog, options.focus):
        if options.focus:
            log("WARN", f"No artifact matches focus '{options.focus}'")
        else:
            log("WARN", "No artifacts selected")
        return 0
    errors = WorkerPool(workers).run(catalog, options.focus, worker_fn)
    if errors:
        log("ERROR", f"{len(errors)} artifact(s) failed")
        return 1
    log("SUCCESS", "All artifacts processed")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        options = parse_options(args)
        catalog = load_catalog(options)
    except PipelineError as exc:
        log("ERROR", str(exc))
        return 1

    if args.command == "list":
        list_catalog(catalog, options.focus)
        return 0

    if options.dry_run:
        log("INFO", "Dry run enabled, nothing will be pushed")

    try:
        if args.command == "push":
            return run_workers(
                catalog,
                options,
                options.publish.workers,
                lambda artifact: publish(artifact, options),
            )
        cluster = KubeVirtClient(options.verify.namespace, options.verify.kubeconfig)
        return run_workers(
            catalog,
            options,
            options.verify.workers,
            lambda artifact: verify(artifact, options, cluster),
        )
    except PipelineError as exc:
        log("ERROR", str(exc))
        return 1
    except Exception as exc:
        log("ERROR", f"Unexpected error: {exc}")
        import traceback

        traceback.print_exc()
        return 1
