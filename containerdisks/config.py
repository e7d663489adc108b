"""Option resolution: command-line flags first, environment variables second."""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Any, Optional

from containerdisks.artifacts.catalog import Catalog, build_catalog
from containerdisks.constants import (
    DEFAULT_NAMESPACE,
    DEFAULT_REGISTRY,
    DEFAULT_VERIFY_TIMEOUT,
    DEFAULT_WORKERS,
)
from containerdisks.exceptions import PipelineError
from containerdisks.models import Options, PublishOptions, VerifyOptions
from containerdisks.utils import get_env, get_env_bool, parse_int_env


def _flag(args: argparse.Namespace, name: str) -> Any:
    return getattr(args, name, None)


def _int_option(args: argparse.Namespace, name: str, env: str, default: int, min_val: int = 1) -> int:
    value = _flag(args, name)
    if value is None:
        return parse_int_env(env, str(default), min_val=min_val)
    if value < min_val:
        raise PipelineError(f"--{name.replace('_', '-')} must be >= {min_val} (got {value})")
    return value


def parse_options(args: argparse.Namespace) -> Options:
    """Build ``Options`` for the selected subcommand. Raises PipelineError on bad values."""
    registry = (_flag(args, "registry") or get_env("REGISTRY", DEFAULT_REGISTRY) or DEFAULT_REGISTRY).rstrip("/")
    focus = _flag(args, "focus")
    if focus is None:
        focus = get_env("FOCUS", "") or ""
    catalog_config = _flag(args, "catalog") or get_env("CATALOG_CONFIG") or None

    publish = PublishOptions(
        force_build=bool(_flag(args, "force")) or get_env_bool("FORCE_BUILD", False),
        workers=_int_option(args, "workers", "WORKERS", DEFAULT_WORKERS),
    )
    verify = VerifyOptions(
        workers=publish.workers,
        cluster_registry=(_flag(args, "cluster_registry") or get_env("CLUSTER_REGISTRY") or registry).rstrip("/"),
        namespace=_flag(args, "namespace") or get_env("NAMESPACE", DEFAULT_NAMESPACE) or DEFAULT_NAMESPACE,
        timeout=_int_option(args, "timeout", "VERIFY_TIMEOUT", DEFAULT_VERIFY_TIMEOUT),
        kubeconfig=_flag(args, "kubeconfig") or get_env("KUBECONFIG") or None,
    )
    return Options(
        registry=registry,
        dry_run=bool(_flag(args, "dry_run")) or get_env_bool("DRY_RUN", False),
        allow_insecure_registry=bool(_flag(args, "insecure_skip_tls_verify")) or get_env_bool("INSECURE_REGISTRY", False),
        focus=focus.strip(),
        catalog_config=catalog_config,
        publish=publish,
        verify=verify,
    )


def load_catalog(options: Options) -> Catalog:
    path: Optional[Path] = Path(options.catalog_config) if options.catalog_config else None
    return build_catalog(path)
