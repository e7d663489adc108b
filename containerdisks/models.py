"""Data models for containerdisks."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from containerdisks.constants import (
    DEFAULT_NAMESPACE,
    DEFAULT_REGISTRY,
    DEFAULT_VERIFY_TIMEOUT,
    DEFAULT_WORKERS,
)


@dataclass(frozen=True)
class Metadata:
    name: str
    version: str
    description: str = ""
    example_cloud_init_payload: str = ""

    def describe(self) -> str:
        """Return ``name:version``, the registry path and the focus key."""
        return f"{self.name}:{self.version}"


@dataclass
class ArtifactDetails:
    sha256sum: str
    download_url: str
    compression: str = ""
    additional_unique_tags: List[str] = field(default_factory=list)


@dataclass
class ImageInfo:
    tag: str = ""
    created: Optional[datetime] = None
    docker_version: str = ""
    labels: Dict[str, str] = field(default_factory=dict)
    annotations: Dict[str, str] = field(default_factory=dict)
    architecture: str = ""
    os: str = ""
    layers: List[str] = field(default_factory=list)
    env: List[str] = field(default_factory=list)
    digest: str = ""


@dataclass
class PublishOptions:
    force_build: bool = False
    workers: int = DEFAULT_WORKERS


@dataclass
class VerifyOptions:
    workers: int = DEFAULT_WORKERS
    cluster_registry: str = ""
    namespace: str = DEFAULT_NAMESPACE
    timeout: int = DEFAULT_VERIFY_TIMEOUT
    kubeconfig: Optional[str] = None


@dataclass
class Options:
    registry: str = DEFAULT_REGISTRY
    dry_run: bool = False
    allow_insecure_registry: bool = False
    focus: str = ""
    catalog_config: Optional[str] = None
    publish: PublishOptions = field(default_factory=PublishOptions)
    verify: VerifyOptions = field(default_factory=VerifyOptions)
